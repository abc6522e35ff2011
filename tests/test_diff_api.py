"""Tests for POST /diff and other plain HTTP behaviour."""

from __future__ import annotations

import json

import pytest

BODY = {"old": {"a": 1, "b": 2}, "new": {"a": 1, "b": 3, "c": True}}


class TestDiffEndpoint:
    async def test_default_is_json(self, client):
        resp = await client.post("/diff", json=BODY)
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/plain")
        assert json.loads(resp.text) == {
            "diff": [
                {"type": "changed", "path": "b", "from": 2, "to": 3},
                {"type": "added", "path": "c", "value": True},
            ]
        }

    @pytest.mark.parametrize(
        ("style", "expected"),
        [
            ("git", "~ b: 2 -> 3\n+ c: true"),
            ("plain", "Changed b from 2 to 3\nAdded c = true"),
            ("compact", "~b\n+c"),
            ("summary", "Added: 1, Removed: 0, Changed: 1"),
        ],
    )
    async def test_styles(self, client, style, expected):
        resp = await client.post(f"/diff?type={style}", json=BODY)
        assert resp.status_code == 200
        assert resp.text == expected

    async def test_missing_sides_diff_as_empty(self, client):
        resp = await client.post("/diff?type=summary", json={"new": {"a": 1}})
        assert resp.status_code == 200
        assert resp.text == "Added: 1, Removed: 0, Changed: 0"

    async def test_invalid_json_returns_400(self, client):
        resp = await client.post(
            "/diff",
            content=b"not valid json",
            headers={"content-type": "application/json"},
        )
        assert resp.status_code == 400
        data = resp.json()
        assert data["error"] == "invalid_input"
        assert data["message"] == "Invalid input"
        assert "request_id" in data

    @pytest.mark.parametrize("raw", [b"", b"null", b"[1, 2]", b'"text"', b'{"old": NaN}'])
    async def test_non_object_bodies_return_400(self, client, raw):
        resp = await client.post("/diff", content=raw)
        assert resp.status_code == 400

    async def test_decoder_overflow_returns_400(self, client):
        raw = b'{"old": ' + b"[" * 100_000 + b"]" * 100_000 + b', "new": 1}'
        resp = await client.post("/diff", content=raw)
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_input"

    async def test_deeply_nested_sides_return_400(self, client):
        raw = b'{"old": ' + b'{"a":' * 950 + b"1" + b"}" * 950
        raw += b', "new": ' + b'{"a":' * 950 + b"2" + b"}" * 950 + b"}"
        resp = await client.post("/diff", content=raw)
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_input"

    async def test_nesting_within_limit_is_diffed(self, client):
        depth = 100
        raw = b'{"old": ' + b'{"a":' * depth + b"1" + b"}" * depth
        raw += b', "new": ' + b'{"a":' * depth + b"2" + b"}" * depth + b"}"
        resp = await client.post("/diff?type=compact", content=raw)
        assert resp.status_code == 200
        assert resp.text == "~" + ".".join(["a"] * depth)

    async def test_unknown_path_is_404(self, client):
        resp = await client.get("/nope")
        assert resp.status_code == 404

    async def test_plain_get_on_ws_path_is_426(self, client):
        resp = await client.get("/ws")
        assert resp.status_code == 426


class TestResponseHeaders:
    async def test_security_headers_present(self, client):
        resp = await client.post("/diff", json=BODY)
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert resp.headers["X-Frame-Options"] == "DENY"
        assert resp.headers["Referrer-Policy"] == "strict-origin-when-cross-origin"

    async def test_request_id_header(self, client):
        resp = await client.post("/diff", json=BODY)
        assert len(resp.headers["X-Request-ID"]) == 8

    async def test_error_request_id_matches_header(self, client):
        resp = await client.post("/diff", content=b"{")
        assert resp.json()["request_id"] == resp.headers["X-Request-ID"]

    async def test_metrics_endpoint(self, client):
        resp = await client.get("/metrics")
        assert resp.status_code == 200
