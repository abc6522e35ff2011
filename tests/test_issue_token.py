"""Tests for the admission token helper script."""

from __future__ import annotations

import importlib.util
import json
from pathlib import Path

import pytest

from mongo_notify.auth import TokenAuthenticator

_SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "issue_token.py"


@pytest.fixture(scope="module")
def issue_token():
    spec = importlib.util.spec_from_file_location("issue_token", _SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_issued_token_is_accepted(issue_token):
    result = issue_token.issue("s3cret", timestamp=1_700_000_000_000)
    auth = TokenAuthenticator(b"s3cret", clock=lambda: 1_700_000_000_000)
    assert auth.validate(result["token"], result["time"])
    assert result["url"] == (
        f"ws://localhost:8080/ws?_internalToken={result['token']}&time=1700000000000"
    )


def test_json_output(issue_token, capsys):
    assert issue_token.main(["--secret", "x", "--time", "42", "--json"]) == 0
    data = json.loads(capsys.readouterr().out)
    assert data["time"] == "42"
    assert len(data["token"]) == 64


def test_secret_from_environment(issue_token, capsys, monkeypatch):
    monkeypatch.setenv("TOKEN", "from-env")
    assert issue_token.main(["--time", "1"]) == 0
    assert "token:" in capsys.readouterr().out


def test_missing_secret(issue_token, capsys, monkeypatch):
    monkeypatch.delenv("TOKEN", raising=False)
    assert issue_token.main([]) == 1
    assert "No secret" in capsys.readouterr().err
