"""Admission token authentication for the WebSocket gateway.

A client proves knowledge of the shared secret (``TOKEN``) by sending two
query parameters on the upgrade request:

- ``time`` -- the current time in milliseconds since the epoch
- ``_internalToken`` -- ``hex(HMAC-SHA256(secret, time))``, lowercase

The token is accepted while ``|now - time|`` stays inside the freshness
window (five minutes by default). The window is symmetric, so a token is
also accepted up to the same amount of time *before* its stated timestamp;
this absorbs clock skew between producer and gateway.
"""

from __future__ import annotations

import hashlib
import hmac
import re
import time
from collections.abc import Callable
from dataclasses import dataclass

TOKEN_PARAM = "_internalToken"
TIME_PARAM = "time"

DEFAULT_MAX_SKEW_SECONDS = 300

_INTEGER_RE = re.compile(r"[+-]?[0-9]+")


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return time.time_ns() // 1_000_000


def sign_timestamp(secret: bytes, timestamp: str) -> str:
    """Return the admission token for *timestamp* under *secret*."""
    return hmac.new(secret, timestamp.encode("utf-8"), hashlib.sha256).hexdigest()


@dataclass(frozen=True)
class Credential:
    """Token + timestamp pair presented on one connection attempt."""

    token: str | None
    timestamp: str | None

    @classmethod
    def from_query(cls, query_params) -> Credential:
        """Read the credential from request query parameters (empty counts as absent)."""
        return cls(
            token=query_params.get(TOKEN_PARAM) or None,
            timestamp=query_params.get(TIME_PARAM) or None,
        )

    def __repr__(self) -> str:
        return f"Credential(token={'***' if self.token else None}, timestamp={self.timestamp!r})"


class TokenAuthenticator:
    """Validate admission credentials against a shared secret and freshness window."""

    def __init__(
        self,
        secret: bytes,
        max_skew_seconds: int = DEFAULT_MAX_SKEW_SECONDS,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        if not secret:
            raise ValueError("secret must not be empty")
        self._secret = secret
        self._max_skew_ms = max_skew_seconds * 1000
        self._clock = clock

    def __repr__(self) -> str:
        return f"TokenAuthenticator(max_skew_ms={self._max_skew_ms})"

    def expected_token(self, timestamp: str) -> str:
        return sign_timestamp(self._secret, timestamp)

    def validate(self, token: str | None, timestamp: str | None) -> bool:
        """Return True only for a fresh, correctly signed credential.

        Never raises. Missing values, a timestamp that is not an integer, a
        stale timestamp and a wrong token all yield False. The token
        comparison is constant-time over bytes.
        """
        if not token or not timestamp:
            return False
        if not _INTEGER_RE.fullmatch(timestamp):
            return False

        try:
            ts = int(timestamp)
        except ValueError:
            # Beyond the interpreter's int-string digit limit; never fresh.
            return False

        if abs(self._clock() - ts) > self._max_skew_ms:
            return False

        expected = self.expected_token(timestamp)
        return hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8"))

    def validate_credential(self, credential: Credential) -> bool:
        return self.validate(credential.token, credential.timestamp)
