"""Custom exception hierarchy for mongo-notify.

HTTP routes raise these and a centralized handler translates them into
consistent JSON responses. Admission refusals reuse the same fields for the
WebSocket denial response.
"""

from __future__ import annotations


class MongoNotifyError(Exception):
    """Base exception for all mongo-notify errors."""

    status_code: int = 500
    error_type: str = "internal_error"

    def __init__(self, message: str = "An internal error occurred") -> None:
        self.message = message
        super().__init__(message)


class ConfigurationError(MongoNotifyError):
    """Required process configuration is missing or invalid."""

    error_type = "configuration_error"


class AdmissionRefused(MongoNotifyError):
    """A WebSocket connection attempt was refused before the handshake."""

    status_code = 403
    error_type = "admission_refused"

    def __init__(self, message: str, address: str = "unknown") -> None:
        self.address = address
        super().__init__(message)


class RateLimited(AdmissionRefused):
    """Too many connection attempts from one source address."""

    status_code = 429
    error_type = "rate_limited"

    def __init__(self, address: str = "unknown") -> None:
        super().__init__("Too Many Requests", address)


class Unauthorized(AdmissionRefused):
    """Missing, stale or invalid admission token."""

    status_code = 401
    error_type = "unauthorized"

    def __init__(self, address: str = "unknown") -> None:
        super().__init__("Unauthorized", address)


class UpstreamSubscriptionFailed(MongoNotifyError):
    """The MongoDB change stream could not be opened."""

    status_code = 503
    error_type = "upstream_unavailable"


class ChannelDeliveryFailed(MongoNotifyError):
    """A frame could not be queued for one connection."""

    error_type = "delivery_failed"


class MalformedDiffRequest(MongoNotifyError):
    """The /diff request body is not a usable JSON object."""

    status_code = 400
    error_type = "invalid_input"

    def __init__(self, message: str = "Invalid input") -> None:
        super().__init__(message)
