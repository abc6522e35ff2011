"""Admission control for the ``/ws`` upgrade path.

Every connection attempt walks one state machine::

    REQUESTED -> RATE_CHECKED -> AUTHENTICATED -> ADMITTED
         \\              \\
          `-> REJECTED    `-> REJECTED

Refusals happen before the WebSocket handshake completes and leave no state
behind except the rate-limit attempt counter. An admitted channel lives in
the :class:`ConnectionRegistry` until it closes or errors.

Source addresses come from forwarding headers first. Most of those headers
are set by the client unless a trusted reverse proxy overwrites them, so a
client talking to the gateway directly can pick its own rate-limit bucket.
Deploy behind a proxy that owns these headers if that matters.
"""

from __future__ import annotations

import logging
from enum import Enum

from fastapi import WebSocket
from fastapi.responses import JSONResponse
from starlette.requests import HTTPConnection

from mongo_notify.api.channel import WebSocketChannel
from mongo_notify.api.registry import ConnectionRegistry
from mongo_notify.auth import Credential, TokenAuthenticator
from mongo_notify.exceptions import AdmissionRefused, RateLimited, Unauthorized
from mongo_notify.ratelimit import ConnectionRateLimiter

logger = logging.getLogger("mongo_notify.gateway")
_audit_logger = logging.getLogger("mongo_notify.audit")

# Consulted in this order; the first present value wins.
FORWARDED_HEADERS: tuple[str, ...] = (
    "x-forwarded-for",
    "x-real-ip",
    "cf-connecting-ip",
    "x-forwarded",
    "true-client-ip",
    "x-client-ip",
    "x-cluster-client-ip",
    "fastly-client-ip",
    "x-appengine-user-ip",
)

UNKNOWN_ADDRESS = "unknown"

CLOSE_POLICY_VIOLATION = 1008


class AdmissionState(str, Enum):
    REQUESTED = "requested"
    RATE_CHECKED = "rate_checked"
    AUTHENTICATED = "authenticated"
    ADMITTED = "admitted"
    REJECTED = "rejected"


def client_address(request: HTTPConnection) -> str:
    """Derive the source address of a request or WebSocket.

    Priority: forwarding headers (in ``FORWARDED_HEADERS`` order) > transport
    peer > ``"unknown"``. A comma-separated header value contributes its
    leftmost entry.
    """
    for header in FORWARDED_HEADERS:
        value = request.headers.get(header)
        if value:
            first = value.split(",", 1)[0].strip()
            if first:
                return first
    if request.client is not None and request.client.host:
        return request.client.host
    return UNKNOWN_ADDRESS


class UpgradeGatekeeper:
    """Decide admission for upgrade requests and hand admitted channels to the registry."""

    def __init__(
        self,
        authenticator: TokenAuthenticator,
        rate_limiter: ConnectionRateLimiter,
        registry: ConnectionRegistry,
        channel_queue_size: int = 100,
    ) -> None:
        self.authenticator = authenticator
        self.rate_limiter = rate_limiter
        self.registry = registry
        self.channel_queue_size = channel_queue_size

    def check(self, conn: HTTPConnection) -> str:
        """Run the rate-limit and token gates. Returns the source address.

        Raises:
            RateLimited: too many attempts from this address in the window.
            Unauthorized: the credential is missing, stale or wrong.
        """
        state = AdmissionState.REQUESTED
        address = client_address(conn)

        if not self.rate_limiter.allow(address):
            raise RateLimited(address)
        state = AdmissionState.RATE_CHECKED

        credential = Credential.from_query(conn.query_params)
        if not self.authenticator.validate_credential(credential):
            raise Unauthorized(address)
        state = AdmissionState.AUTHENTICATED

        logger.debug("Admission gates passed for %s (%s)", address, state.value)
        return address

    async def handle(self, websocket: WebSocket) -> AdmissionState:
        """Serve one connection attempt from handshake to close."""
        try:
            address = self.check(websocket)
        except AdmissionRefused as exc:
            _audit_logger.warning(
                "WebSocket admission refused (%s) from %s",
                exc.error_type,
                exc.address,
                extra={"reason": exc.error_type, "client_address": exc.address},
            )
            await reject(websocket, exc)
            return AdmissionState.REJECTED

        await websocket.accept()
        channel = WebSocketChannel(websocket, maxsize=self.channel_queue_size, address=address)
        self.registry.attach(channel)
        logger.info(
            "WebSocket admitted: channel %s from %s (%d connected)",
            channel.channel_id,
            address,
            len(self.registry),
            extra={"channel_id": channel.channel_id, "client_address": address},
        )
        try:
            await channel.serve()
        finally:
            logger.info(
                "WebSocket closed: channel %s (%d connected)",
                channel.channel_id,
                len(self.registry),
                extra={"channel_id": channel.channel_id, "client_address": address},
            )
        return AdmissionState.ADMITTED


async def reject(websocket: WebSocket, exc: AdmissionRefused) -> None:
    """Refuse a WebSocket before the handshake completes.

    Uses the denial-response extension to send a real HTTP status line when
    the server supports it; otherwise closes with a policy-violation code,
    which servers turn into a 403.
    """
    if "websocket.http.response" in websocket.scope.get("extensions", {}):
        await websocket.send_denial_response(
            JSONResponse(
                status_code=exc.status_code,
                content={"error": exc.error_type, "message": exc.message},
            )
        )
        return
    await websocket.close(code=CLOSE_POLICY_VIOLATION, reason=exc.message)
