from __future__ import annotations

from typing import Any


class GatewayError(RuntimeError):
    """Base for every failure the gateway reports to its HTTP layer.

    ``message`` is always safe to hand back to the browser; it never carries
    the client secret or token material.
    """

    kind = "internal"
    status_code = 500
    default_message = "Internal server error"
    retryable = False

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def payload(self) -> dict[str, Any]:
        return {"error": self.message}


class Misconfigured(GatewayError):
    kind = "misconfigured"
    default_message = "Server configuration error"


class BadRequest(GatewayError):
    kind = "bad_request"
    status_code = 400
    default_message = "Bad request"


class InvalidOrExpiredState(GatewayError):
    kind = "invalid_state"
    status_code = 400
    default_message = "Invalid or expired state"


class ProviderRejected(GatewayError):
    kind = "provider_rejected"
    default_message = "Schwab token request failed"

    def __init__(self, status: int, body: Any) -> None:
        super().__init__()
        self.status = status
        self.body = body
        # Forward the provider's status, but never answer 2xx/3xx for a failure.
        self.status_code = status if 400 <= status < 600 else 502

    def payload(self) -> dict[str, Any]:
        return {"error": self.message, "details": self.body}

    @property
    def retryable(self) -> bool:
        return self.status >= 500


class ProviderMalformedResponse(GatewayError):
    kind = "provider_malformed"
    status_code = 502
    default_message = "Schwab token endpoint returned an unreadable response"


class TransportError(GatewayError):
    kind = "transport"
    default_message = "Failed to reach Schwab token endpoint"
    retryable = True


class PersistenceFailure(GatewayError):
    kind = "persistence"
    default_message = "Failed to store tokens"
