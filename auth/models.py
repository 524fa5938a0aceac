from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

from auth.errors import ProviderMalformedResponse


@dataclass(frozen=True)
class AuthorizationRequest:
    state: str
    redirect_uri: str
    issued_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at

    def to_json(self) -> str:
        return json.dumps(asdict(self), separators=(",", ":"))

    @classmethod
    def from_json(cls, raw: str | bytes) -> "AuthorizationRequest":
        return cls(**json.loads(raw))


@dataclass(frozen=True)
class TokenRecord:
    """Canonical token material from one grant response.

    ``received_at`` and ``expires_at`` are epoch milliseconds; ``expires_at``
    is always derived from ``expires_in`` at receipt, never taken from the
    provider.
    """

    access_token: str = field(repr=False)
    refresh_token: str | None = field(repr=False)
    token_type: str | None
    scope: str | None
    expires_in: int
    expires_at: int
    received_at: int

    @classmethod
    def from_payload(cls, payload: object, *, received_at: int) -> "TokenRecord":
        if not isinstance(payload, dict):
            raise ProviderMalformedResponse()

        access_token = payload.get("access_token")
        refresh_token = payload.get("refresh_token")
        token_type = payload.get("token_type")
        scope = payload.get("scope")
        expires_in = _coerce_expires_in(payload.get("expires_in"))

        if not isinstance(access_token, str) or not access_token:
            raise ProviderMalformedResponse("Token response missing access_token.")
        if expires_in is None:
            raise ProviderMalformedResponse("Token response missing expires_in.")
        if refresh_token is not None and not isinstance(refresh_token, str):
            raise ProviderMalformedResponse("Token response refresh_token must be a string.")
        if token_type is not None and not isinstance(token_type, str):
            raise ProviderMalformedResponse("Token response token_type must be a string.")
        if scope is not None and not isinstance(scope, str):
            raise ProviderMalformedResponse("Token response scope must be a string.")

        return cls(
            access_token=access_token,
            refresh_token=refresh_token or None,
            token_type=token_type,
            scope=scope,
            expires_in=expires_in,
            expires_at=received_at + expires_in * 1000,
            received_at=received_at,
        )

    def to_response(self) -> dict:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_in": self.expires_in,
            "expires_at": self.expires_at,
            "scope": self.scope,
            "token_type": self.token_type,
        }

    def to_row(self, state: str | None = None) -> dict:
        received = datetime.fromtimestamp(self.received_at / 1000, tz=timezone.utc)
        return {
            **self.to_response(),
            "received_at": received.isoformat(),
            "state": state,
        }


def _coerce_expires_in(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, str) and value.strip().isdecimal():
        return int(value.strip())
    return None
