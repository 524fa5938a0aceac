from __future__ import annotations

import base64
import logging
import time
import urllib.parse
from collections.abc import Callable

import httpx

from auth.errors import ProviderMalformedResponse, ProviderRejected, TransportError
from auth.models import TokenRecord

logger = logging.getLogger(__name__)

SCHWAB_AUTHORIZE_URL = "https://api.schwab.com/v1/oauth/authorize"
SCHWAB_TOKEN_URL = "https://api.schwab.com/v1/oauth/token"
DEFAULT_TOKEN_TIMEOUT_SECONDS = 15.0
ERROR_BODY_LOG_LIMIT = 400


def basic_auth_header(client_id: str, client_secret: str) -> str:
    credentials = f"{client_id}:{client_secret}".encode("utf-8")
    return f"Basic {base64.b64encode(credentials).decode('ascii')}"


def build_authorization_url(
    authorize_url: str,
    client_id: str,
    redirect_uri: str,
    state: str,
    scope: str | None = None,
) -> str:
    query = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "state": state,
    }
    if scope:
        query["scope"] = scope
    return f"{authorize_url}?{urllib.parse.urlencode(query)}"


def _error_body(response: httpx.Response):
    try:
        return response.json()
    except ValueError:
        return response.text


class TokenClient:
    """Runs the authorization_code and refresh_token grants against Schwab.

    Nothing here retries: an authorization code is single-use, and a refresh
    may rotate the refresh token, so the caller decides what to do next.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        token_url: str = SCHWAB_TOKEN_URL,
        timeout: float = DEFAULT_TOKEN_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client_id = client_id
        self._client_secret = client_secret
        self.token_url = token_url
        self.timeout = timeout
        self._client = client
        self._clock = clock

    async def grant(self, params: dict[str, str]) -> TokenRecord:
        own_client = self._client is None
        http_client = self._client or httpx.AsyncClient(timeout=self.timeout)
        grant_type = params.get("grant_type")

        try:
            response = await http_client.post(
                self.token_url,
                data=params,
                headers={
                    "Authorization": basic_auth_header(self.client_id, self._client_secret),
                    "Content-Type": "application/x-www-form-urlencoded",
                    "Accept": "application/json",
                },
                timeout=self.timeout,
            )
        except httpx.RequestError as error:
            logger.warning(
                "Token request transport failure grant_type=%s reason=%s",
                grant_type,
                type(error).__name__,
            )
            raise TransportError() from error
        finally:
            if own_client:
                await http_client.aclose()

        received_at = int(self._clock() * 1000)

        if not response.is_success:
            body = _error_body(response)
            logger.warning(
                "Token request rejected grant_type=%s status=%s body=%s",
                grant_type,
                response.status_code,
                str(body)[:ERROR_BODY_LOG_LIMIT],
            )
            raise ProviderRejected(response.status_code, body)

        try:
            payload = response.json()
        except ValueError as error:
            logger.warning(
                "Token response was not JSON grant_type=%s status=%s",
                grant_type,
                response.status_code,
            )
            raise ProviderMalformedResponse() from error

        record = TokenRecord.from_payload(payload, received_at=received_at)
        logger.info(
            "Token grant succeeded grant_type=%s expires_in=%s has_refresh_token=%s",
            grant_type,
            record.expires_in,
            record.refresh_token is not None,
        )
        return record

    async def exchange_code(self, code: str, redirect_uri: str) -> TokenRecord:
        return await self.grant(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
            }
        )

    async def refresh(self, refresh_token: str) -> TokenRecord:
        return await self.grant(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            }
        )
