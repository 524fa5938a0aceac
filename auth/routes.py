from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from starlette.requests import Request
from starlette.responses import RedirectResponse, Response
from starlette.routing import Route

from auth.cors import apply_cors_response, cors_json_response, cors_preflight_response
from auth.errors import BadRequest, GatewayError
from auth.gateway import OAuthGateway

logger = logging.getLogger(__name__)

DEFAULT_API_PREFIX = "/api/schwab"

Handler = Callable[[Request], Awaitable[Response]]


class OAuthRoutes:
    """HTTP surface over :class:`OAuthGateway`.

    Every response, errors included, goes through the CORS helpers so the
    browser can read it when the origin is allowed.
    """

    def __init__(
        self,
        gateway: OAuthGateway,
        *,
        cors_origins: set[str],
        prefix: str = DEFAULT_API_PREFIX,
    ) -> None:
        self.gateway = gateway
        self.cors_origins = set(cors_origins)
        self.prefix = prefix.rstrip("/")

    def routes(self) -> list[Route]:
        endpoints: list[tuple[str, str, Handler]] = [
            ("/auth-url", "GET", self._handle_auth_url),
            ("/auth", "GET", self._handle_auth_redirect),
            ("/exchange", "POST", self._handle_exchange),
            ("/callback", "GET", self._handle_callback),
            ("/refresh", "POST", self._handle_refresh),
        ]
        routes = []
        for path, method, handler in endpoints:
            full_path = f"{self.prefix}{path}"
            routes.append(Route(full_path, self._guarded(handler), methods=[method]))
            routes.append(Route(full_path, self._handle_preflight, methods=["OPTIONS"]))
        return routes

    # -- handlers --------------------------------------------------------------

    async def _handle_preflight(self, request: Request) -> Response:
        return cors_preflight_response(request, self.cors_origins)

    async def _handle_auth_url(self, request: Request) -> Response:
        authorization = await self.gateway.build_authorization_url(
            preferred_redirect=request.query_params.get("redirect_uri"),
            supplied_state=request.query_params.get("state"),
        )
        return self._json(request, authorization.to_response())

    async def _handle_auth_redirect(self, request: Request) -> Response:
        authorization = await self.gateway.build_authorization_url(
            preferred_redirect=request.query_params.get("redirect_uri"),
            supplied_state=request.query_params.get("state"),
        )
        return apply_cors_response(
            request,
            RedirectResponse(url=authorization.url, status_code=302),
            self.cors_origins,
        )

    async def _handle_exchange(self, request: Request) -> Response:
        payload = await self._json_body(request)
        record = await self.gateway.exchange_code(
            _optional_str(payload, "code"),
            state=_optional_str(payload, "state"),
            preferred_redirect=_optional_str(payload, "redirect_uri"),
        )
        return self._json(request, record.to_response())

    async def _handle_callback(self, request: Request) -> Response:
        await self.gateway.exchange_code(
            request.query_params.get("code"),
            state=request.query_params.get("state"),
            preferred_redirect=request.query_params.get("redirect_uri"),
        )
        return self._json(request, {"success": True, "message": "Tokens stored successfully"})

    async def _handle_refresh(self, request: Request) -> Response:
        payload = await self._json_body(request)
        record = await self.gateway.refresh(_optional_str(payload, "refresh_token"))
        return self._json(request, record.to_response())

    # -- helpers ---------------------------------------------------------------

    def _guarded(self, handler: Handler) -> Handler:
        async def endpoint(request: Request) -> Response:
            try:
                return await handler(request)
            except GatewayError as error:
                return self._json(request, error.payload(), error.status_code)
            except Exception as error:
                logger.error(
                    "Unhandled error path=%s reason=%s", request.url.path, type(error).__name__
                )
                internal = GatewayError()
                return self._json(request, internal.payload(), internal.status_code)

        return endpoint

    async def _json_body(self, request: Request) -> dict:
        try:
            payload = await request.json()
        except ValueError:
            raise BadRequest("Invalid JSON body.") from None
        if not isinstance(payload, dict):
            raise BadRequest("JSON body must be an object.")
        return payload

    def _json(self, request: Request, payload: dict, status_code: int = 200) -> Response:
        return cors_json_response(request, self.cors_origins, payload, status_code)


def _optional_str(payload: dict, key: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise BadRequest(f"{key} must be a string.")
    return value
