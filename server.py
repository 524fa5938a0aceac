from __future__ import annotations

import os

from starlette.applications import Starlette

from auth.gateway import OAuthGateway
from auth.redirect_policy import RedirectAllowList
from auth.routes import OAuthRoutes
from auth.state_store import MemoryStateStore, RedisStateStore, StateStore
from auth.token_client import TokenClient
from auth.token_store import FileTokenStore, SupabaseTokenStore, TokenStore
from schwab_gateway.constants import APP_VERSION, DEFAULT_HOST, DEFAULT_PORT, LOGGER
from schwab_gateway.env import (
    Settings,
    is_production,
    load_env,
    load_settings,
    setup_logging,
    validate_env,
)
from schwab_gateway.http import health_routes


def build_state_store(settings: Settings) -> StateStore:
    if settings.redis_url:
        return RedisStateStore.from_url(settings.redis_url, ttl_seconds=settings.state_ttl_seconds)
    if is_production():
        LOGGER.warning(
            "REDIS_URL is unset; OAuth state lives in process memory and is not "
            "shared between instances."
        )
    return MemoryStateStore(ttl_seconds=settings.state_ttl_seconds)


def build_token_store(settings: Settings) -> TokenStore:
    if settings.supabase_url and settings.supabase_service_role_key:
        return SupabaseTokenStore(
            settings.supabase_url,
            settings.supabase_service_role_key,
            table=settings.supabase_table,
        )
    return FileTokenStore(settings.token_store_path)


def build_gateway(
    settings: Settings,
    *,
    state_store: StateStore | None = None,
    token_client: TokenClient | None = None,
    token_store: TokenStore | None = None,
) -> OAuthGateway:
    redirects = RedirectAllowList(
        uris=settings.allowed_redirect_uris,
        default=settings.redirect_uri,
        allow_any=settings.allow_any_redirect,
    )
    if settings.allow_any_redirect:
        LOGGER.warning("SCHWAB_ALLOW_ANY_REDIRECT is on; redirect_uri is not allow-listed.")
    if not settings.enforce_state:
        LOGGER.warning("SCHWAB_ENFORCE_STATE is off; exchange does not validate state.")

    return OAuthGateway(
        client_id=settings.client_id,
        client_secret=settings.client_secret,
        redirects=redirects,
        state_store=state_store or build_state_store(settings),
        token_client=token_client
        or TokenClient(
            settings.client_id,
            settings.client_secret,
            token_url=settings.token_url,
            timeout=settings.token_timeout,
        ),
        token_store=token_store or build_token_store(settings),
        authorize_url=settings.authorize_url,
        enforce_state=settings.enforce_state,
        scope=settings.scope,
    )


def create_app(
    settings: Settings | None = None,
    *,
    gateway: OAuthGateway | None = None,
) -> Starlette:
    if settings is None:
        load_env()
        setup_logging()
        validate_env()
        settings = load_settings()

    gateway = gateway or build_gateway(settings)
    oauth_routes = OAuthRoutes(
        gateway,
        cors_origins=set(settings.cors_origins),
        prefix=settings.api_prefix,
    )

    app = Starlette(routes=[*health_routes(), *oauth_routes.routes()])
    app.state.gateway = gateway
    LOGGER.info(
        "Schwab OAuth gateway %s initialized prefix=%s cors_origins=%s allowed_redirects=%s",
        APP_VERSION,
        settings.api_prefix,
        sorted(settings.cors_origins),
        sorted(gateway.redirects.uris),
    )
    return app


def main() -> None:
    import uvicorn

    host = os.getenv("HOST", DEFAULT_HOST)
    port = int(os.getenv("PORT", str(DEFAULT_PORT)))
    app = create_app()
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
