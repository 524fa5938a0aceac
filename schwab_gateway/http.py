from __future__ import annotations

from datetime import datetime, timezone

from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from .constants import APP_VERSION


async def health_route(request: Request) -> Response:
    del request
    return JSONResponse(
        {
            "status": "ok",
            "version": APP_VERSION,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    )


def health_routes() -> list[Route]:
    return [Route("/health", health_route, methods=["GET"])]
