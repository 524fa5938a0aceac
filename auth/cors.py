from __future__ import annotations

from starlette.requests import Request
from starlette.responses import JSONResponse, Response

DEV_CORS_ORIGINS = {"http://localhost:5173"}


def _is_allowed_origin(origin: str | None, allowed_origins: set[str]) -> bool:
    return bool(origin and origin in allowed_origins)


def apply_cors_response(
    request: Request,
    response: Response,
    allowed_origins: set[str],
) -> Response:
    origin = request.headers.get("origin")
    if _is_allowed_origin(origin, allowed_origins):
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
    response.headers["Vary"] = "Origin"
    return response


def cors_preflight_response(request: Request, allowed_origins: set[str]) -> Response:
    return apply_cors_response(request, Response(status_code=204), allowed_origins)


def cors_json_response(
    request: Request,
    allowed_origins: set[str],
    payload: dict,
    status_code: int = 200,
) -> Response:
    return apply_cors_response(
        request,
        JSONResponse(payload, status_code=status_code),
        allowed_origins,
    )
