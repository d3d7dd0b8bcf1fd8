from __future__ import annotations

import re
import secrets as secrets_module
import uuid

import structlog

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{8,128}$")


def coerce_request_id(value: str | None) -> str:
    if value and _REQUEST_ID_RE.fullmatch(value):
        return value
    return uuid.uuid4().hex


def parse_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.strip().lower() != "bearer" or not token:
        return None
    return token


def constant_time_equals(a: str, b: str) -> bool:
    return secrets_module.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def _is_protected_path(path: str) -> bool:
    return path.startswith("/v1/")


def error_body(message: str, request_id: str | None) -> dict[str, object]:
    return {"success": False, "message": message, "request_id": request_id}


def install_middlewares(app, *, cfg) -> None:
    """Request ids, admin token auth and response hardening for the admin API."""
    from fastapi.responses import JSONResponse
    from starlette.middleware.base import BaseHTTPMiddleware
    from starlette.requests import Request

    class RequestIdMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request: Request, call_next):
            request_id = coerce_request_id(request.headers.get("x-request-id"))
            request.state.request_id = request_id
            structlog.contextvars.bind_contextvars(request_id=request_id)
            try:
                response = await call_next(request)
            finally:
                structlog.contextvars.clear_contextvars()
            response.headers.setdefault("X-Request-Id", request_id)
            return response

    class SecurityHeadersMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request: Request, call_next):
            response = await call_next(request)
            response.headers.setdefault("X-Content-Type-Options", "nosniff")
            response.headers.setdefault("X-Frame-Options", "DENY")
            response.headers.setdefault("Referrer-Policy", "no-referrer")
            if not cfg.enable_api_docs:
                response.headers.setdefault("X-Robots-Tag", "noindex, nofollow")
            if _is_protected_path(request.url.path):
                # Answers may embed generated content and key labels.
                response.headers.setdefault("Cache-Control", "no-store")
            return response

    class BearerAuthMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request: Request, call_next):
            expected = cfg.server_auth_token
            if not expected or not _is_protected_path(request.url.path):
                return await call_next(request)

            token = parse_bearer_token(request.headers.get("authorization"))
            if not token or not constant_time_equals(token, expected):
                return JSONResponse(
                    status_code=401,
                    headers={"WWW-Authenticate": 'Bearer realm="aiwire"'},
                    content=error_body(
                        "Missing or invalid authentication token.",
                        getattr(request.state, "request_id", None),
                    ),
                )
            return await call_next(request)

    app.add_middleware(BearerAuthMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    # Outermost, so X-Request-Id is set even when auth short-circuits.
    app.add_middleware(RequestIdMiddleware)
