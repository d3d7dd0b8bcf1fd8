from __future__ import annotations

import os
from contextlib import asynccontextmanager

from pydantic import BaseModel, Field

from .config import AiWireConfig
from .dispatcher import Dispatcher
from .errors import ConfigurationError, ProviderError
from .http_security import error_body, install_middlewares
from .janitor import CacheJanitor
from .logging import configure_logging
from .metrics import maybe_start_metrics, server_requests_total
from .options import AskOptions
from .vendors import VENDORS


class AskRequest(BaseModel):
    message: str = Field(min_length=1)
    options: AskOptions = Field(default_factory=AskOptions)


class TestCredentialRequest(BaseModel):
    api_key: str = Field(min_length=1)
    model: str | None = None


def _secrets(cfg: AiWireConfig) -> list[str]:
    keys = [c.key for creds in cfg.credentials.values() for c in creds if c.key]
    return keys + [s for s in (cfg.fernet_key, cfg.server_auth_token) if s]


def create_app(cfg: AiWireConfig | None = None, dispatcher: Dispatcher | None = None):
    try:
        from fastapi import FastAPI, Request
        from fastapi.responses import JSONResponse
    except ImportError as e:  # pragma: no cover
        raise RuntimeError('Install the "server" extra: pip install -e ".[server]"') from e

    cfg = cfg or AiWireConfig().with_stored_credentials()
    configure_logging(level=cfg.log_level, fmt=cfg.log_format, secrets=_secrets(cfg))
    dispatcher = dispatcher or Dispatcher(cfg)
    janitor = CacheJanitor(dispatcher.sweep_expired_cache, interval_seconds=cfg.cache_sweep_interval_seconds)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        maybe_start_metrics(enable=cfg.enable_metrics, bind=cfg.metrics_bind, port=cfg.metrics_port)
        janitor.start()
        try:
            yield
        finally:
            await janitor.stop()
            await dispatcher.aclose()

    app = FastAPI(
        title="aiwire-provider",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if cfg.enable_api_docs else None,
        redoc_url="/redoc" if cfg.enable_api_docs else None,
        openapi_url="/openapi.json" if cfg.enable_api_docs else None,
    )
    app.state.dispatcher = dispatcher
    app.state.janitor = janitor

    @app.middleware("http")
    async def _count_requests(request: Request, call_next):
        response = await call_next(request)
        route = request.scope.get("route")
        path = getattr(route, "path", request.url.path)
        server_requests_total.labels(path=path, status=str(response.status_code)).inc()
        return response

    install_middlewares(app, cfg=cfg)

    def _request_id(request) -> str | None:
        return getattr(getattr(request, "state", None), "request_id", None)

    @app.exception_handler(ConfigurationError)
    async def _config_error_handler(request, exc: ConfigurationError):
        return JSONResponse(status_code=400, content=error_body(str(exc), _request_id(request)))

    @app.exception_handler(ProviderError)
    async def _provider_error_handler(request, exc: ProviderError):
        return JSONResponse(status_code=500, content=error_body(str(exc), _request_id(request)))

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/v1/ask")
    async def ask(req: AskRequest) -> dict:
        result = await dispatcher.ask(req.message, req.options)
        return result.to_dict()

    @app.post("/v1/ask/fallback")
    async def ask_with_fallback(req: AskRequest) -> dict:
        result = await dispatcher.ask_with_fallback(req.message, req.options)
        return result.to_dict()

    @app.get("/v1/providers")
    async def providers() -> dict:
        return {
            vendor: {
                "label": s.label,
                "active": s.active,
                "key_count": s.key_count,
                "default_model": VENDORS[vendor].default_model,
                "models": VENDORS[vendor].models,
            }
            for vendor, s in dispatcher.providers_status().items()
        }

    @app.post("/v1/providers/{vendor}/test")
    async def test_provider(vendor: str, req: TestCredentialRequest) -> dict:
        result = await dispatcher.test_credential(vendor, req.api_key, req.model)
        return {"success": result.success, "message": result.message}

    @app.get("/v1/cache/stats")
    async def cache_stats() -> dict:
        stats = dispatcher.cache_stats()
        return {
            "total_files": stats.total_files,
            "total_size": stats.total_size,
            "partitions": stats.partitions,
            "expired": stats.expired,
        }

    @app.delete("/v1/cache")
    async def clear_cache(context_id: int | None = None) -> dict[str, int]:
        if context_id is None:
            return {"removed": dispatcher.clear_all_cache()}
        return {"removed": dispatcher.clear_cache(context_id)}

    return app


def main() -> None:  # pragma: no cover
    try:
        import uvicorn
    except ImportError as e:
        raise RuntimeError('Install the "server" extra: pip install -e ".[server]"') from e

    host = os.getenv("HOST", "127.0.0.1")
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("aiwire_provider.server:create_app", host=host, port=port, factory=True)


if __name__ == "__main__":  # pragma: no cover
    main()
