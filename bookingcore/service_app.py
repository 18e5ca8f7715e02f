"""FastAPI application factory shared by the users, rooms and reservations services."""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from .config import get_settings
from .database import Base, engine
from .error_handlers import apply_error_handlers
from .logging_middleware import add_audit_middleware

settings = get_settings()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.default_rate_limit],
    enabled=settings.rate_limiting_enabled,
)

StartupHook = Callable[[FastAPI], None]


def rate_limit_handler(_: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={"detail": f"Rate limit exceeded: {exc.detail}", "code": "rate_limited"},
    )


def _lifespan(on_startup: Optional[StartupHook]):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if settings.run_db_migrations:
            Base.metadata.create_all(bind=engine)
        if on_startup is not None:
            on_startup(app)
        yield

    return lifespan


def create_service_app(
    title: str,
    service_name: str,
    *,
    version: str = "0.3.0",
    on_startup: Optional[StartupHook] = None,
) -> FastAPI:
    """Build a service app with CORS, rate limiting, audit logging, metrics and error mapping."""

    app = FastAPI(title=title, version=version, lifespan=_lifespan(on_startup))
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    apply_error_handlers(app)
    add_audit_middleware(app, service_name)
    Instrumentator().instrument(app).expose(app)

    @app.get("/health", tags=["health"])
    def health() -> dict[str, str]:
        return {"status": "ok", "service": service_name}

    return app
