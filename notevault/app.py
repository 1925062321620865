from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from notevault.api.error_handling import register_exception_handlers
from notevault.api.routes import auth_router, notes_router, oauth_router
from notevault.config import get_settings
from notevault.logging import get_logger, set_correlation_id
from notevault.service.runtime import get_runtime

logger = get_logger(__name__)

__version__ = "0.1.0"

HEALTH_CHECK_TIMEOUT_SECONDS = 3


@asynccontextmanager
async def lifespan(app: FastAPI):
    runtime = get_runtime()
    logger.info(
        "app_started",
        version=__version__,
        store_type=type(runtime.store).__name__,
        github_configured=bool(runtime.settings.github_client_id),
    )
    yield
    pool = getattr(runtime.store, "pool", None)
    if pool is not None:
        pool.close()
    logger.info("app_stopped")


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="notevault", version=__version__, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
        max_age=3600,
    )

    @app.middleware("http")
    async def add_correlation_id(request, call_next):
        """Reuse the caller's X-Request-ID, or mint one, and echo it back."""
        correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        return response

    @app.middleware("http")
    async def add_security_headers(request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        # Token-bearing responses must never land in a shared cache
        if request.url.path.startswith(("/api/", "/auth/")):
            response.headers.setdefault("Cache-Control", "no-store")
        return response

    register_exception_handlers(app)
    app.include_router(auth_router)
    app.include_router(oauth_router)
    app.include_router(notes_router)

    @app.get("/health")
    async def health():
        store_ok = True
        try:
            await asyncio.wait_for(
                asyncio.to_thread(get_runtime().store.verify_connection),
                HEALTH_CHECK_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.error("health_check_timeout", timeout=HEALTH_CHECK_TIMEOUT_SECONDS)
            store_ok = False
        except Exception as exc:
            logger.error("health_check_store_failed", error=str(exc))
            store_ok = False
        return JSONResponse(
            status_code=200 if store_ok else 503,
            content={"ok": store_ok, "store": "healthy" if store_ok else "unhealthy"},
        )

    return app


app = create_app()
