"""
driversign_compliance.api.app

FastAPI app factory for the driver-signing compliance service.

Responsibilities:
- Build the FastAPI application and register routers/middleware.
- Initialize and dispose shared infrastructure (DB engine/session factory, policy store).
- Map domain exceptions to HTTP statuses in one place.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.status import HTTP_400_BAD_REQUEST, HTTP_404_NOT_FOUND

from driversign_compliance import __version__
from driversign_compliance.api.routers.dev_auth import router as dev_auth_router
from driversign_compliance.api.routers.evaluations import router as evaluations_router
from driversign_compliance.api.routers.health import router as health_router
from driversign_compliance.api.routers.internal.router import router as internal_router
from driversign_compliance.api.routers.policy import router as policy_router
from driversign_compliance.db.session import create_sessionmaker, engine_scope
from driversign_compliance.errors import NotFoundError, PolicyLoadError, UnreadableArtifact
from driversign_compliance.observability.logging import configure_logging, get_logger
from driversign_compliance.observability.middleware import RequestContextMiddleware
from driversign_compliance.policy.store import PolicyStore
from driversign_compliance.settings import Settings

log = get_logger(__name__)


def _load_policy_store(settings: Settings) -> PolicyStore:
    try:
        return PolicyStore.from_file(settings.policy_path)
    except PolicyLoadError as e:
        # Serve anyway: every lookup fails closed and /readyz reports not ready.
        log.error("policy_load_failed", path=settings.policy_path, error=str(e))
        return PolicyStore()


def create_app(*, settings: Settings, policy_store: PolicyStore | None = None) -> FastAPI:
    # Configure structured logging once at process startup (before app serves requests).
    configure_logging(service_name=settings.service_name, level=settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        log.info("startup", env=settings.env)
        # Engine + session factory live on app.state; routers reach them via `api.deps`.
        async with engine_scope(settings) as engine:
            app.state.engine = engine
            app.state.sessionmaker = create_sessionmaker(engine)
            app.state.policy_store = policy_store or _load_policy_store(settings)
            log.info("policy_active", version=app.state.policy_store.version)
            yield
        log.info("shutdown")

    app = FastAPI(
        title="Driver Signing Compliance",
        version=__version__,
        docs_url="/docs",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(RequestContextMiddleware)
    app.include_router(health_router, tags=["health"])
    app.include_router(dev_auth_router)
    app.include_router(internal_router)
    app.include_router(policy_router)
    app.include_router(evaluations_router)

    @app.exception_handler(NotFoundError)
    async def _policy_not_found(_: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(
            status_code=HTTP_404_NOT_FOUND,
            content={
                "detail": str(exc),
                "platform": exc.platform,
                "driver_class": exc.driver_class,
            },
        )

    @app.exception_handler(UnreadableArtifact)
    async def _unreadable(_: Request, exc: UnreadableArtifact) -> JSONResponse:
        return JSONResponse(
            # Literal: the 422 constant was renamed across Starlette releases.
            status_code=422,
            content={"detail": exc.reason, "path": exc.path},
        )

    @app.exception_handler(PolicyLoadError)
    async def _policy_load(_: Request, exc: PolicyLoadError) -> JSONResponse:
        log.warning("policy_reload_rejected", error=str(exc))
        return JSONResponse(status_code=HTTP_400_BAD_REQUEST, content={"detail": str(exc)})

    return app


# --- Module Notes -----------------------------------------------------------
# App composition stays here; evaluation and dispatch stay in services/dispatch.
