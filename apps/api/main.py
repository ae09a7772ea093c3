"""
FastAPI application entry point.

``create_app`` wires the store, the result cache, the routers and the
error handlers. Tests build their own app with an isolated store.
"""
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from core.cache import ResultCache, build_cache
from core.config import settings
from core.exceptions import EngineError, ErrorKind
from core.logging import log_fields, setup_logging
from core.store import Store
from routers import athletes, plans, progression
from services.catalog import seed_catalog
import logging

setup_logging()
logger = logging.getLogger(__name__)


def create_app(store: Optional[Store] = None, cache: Optional[ResultCache] = None) -> FastAPI:
    app = FastAPI(
        title="Adaptive Training & Progression Engine",
        description="Personalized running plans with XP, phases and achievements",
        version="1.0.0",
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
    )
    app.state.store = store or Store.from_url(settings.DATABASE_URL)
    app.state.cache = cache or build_cache(settings)

    @app.on_event("startup")
    def prepare_database():
        app.state.store.create_schema()
        seed_catalog(app.state.store)

    @app.on_event("shutdown")
    def release_resources():
        app.state.cache.close()
        app.state.store.dispose()
        logger.info("Store and cache released")

    @app.exception_handler(EngineError)
    async def engine_error_handler(request: Request, exc: EngineError):
        if exc.kind == ErrorKind.DATABASE:
            logger.error(
                f"Database failure: {exc.message}",
                extra=log_fields(method=request.method, path=request.url.path),
            )
        else:
            logger.info(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [{"loc": list(err["loc"]), "msg": err["msg"]} for err in exc.errors()]
        first = errors[0] if errors else {"loc": [], "msg": "Invalid request"}
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": {
                "code": "VALIDATION_ERROR",
                "message": f"{'.'.join(str(p) for p in first['loc'])}: {first['msg']}",
                "details": {"errors": errors},
            }},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler for unhandled errors."""
        logger.error(
            f"Unhandled exception: {exc}",
            exc_info=True,
            extra=log_fields(method=request.method, path=request.url.path),
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": {"code": "INTERNAL_ERROR", "message": "Internal server error", "details": {}}},
        )

    @app.get("/health")
    def health():
        """
        Health check for load balancers and uptime monitors.

        Returns:
            - 200: database reachable
            - 503: database unavailable
        """
        if not app.state.store.check_connection():
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "unhealthy", "database": "unavailable"},
            )
        return {"status": "healthy", "database": "ok", "cache": app.state.cache.get_stats()}

    app.include_router(athletes.router)
    app.include_router(plans.router)
    app.include_router(progression.router)

    return app


app = create_app()
