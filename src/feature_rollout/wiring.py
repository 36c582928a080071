from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from .config import Settings
from .exceptions import FeatureRolloutError
from .logging_config import get_logger

logger = get_logger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create a fully routed FastAPI application.

    This registers routers, middleware and error handlers but intentionally
    doesn't run the side-effectful wiring (cache client, DB engine, background
    tasks), which is performed by the composition root at startup. Tests that
    call create_app() install their own session factory and scheduler.
    """
    if settings is None:
        settings = Settings()

    app = FastAPI(title="Feature Rollout Service")
    app.state.settings = settings

    from .metrics import metrics_response
    from .middleware.metrics_middleware import MetricsMiddleware
    from .routers import feature_flags, health

    app.include_router(health.router)
    app.include_router(feature_flags.router)

    app.add_middleware(MetricsMiddleware)

    @app.get("/metrics")
    async def _metrics():
        data, content_type = metrics_response()
        return Response(content=data, media_type=content_type)

    @app.exception_handler(FeatureRolloutError)
    async def _feature_rollout_error_handler(request: Request, exc: FeatureRolloutError):
        if exc.status_code >= 500:
            logger.error(
                "request_failed", path=request.url.path, error=str(exc), status=exc.status_code
            )
        return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})

    return app


__all__ = ["create_app"]
