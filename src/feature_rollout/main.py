# configure logging early so library messages emitted during import are rendered consistently
from .logging_config import get_logger

_early_logger = get_logger(__name__)

# IMPORTANT: import composition but do NOT create engines or clients at module
# import time. composition.wire_app() runs in on_startup(), so tests can set
# DATABASE_URL before any engines are created.
from . import composition

logger = get_logger(__name__)

# Create app using wiring.create_app() to avoid duplicating router/middleware registration
from .wiring import create_app

app = create_app()


@app.on_event("startup")
async def on_startup():
    # delegate runtime wiring to composition.wire_app; tests that use the
    # lighter-weight wiring.create_app() will not execute this function.
    app.state.wired = await composition.wire_app(app, app.state.settings)


@app.on_event("shutdown")
async def on_shutdown():
    wired = getattr(app.state, "wired", None)
    if wired is not None:
        await wired.teardown()
    logger.info("shutdown complete")


if __name__ == "__main__":
    import uvicorn

    settings = app.state.settings
    uvicorn.run("feature_rollout.main:app", host=settings.server_host, port=settings.server_port)
