import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

# Load env from buddyup/.env
package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(package_dir, ".env"))

from buddyup.api import challenges, dashboard, habits, health, metrics, partnerships, timeline  # noqa: E402
from buddyup.core.config import settings, validate_config  # noqa: E402
from buddyup.core.database import get_database_url  # noqa: E402
from buddyup.core.errors import (  # noqa: E402
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from buddyup.core.logging import configure_logging  # noqa: E402
from buddyup.core.middleware.request_id import RequestIdMiddleware  # noqa: E402
from buddyup.core.middleware.tracing import TracingMiddleware  # noqa: E402
from buddyup.core.tracing import setup_tracing  # noqa: E402
from buddyup.features.engine import Engine  # noqa: E402
from buddyup.features.notifications.dispatcher import build_notifier  # noqa: E402
from buddyup.store import build_store  # noqa: E402

configure_logging(settings.ENV)
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))
setup_tracing(enabled=settings.OTEL_ENABLED)


def build_engine_from_settings() -> Engine:
    """Store from DATABASE_URL (memory when unset), notifier from NOTIFICATIONS_MODE."""
    store = build_store(get_database_url())
    notifier = build_notifier(settings.NOTIFICATIONS_MODE)
    return Engine(store, notifier)


def create_app(engine: Optional[Engine] = None) -> FastAPI:
    """
    Build the FastAPI app.

    Args:
        engine: prebuilt engine (tests); otherwise the lifespan builds one
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger = logging.getLogger("buddyup")
        logger.info("Starting BuddyUp engine...")
        app.state.startup_time = time.time()
        if getattr(app.state, "engine", None) is None:
            app.state.engine = build_engine_from_settings()
        logger.info(
            "engine.ready",
            extra={
                "store": type(app.state.engine.store).__name__,
                "notifier": app.state.engine.notifier.name,
            },
        )
        try:
            yield
        finally:
            logging.getLogger("buddyup").info("Stopping BuddyUp engine...")
            app.state.engine.close()

    app = FastAPI(title="BuddyUp - Accountability Engine", lifespan=lifespan)
    app.state.engine = engine

    # Middlewares
    app.add_middleware(TracingMiddleware)
    app.add_middleware(RequestIdMiddleware)

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # CORS (adjust origins in production)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.BASE_URL],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(partnerships.router)
    app.include_router(habits.router)
    app.include_router(challenges.router)
    app.include_router(dashboard.router)
    app.include_router(timeline.router)
    app.include_router(health.root_router)
    app.include_router(metrics.router)
    return app


app = create_app()


def run() -> None:
    """Serve the app with uvicorn (console entry point)."""
    import uvicorn

    uvicorn.run(
        "buddyup.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=False,
        log_level="info",
        access_log=True,
    )


if __name__ == "__main__":
    run()
