"""changeset-engine service entry point.

Initializes the FastAPI application with:
- Structured logging
- The core host (zones, snapshots, instructions, git, validations, state store)
- The safe-mode startup health check, when enabled

Run with: uvicorn changeset_engine.main:app
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from changeset_engine.api.router import router
from changeset_engine.host import create_core_host
from changeset_engine.observability import configure_logging, get_logger
from changeset_engine.settings import Settings

logger = get_logger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Engine settings; read from the environment when omitted.

    Returns:
        The configured FastAPI app.
    """
    app_settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Build the core host on startup and run the startup health check.

        Args:
            app: The FastAPI application instance.

        Yields:
            None
        """
        configure_logging(app_settings.log_level, json_logs=app_settings.log_json)
        logger.info("Starting change-set engine", service=app_settings.service_name)

        core_host = create_core_host(app_settings)
        await core_host.state_store.ensure_structure()
        app.state.core_host = core_host
        app.state.settings = app_settings

        if app_settings.startup_checks_enabled:
            result = await core_host.safe_mode_service.run_startup_checks()
            app.state.startup_check = result
            logger.info(
                "Startup checks complete",
                safe_mode_applied=result.safe_mode_applied,
                smoke_passed=result.smoke_passed,
                reason=result.reason,
            )
        else:
            await core_host.change_set_manager.ensure_baseline()

        logger.info("Change-set engine startup complete", project_root=core_host.zone_manager.project_root)

        yield

        logger.info("Change-set engine shutdown complete")

    app = FastAPI(title=app_settings.service_name, version="0.1.0", lifespan=lifespan)
    app.include_router(router, prefix="/api/v1")
    return app


app: FastAPI = create_app()
