# app/main.py

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import Settings, get_settings
from app.core.exceptions import ConfigurationError
from app.core.jobs import JobStore
from app.core.logging import get_logger, setup_logging
from app.routers import (
    document_fetcher_router,
    file_converter_router,
    image_resizer_router,
    password_generator_router,
    qr_code_router,
    realtime_router,
)
from app.services.archive import ArchiveAssembler
from app.services.broadcaster import ConnectionManager
from app.services.cleanup import run_cleanup_loop, run_status_loop


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan - startup and shutdown"""
        # Startup
        setup_logging(log_level=settings.LOG_LEVEL, enable_json=settings.LOG_JSON)
        logger.info("Starting Utility Hub API", version=settings.APP_VERSION)

        background = []
        try:
            settings.ensure_directories()
            logger.info(
                "Storage directories ready",
                download_dir=str(settings.DOWNLOAD_DIR),
                upload_dir=str(settings.UPLOAD_DIR),
            )

            manager = ConnectionManager(broadcast_to_all=settings.BROADCAST_TO_ALL)
            app.state.connection_manager = manager

            # first sweep runs immediately, then every CLEANUP_INTERVAL_SECONDS
            background.append(
                asyncio.create_task(
                    run_cleanup_loop(
                        [settings.DOWNLOAD_DIR, settings.UPLOAD_DIR],
                        settings.retention_seconds,
                        settings.CLEANUP_INTERVAL_SECONDS,
                    )
                )
            )
            background.append(
                asyncio.create_task(run_status_loop(manager, settings.SERVER_STATUS_INTERVAL))
            )

            yield

        except ConfigurationError as e:
            logger.error("Configuration error during startup", error=e.message)
            raise
        finally:
            # Shutdown
            for task in background:
                task.cancel()
            await asyncio.gather(*background, return_exceptions=True)
            logger.info("Shutting down Utility Hub API")

    app = FastAPI(title="Utility Hub API", version=settings.APP_VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.job_store = JobStore()
    app.state.archive_assembler = ArchiveAssembler(settings.DOWNLOAD_DIR)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(realtime_router)
    app.include_router(password_generator_router)
    app.include_router(qr_code_router)
    app.include_router(image_resizer_router)
    app.include_router(file_converter_router)
    app.include_router(document_fetcher_router)

    return app


app = create_app()
