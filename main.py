# main.py
"""Main application: builds the services on startup and closes them on shutdown"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from config import settings
from services.logger_config import setup_logging
from api.endpoints import router
from services.factory import ServiceContainer

setup_logging()
logger = logging.getLogger(settings.LOGGER_NAME)


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    container = container or ServiceContainer(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager"""
        logger.info("Starting application...")
        await container.open()
        app.state.container = container
        logger.info("Services initialized")
        yield

        logger.info("Shutting down services...")
        await container.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title=settings.APP_TITLE,
        version=settings.APP_VERSION,
        lifespan=lifespan
    )
    app.include_router(router)
    return app

app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        log_level="info"
    )
