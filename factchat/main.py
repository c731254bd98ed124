"""FastAPI application entry point."""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from sqlalchemy import inspect

from factchat.config import settings
from factchat.dependencies import Services, build_services
from factchat.errors import register_error_handlers
from factchat.routes import chat, knowledge_base, threads

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

ALEMBIC_INI = os.path.join(os.path.dirname(os.path.dirname(__file__)), "alembic.ini")


def run_migrations() -> None:
    from alembic import command
    from alembic.config import Config

    command.upgrade(Config(ALEMBIC_INI), "head")


async def ensure_schema() -> None:
    """Run migrations unless the tables already exist."""
    from factchat.database import engine

    try:
        async with engine.connect() as conn:
            table_exists = await conn.run_sync(lambda sync_conn: inspect(sync_conn).has_table("knowledge_base_chunks"))

        if table_exists:
            logger.info("Database tables already exist, skipping migrations")
            return

        logger.info("Running database migrations...")
        await asyncio.to_thread(run_migrations)
        logger.info("Database migrations completed successfully")
    except Exception as e:
        logger.error(f"Startup database check/migration error: {e}")
        logger.info("Continuing startup - assuming database is ready")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting application...")
    owns_services = getattr(app.state, "services", None) is None
    if owns_services:
        await ensure_schema()
        app.state.services = build_services()

    yield

    logger.info("Shutting down application...")
    if owns_services:
        await app.state.services.aclose()


def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Build the application.

    Args:
        services: Pre-built service container; built at startup when omitted

    Returns:
        Configured FastAPI app
    """
    app = FastAPI(
        title="FactChat",
        description="Chat grounded in your own documents, with claim verification",
        version="0.1.0",
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    # Include routers
    app.include_router(chat.router)
    app.include_router(threads.router)
    app.include_router(knowledge_base.router)

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy"}

    # Stored uploads, addressed by ObjectStorage.get_download_url
    app.mount("/storage", StaticFiles(directory=settings.STORAGE_DIR, check_dir=False), name="storage")

    return app


app = create_app()
