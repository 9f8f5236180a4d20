"""FastAPI application factory for RCON dispatch functionality."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

from aiosqlite import connect as aiosqlite_connect
from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rcondispatch.command_router import (
    configure_command_router,
    configure_health_router,
)
from rcondispatch.config import configure_logging, load_config_from_env
from rcondispatch.dispatch import Dispatcher
from rcondispatch.targets import SqliteTargetDirectory

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from rcondispatch.config import AppConfig

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)


async def _validation_error_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Report malformed request bodies as 400 before they reach the dispatcher."""
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        message = error.get("msg", "invalid value")
        messages.append(f"{location}: {message}" if location else message)
    return JSONResponse(status_code=400, content={"error": "; ".join(messages)})


def add_exception_handlers(app: FastAPI) -> None:
    """Install the error translation shared by every route.

    :param app: The FastAPI application
    """
    app.add_exception_handler(RequestValidationError, _validation_error_handler)


def configure_fastapi_app(config: AppConfig) -> FastAPI:
    """Configure and return the FastAPI application.

    :param config: Application configuration
    :return: Configured FastAPI application
    """
    if not Path(config.database_path).parent.exists():
        Path(config.database_path).parent.mkdir(parents=True, exist_ok=True)
        LOGGER.info(
            "Created directory for database at %s",
            Path(config.database_path).parent,
        )

    if not Path(config.database_path).exists():
        LOGGER.info("Database file does not exist at %s", config.database_path)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[Any, Any]:
        """Application lifespan manager.

        Handles startup and shutdown of the dispatcher and the target database.
        """
        LOGGER.info("RCON dispatch API is starting")

        async with aiosqlite_connect(config.database_path) as db_connection:
            directory = SqliteTargetDirectory(db_connection)
            await directory.initialize_tables()

            async with Dispatcher(
                config.dispatcher_config,
                directory.get_target_config,
            ) as dispatcher:
                command_router = configure_command_router(APIRouter(), dispatcher)
                health_router = configure_health_router(APIRouter(), dispatcher)

                app.include_router(command_router, prefix="/servers", tags=["servers"])
                app.include_router(health_router, tags=["health"])

                yield

                LOGGER.info("RCON dispatch API is shutting down")

    app = FastAPI(
        title="RCON Dispatch API",
        version="0.1.0",
        lifespan=lifespan,
        root_path=config.root_path,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    add_exception_handlers(app)

    @app.get("/")
    def read_root() -> str:
        return "RCON Dispatch API"

    return app


def create_app(env_file: str | None = os.environ.get("ENV_FILE", ".env")) -> FastAPI:
    """Create and configure the FastAPI application.

    The default here is for uvicorn command line usage, in which case the user
    should set ENV_FILE environment variable if they want a different file.

    :param env_file: Optional path to the environment configuration file
    :return: Configured FastAPI application
    """
    config = load_config_from_env(env_file)
    configure_logging(config)
    return configure_fastapi_app(config)
