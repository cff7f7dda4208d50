"""
HTTP API
========

FastAPI application exposing the assistant.

    from taskpilot.api import create_app

    app = create_app()                      # builds everything from config
    app = create_app(assistant=assistant)   # tests: inject a prepared assistant
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from taskpilot import __version__
from taskpilot.agent.core import TaskAssistant
from taskpilot.api.routes import health_router, router
from taskpilot.errors import InvalidRequestError, InvalidUserError
from taskpilot.utils.config import Config, get_config
from taskpilot.utils.logger import Logger

logger = Logger("API")


async def _invalid_request(request: Request, exc: InvalidRequestError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": str(exc)})


async def _invalid_user(request: Request, exc: InvalidUserError) -> JSONResponse:
    return JSONResponse(status_code=401, content={"error": "Invalid user"})


async def _internal_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}", exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def create_app(
    assistant: TaskAssistant | None = None,
    config: Config | None = None,
    environment: str | None = None
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        assistant: Prepared assistant; built from config at startup when omitted
        config: Configuration; loaded from the environment when needed and omitted
        environment: Reported by /health; defaults to the configured environment
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = app.state.assistant is None
        if owned:
            cfg = config or get_config()
            app.state.assistant = TaskAssistant.from_config(cfg)
            if app.state.environment is None:
                app.state.environment = cfg.server.environment
        if app.state.environment is None:
            app.state.environment = "development"

        logger.info(f"TaskPilot API v{__version__} started ({app.state.environment})")
        yield

        if owned:
            await app.state.assistant.close()
        else:
            await app.state.assistant.drain()
        logger.info("TaskPilot API stopped")

    app = FastAPI(title="TaskPilot", version=__version__, lifespan=lifespan)
    app.state.assistant = assistant
    app.state.environment = environment or (config.server.environment if config else None)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(InvalidRequestError, _invalid_request)
    app.add_exception_handler(InvalidUserError, _invalid_user)
    app.add_exception_handler(Exception, _internal_error)

    app.include_router(router, prefix="/api", tags=["chat"])
    app.include_router(health_router, tags=["health"])
    return app


__all__ = ["create_app"]
