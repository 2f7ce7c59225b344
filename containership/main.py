from __future__ import annotations

import asyncio
import platform
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from starlette.exceptions import HTTPException as StarletteHTTPException

from containership.api.errors import ErrorEnvelopeMiddleware, http_exception_handler
from containership.api.status import router as status_router
from containership.config import LoggingConfig, Settings, get_settings
from containership.lifecycle import TerminationHandler
from containership.observability.logging import ServiceLogger
from containership.observability.middleware import AccessLogMiddleware, RequestIdMiddleware


def create_app(settings: Settings | None = None, logger: ServiceLogger | None = None) -> FastAPI:
    settings = settings or get_settings()
    logger = logger or ServiceLogger(LoggingConfig.from_settings(settings))

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.install_exception_hooks()
        loop = asyncio.get_running_loop()
        previous_loop_handler = loop.get_exception_handler()
        loop.set_exception_handler(logger.handle_loop_exception)
        termination = TerminationHandler(logger)
        termination.install()

        logger.info(
            "Server started",
            port=settings.port,
            environment=settings.environment,
            service=settings.service_name,
            version=settings.service_version,
            python_version=platform.python_version(),
        )
        yield
        logger.info("Server stopped")
        termination.uninstall()
        loop.set_exception_handler(previous_loop_handler)
        logger.close()

    app = FastAPI(title=settings.service_name, version=settings.service_version, lifespan=lifespan)
    app.state.settings = settings
    app.state.logger = logger

    app.include_router(status_router)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)

    # add_middleware() wraps outward: the last one added runs first.
    app.add_middleware(ErrorEnvelopeMiddleware, logger=logger)
    app.add_middleware(AccessLogMiddleware, logger=logger)
    app.add_middleware(RequestIdMiddleware)
    return app
