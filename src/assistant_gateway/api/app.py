from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from assistant_gateway.api.errors import install_error_handlers
from assistant_gateway.api.routes.channels import router as channels_router
from assistant_gateway.api.routes.chat import router as chat_router
from assistant_gateway.api.routes.directory import router as directory_router
from assistant_gateway.api.routes.health import router as health_router
from assistant_gateway.api.routes.operations import router as operations_router
from assistant_gateway.bootstrap import GatewayRuntime


def create_app(runtime: GatewayRuntime, *, manage_lifecycle: bool = True) -> FastAPI:
    """Build the FastAPI app around an already bootstrapped runtime.

    With manage_lifecycle the app starts the assistant client and chat channels
    on startup and tears everything down on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        if manage_lifecycle:
            logger.info("Starting assistant gateway...")
            await runtime.startup()
            logger.info(f"Assistant gateway ready in {runtime.lifecycle.get_current_directory()}")
        yield
        if manage_lifecycle:
            logger.info("Shutting down assistant gateway...")
            await runtime.shutdown()
            logger.info("Assistant gateway stopped")

    app = FastAPI(title="Assistant Gateway", version="0.1.0", lifespan=lifespan)
    app.state.runtime = runtime

    app.add_middleware(
        CORSMiddleware,
        allow_origins=runtime.config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_error_handlers(app)

    app.include_router(health_router, prefix="/api")
    app.include_router(chat_router, prefix="/api")
    app.include_router(directory_router, prefix="/api")
    app.include_router(channels_router, prefix="/api")
    app.include_router(operations_router, prefix="/api")
    return app
