"""
main.py

Main FastAPI application entry point.
Sets up logging, middleware, routes, the database and the provider clients.
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from chatgateway.api.auth_routes import router as auth_router
from chatgateway.api.chat_routes import router as chat_router
from chatgateway.api.context import GatewayContext
from chatgateway.api.conversation_routes import router as conversation_router
from chatgateway.api.db import build_engine, create_db_and_tables
from chatgateway.api.errors import register_error_handlers
from chatgateway.api.health_routes import router as health_router
from chatgateway.api.image_routes import router as image_router
from chatgateway.config import Settings, load_settings
from chatgateway.providers.client import ChatClientFactory, ChatProvider
from chatgateway.providers.images import ImageProvider


logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        stream=sys.stdout,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    for noisy in ("httpx", "autogen_core", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def build_chat_provider(settings: Settings) -> ChatProvider:
    factory = ChatClientFactory(
        model=settings.chat_model,
        base_url=settings.chat_base_url,
        api_key=settings.gemini_api_key,
        max_completion_tokens=settings.chat_max_tokens,
    )
    return ChatProvider(factory)


def build_image_provider(settings: Settings) -> ImageProvider:
    return ImageProvider(
        model=settings.image_model,
        base_url=settings.image_base_url,
        api_key=settings.image_api_key or settings.gemini_api_key,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan for the FastAPI application.

    The context is already built by create_app; shutdown closes the provider clients
    that hold connection pools.

    Args:
        app (FastAPI): The FastAPI application instance.

    Yields:
        None: This function yields control back to the FastAPI application.
    """
    # Startup
    logger.info("Starting Chat Gateway API...")

    yield

    # Shutdown
    context: GatewayContext = app.state.context
    for client in (context.chat_provider, context.image_provider, context.google_oauth, context.hosted_users):
        close = getattr(client, "close", None)
        if close is None:
            continue
        try:
            await close()
        except Exception as e:
            logger.warning(f"Error closing {type(client).__name__}: {str(e)}")
    context.engine.dispose()
    logger.info("Shutting down Chat Gateway API...")


def create_app(
    settings: Optional[Settings] = None,
    chat_provider=None,
    image_provider=None,
) -> FastAPI:
    """Build the gateway application.

    Args:
        settings (Optional[Settings]): Configuration. Defaults to load_settings().
        chat_provider: Replaces the streaming chat provider, e.g. with a fake in tests.
        image_provider: Replaces the image provider.

    Returns:
        FastAPI: The configured application, with its GatewayContext on app.state.context.
    """
    if settings is None:
        settings = load_settings()

    engine = build_engine(settings.database_url)
    create_db_and_tables(engine)

    context = GatewayContext(
        settings=settings,
        engine=engine,
        chat_provider=chat_provider or build_chat_provider(settings),
        image_provider=image_provider or build_image_provider(settings),
    )

    app = FastAPI(
        title="Chat Gateway",
        description="Authenticated conversational gateway streaming replies from a generation model",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.context = context

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    # Include routers
    app.include_router(auth_router)
    app.include_router(conversation_router)
    app.include_router(chat_router)
    app.include_router(image_router)
    app.include_router(health_router)

    @app.get("/")
    async def root():
        """Returns the service banner with the documentation path."""
        return {
            "message": "Chat Gateway",
            "docs": "/docs",
        }

    return app


def get_app() -> FastAPI:
    """Factory used by `uvicorn --factory chatgateway.main:get_app`."""
    settings = load_settings()
    configure_logging(settings.log_level)
    return create_app(settings)


if __name__ == "__main__":
    settings = load_settings()
    configure_logging(settings.log_level)
    uvicorn.run(
        "chatgateway.main:get_app",
        factory=True,
        host=settings.app_host,
        port=settings.app_port,
        timeout_keep_alive=300,
        timeout_graceful_shutdown=30,
    )
