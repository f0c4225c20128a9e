"""
Lopilot - Local API for the desktop chat client.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, settings
from .api import chat_router, sessions_router, inventory_router
from .core.ambient import AmbientContextProvider
from .core.logging_config import setup_logging
from .core.orchestrator import SessionOrchestrator
from .core.session_repository import SessionRepository
from .llm import create_inference_client
from .middleware import RequestLoggingMiddleware
from .services import BackendLauncher
from .storage import LocalStorage, PreferenceStore, SessionStore

# Logger will be initialized after setup_logging() is called
logger = logging.getLogger(__name__)


def build_orchestrator(config: Settings) -> SessionOrchestrator:
    """Wire the engine from settings."""
    storage = LocalStorage(config.storage_path)
    client = create_inference_client(config)
    return SessionOrchestrator(
        repository=SessionRepository(SessionStore(storage, key=config.history_key)),
        client=client,
        ambient=AmbientContextProvider(
            user_name=config.user_display_name,
            ignored_apps=config.ignored_focus_apps,
        ),
        preferences=PreferenceStore(storage, key=config.preferences_key),
        default_model=config.default_model,
        max_attachments=config.max_attachments,
        stream_update_interval=config.stream_update_interval,
    )


def create_app(
    orchestrator: Optional[SessionOrchestrator] = None,
    config: Settings = settings,
    configure_logging: bool = True,
) -> FastAPI:
    """
    Create the API application.

    Args:
        orchestrator: Pre-built orchestrator (tests inject one with a fake client)
        config: Settings to build from when no orchestrator is given
        configure_logging: Install the logging handlers on startup
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if configure_logging:
            setup_logging(config)

        engine = orchestrator or build_orchestrator(config)
        launcher = BackendLauncher(engine.client, binary=config.ollama_binary, enabled=config.launch_backend)
        await launcher.ensure_running()
        await engine.start()
        app.state.orchestrator = engine

        logger.info(f"Starting {config.app_name} v{config.app_version}")
        logger.info(f"Storage path: {config.storage_path}")
        logger.info(f"Inference server: {config.ollama_base_url}")
        yield
        await engine.shutdown()
        await launcher.shutdown()
        await engine.client.aclose()
        logger.info(f"Shutting down {config.app_name}")

    app = FastAPI(
        title=config.app_name,
        version=config.app_version,
        description="Chat engine for a local large-language-model runtime",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Added after CORS so it wraps the CORS layer
    if config.log_api_requests:
        app.add_middleware(RequestLoggingMiddleware)

    app.include_router(sessions_router)
    app.include_router(chat_router)
    app.include_router(inventory_router)

    @app.get("/")
    async def root():
        engine = app.state.orchestrator
        return {
            "app": config.app_name,
            "version": config.app_version,
            "status": "running",
            "state": engine.state.value,
        }

    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the local API with uvicorn."""
    import uvicorn

    uvicorn.run("lopilot.main:app", host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    run()
