from contextlib import asynccontextmanager
import os
from typing import Optional

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from constants import ALLOWED_ORIGINS
from logging_config import get_logger, setup_logging
from routers.messages import messages_router
from services import ChatServices, build_services

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)


def create_app(services: Optional[ChatServices] = None) -> FastAPI:
    """Build the application. Services are created from configuration unless injected."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        chat_services = services or build_services()
        app.state.services = chat_services
        await chat_services.start()
        logger.info("Chat services started")
        try:
            yield
        finally:
            await chat_services.stop()
            logger.info("Chat services stopped")

    app = FastAPI(lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(messages_router)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket, token: Optional[str] = None):
        """Chat socket. The bearer token comes from the `token` query parameter or the Authorization header."""
        await websocket.app.state.services.gateway.serve(websocket, token)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    logger.info("FastAPI application initialized")
    return app


app = create_app()
