"""modeldock - FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from modeldock import __version__
from modeldock.api import orchestrator_store
from modeldock.api.routes import chat, models
from modeldock.api.schemas import HealthResponse
from modeldock.config import API_PREFIX, HOST, PORT
from modeldock.utils.logging import logger

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    logger.info(f"modeldock v{__version__} starting...")
    logger.info(f"Server running at http://{HOST}:{PORT}")
    yield
    # Cleanup on shutdown
    if orchestrator_store.orchestrator:
        await orchestrator_store.orchestrator.shutdown()
    logger.info("modeldock stopped")


app = FastAPI(
    title="modeldock",
    description="Download, load and run local GGUF models",
    version=__version__,
    lifespan=lifespan,
)

# Configure CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routes
app.include_router(models.router, prefix=API_PREFIX)
app.include_router(chat.router, prefix=API_PREFIX)


@app.get(f"{API_PREFIX}/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="ok", version=__version__)


def run():
    import uvicorn

    uvicorn.run(app, host=HOST, port=PORT)


if __name__ == "__main__":
    run()
