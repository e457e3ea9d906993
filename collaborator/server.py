"""FastAPI server for Collaborator.

Run with:
    uvicorn collaborator.server:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from collaborator.agent import create_collaborator_agent
from collaborator.api.routes import router
from collaborator.config import CORS_ORIGINS, SERVER_HOST, SERVER_PORT, validate_environment
from collaborator.services.metrics import metrics

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Validate configuration, then build the agent once and keep it in app state.

    A ``ConfigurationError`` propagates and aborts start-up.
    """
    validate_environment()
    logger.info("Building Collaborator agent…")
    application.state.agent = create_collaborator_agent()
    logger.info("Agent ready.")
    yield
    application.state.agent.close()
    application.state.agent = None
    metrics.flush()


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="Collaborator",
    description=(
        "Team chat assistant: summaries, message search, Planner tasks "
        "and e-mail, one capability per message."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a request ID to every request and echo it as ``X-Request-ID``."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info(
        "[%s] %s %s", request_id, request.method, request.url.path,
    )
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ── Register routes ──────────────────────────────────────────────────
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Collaborator",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }


if __name__ == "__main__":
    logger.info("Starting Collaborator API server on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "collaborator.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
    )
