"""FastAPI server for the sales intelligence agent.

Run with:
    uvicorn sales_intel.server:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from sales_intel.api.routes import router
from sales_intel.config import CORS_ORIGINS, JOB_WORKER_THREADS, SERVER_HOST, SERVER_PORT
from sales_intel.jobs.service import JobService
from sales_intel.jobs.worker import JobQueue
from sales_intel.services.metrics import metrics
from sales_intel.wiring import build_job_stack

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Start-up: build the job stack and start the worker threads.

    Jobs are handed from request handlers to the workers through the queue;
    nothing long-running happens on a request.
    """
    stack = build_job_stack()
    queue = JobQueue(stack.retrying_runner.run, workers=JOB_WORKER_THREADS)
    queue.start()
    application.state.store = stack.store
    application.state.queue = queue
    application.state.service = JobService(stack.store, queue.enqueue)
    application.state.config_provider = stack.config_provider
    logger.info("Intelligence job workers ready.")
    yield
    queue.stop()
    metrics.flush()


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="Sales Intelligence Agent",
    description=(
        "Runs an AI analyst over CRM deals, companies and contacts and "
        "tracks each analysis as a pollable job."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

# ── CORS (needed for the admin frontend) ────────────────────────────
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
    """Attach a unique request ID to every request for log correlation.

    The ID is echoed in the ``X-Request-ID`` response header.
    """
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info("[%s] %s %s", request_id, request.method, request.url.path)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ── Register routes ──────────────────────────────────────────────────
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Sales Intelligence Agent",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }


# ── CLI entry point ──────────────────────────────────────────────────

if __name__ == "__main__":
    logger.info("Starting sales intelligence API on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run("sales_intel.server:app", host=SERVER_HOST, port=SERVER_PORT)
