"""FastAPI server streaming generated thoughts with SSE.

This module provides:
1. POST /thought - per-character SSE stream relayed from the inference backend
2. GET /health - status, timestamp and configured backend target
3. GET /api/info - server limits and endpoint listing
4. Lifespan wiring: client state store, sweeper task, background backend probe
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from thought_relay.admission import MIN_INTERVAL_SECONDS, AdmissionController
from thought_relay.cancellation import CancelReason, CancelToken
from thought_relay.config import Settings, load_settings
from thought_relay.session import SessionOrchestrator
from thought_relay.state import HISTORY_CAPACITY, ClientStateStore, run_sweeper
from thought_relay.upstream import STREAM_TIMEOUT_SECONDS, UpstreamForwarder, check_backend

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

SERVER_NAME = "Thought Relay"
VERSION = "1.0.0"

settings: Settings = load_settings()


class HealthResponse(BaseModel):
    """Response model for health check."""
    status: str
    timestamp: str
    ollama: str
    model: str


def _get_client_ip(http_request: Request) -> str:
    """Extract real client IP, honouring a proxy's X-Forwarded-For header."""
    forwarded = http_request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return http_request.client.host if http_request.client else "unknown"


def build_orchestrator(settings: Settings) -> SessionOrchestrator:
    """Create the store, admission controller and forwarder for one app run."""
    store = ClientStateStore(min_interval=MIN_INTERVAL_SECONDS)
    forwarder = UpstreamForwarder(settings.ollama_host, settings.model)
    return SessionOrchestrator(store, AdmissionController(store), forwarder)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build shared state and start the sweeper on startup, tear down on shutdown."""
    logger.info("=" * 60)
    logger.info(f"{SERVER_NAME} Starting")
    logger.info("=" * 60)

    orchestrator = build_orchestrator(settings)
    app.state.orchestrator = orchestrator

    logger.info(f"Backend: {settings.ollama_host}")
    logger.info(f"Model: {settings.model}")
    logger.info(f"Rate limit: {MIN_INTERVAL_SECONDS * 1000:.0f}ms per client")

    # Unreachable backend is not fatal: requests fall back to canned thoughts
    probe = asyncio.create_task(
        check_backend(orchestrator.forwarder.client, settings.ollama_host, settings.model)
    )
    sweeper = asyncio.create_task(run_sweeper(orchestrator.store))

    logger.info("=" * 60)
    logger.info("Server ready!")
    logger.info("=" * 60)

    yield

    logger.info("Server shutting down...")
    probe.cancel()
    sweeper.cancel()
    await asyncio.gather(probe, sweeper, return_exceptions=True)
    await orchestrator.forwarder.aclose()


app = FastAPI(
    title=SERVER_NAME,
    description="Streams an AI persona's thoughts character by character over SSE",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type"],
)


async def thought_sse_stream(
    orchestrator: SessionOrchestrator,
    client_id: str,
) -> AsyncGenerator[str, None]:
    """Run a session and yield its SSE frames as they are produced.

    The session writes frames into an asyncio.Queue; this generator drains it.
    If the generator is closed early (client disconnected) the session's
    cancel token fires, which aborts the backend request.

    Args:
        orchestrator: SessionOrchestrator for this app
        client_id: Admitted client identity

    Yields:
        SSE-formatted strings
    """
    queue: asyncio.Queue[str | None] = asyncio.Queue()
    cancel = CancelToken()

    async def _sink(frame: str) -> None:
        queue.put_nowait(frame)

    async def _run_session() -> None:
        try:
            outcome = await orchestrator.run(client_id, _sink, cancel)
            logger.debug(f"Session for {client_id} ended: {outcome.value}")
        finally:
            # Signal completion
            queue.put_nowait(None)

    task = asyncio.create_task(_run_session())

    try:
        while True:
            frame = await queue.get()
            if frame is None:
                break
            yield frame
        await task
    finally:
        if not task.done():
            cancel.cancel(CancelReason.DISCONNECT)
            await asyncio.gather(task, return_exceptions=True)


# Routes
@app.post("/thought")
async def thought(http_request: Request):
    """Stream a new thought with Server-Sent Events.

    Rate limited: one request per client every 3 seconds.
    """
    orchestrator: SessionOrchestrator = http_request.app.state.orchestrator
    client_ip = _get_client_ip(http_request)

    decision = orchestrator.admit(client_ip)
    if not decision.allowed:
        raise HTTPException(
            status_code=429,
            detail={
                "error": "Rate limit exceeded",
                "message": f"Please wait {decision.retry_after} seconds before requesting another thought.",
            },
            headers={"Retry-After": str(decision.retry_after)},
        )

    return StreamingResponse(
        thought_sse_stream(orchestrator, client_ip),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Report server status and the configured backend."""
    return HealthResponse(
        status="ok",
        timestamp=datetime.now(timezone.utc).isoformat(),
        ollama=settings.ollama_host,
        model=settings.model,
    )


@app.get("/api/info")
async def get_info(http_request: Request):
    """Get server limits and endpoint information."""
    orchestrator: SessionOrchestrator = http_request.app.state.orchestrator

    return {
        "server": SERVER_NAME,
        "version": VERSION,
        "model": settings.model,
        "limits": {
            "min_interval_seconds": MIN_INTERVAL_SECONDS,
            "history_per_client": HISTORY_CAPACITY,
            "stream_timeout_seconds": STREAM_TIMEOUT_SECONDS,
        },
        "clients": orchestrator.store.stats(),
        "endpoints": {
            "/thought": "Thought generation (POST, SSE streaming)",
            "/health": "Health check",
            "/api/info": "Server information",
        },
    }


def main():
    """Run the server."""
    import uvicorn

    logger.info(f"Starting server on {settings.host}:{settings.port}")

    uvicorn.run(
        "thought_relay.server:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level="info",
    )


if __name__ == "__main__":
    main()
