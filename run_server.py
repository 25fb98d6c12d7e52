#!/usr/bin/env python3
"""Startup script for the Thought Relay server.

Loads a .env file if present, then starts the FastAPI server with uvicorn.
Thoughts stream from POST /thought; health is at GET /health.

Usage:
    python run_server.py

Environment Variables:
    OLLAMA_HOST: Inference backend base URL (default: http://akio-ollama:11434)
    OLLAMA_MODEL: Model identifier (default: qwen3:8b)
    CORS_ORIGINS: Comma-separated allowed origins (default: *)
    HOST: Bind address (default: 0.0.0.0)
    PORT: Server port (default: 3000)
"""

import logging

import uvicorn
from dotenv import load_dotenv

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def main():
    """Start the Thought Relay server."""
    load_dotenv()

    from thought_relay.config import load_settings

    settings = load_settings()

    logger.info("=" * 60)
    logger.info("Starting Thought Relay")
    logger.info("=" * 60)
    logger.info(f"Host: {settings.host}")
    logger.info(f"Port: {settings.port}")
    logger.info(f"Backend: {settings.ollama_host}")
    logger.info(f"Model: {settings.model}")
    logger.info("=" * 60)

    uvicorn.run(
        "thought_relay.server:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level="info",
        access_log=True,
    )


if __name__ == "__main__":
    main()
