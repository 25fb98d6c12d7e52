"""Streaming client for an Ollama-compatible inference backend.

This module provides:
1. GenerateRequest / GenerationOptions - outbound /api/generate body
2. BackendChunk - one decoded record of the NDJSON response stream
3. UpstreamForwarder - relays generated text to a sink one character at a time
4. check_backend() - startup probe for backend and model availability

The forwarder watches the growing transcript for repetition loops and honours a
CancelToken fired by either a client disconnect or its own wall-clock timeout.
"""

import asyncio
import enum
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from thought_relay.cancellation import CancelReason, CancelToken
from thought_relay.errors import UpstreamError
from thought_relay.repetition import is_repetitive, truncate_words

logger = logging.getLogger(__name__)

CharSink = Callable[[str], Awaitable[None]]

STREAM_TIMEOUT_SECONDS: float = 60.0
CONNECT_TIMEOUT_SECONDS: float = 10.0
REPETITION_CHECK_INTERVAL: int = 50
TRUNCATE_WORDS: int = 30
MAX_DEBUG_RECORDS: int = 3

# Response length varies on purpose: one in five thoughts is short
SHORT_BUDGET_PROBABILITY: float = 0.2
SHORT_BUDGET_RANGE: tuple[int, int] = (30, 79)
LONG_BUDGET_RANGE: tuple[int, int] = (100, 299)


class GenerationOptions(BaseModel):
    """Sampling options passed through to the backend untouched."""
    temperature: float = 0.85
    top_p: float = 0.9
    repeat_penalty: float = 1.15
    num_predict: int = 200


class GenerateRequest(BaseModel):
    """Body of POST /api/generate."""
    model: str
    prompt: str
    stream: bool = True
    think: bool = False
    options: GenerationOptions


class BackendChunk(BaseModel):
    """One NDJSON record from the backend.

    `response` carries the final answer text. `thinking` carries the model's
    internal reasoning and is never relayed.
    """
    model_config = ConfigDict(extra="allow")

    response: str | None = None
    thinking: str | None = None
    done: bool = False


class ForwardStatus(str, enum.Enum):
    COMPLETED = "completed"
    TRUNCATED = "truncated"
    CANCELLED = "cancelled"


@dataclass
class StreamSession:
    """Transcript state for one forwarded request."""
    text: str = ""
    chars_emitted: int = 0
    cancelled: bool = False
    loop_detected: bool = False
    completed: bool = False


@dataclass
class ForwardResult:
    text: str
    status: ForwardStatus
    chars_emitted: int

    @property
    def loop_detected(self) -> bool:
        return self.status is ForwardStatus.TRUNCATED


def sample_max_tokens(rng: random.Random) -> int:
    """Draw a token budget: 20% short (30-79), 80% medium/long (100-299)."""
    if rng.random() < SHORT_BUDGET_PROBABILITY:
        return rng.randint(*SHORT_BUDGET_RANGE)
    return rng.randint(*LONG_BUDGET_RANGE)


class UpstreamForwarder:
    """Relay a streaming generation from the backend to a character sink.

    Args:
        base_url: Backend root, e.g. http://localhost:11434
        model: Model identifier sent with every request
        client: Shared httpx.AsyncClient (created lazily if omitted)
        timeout: Wall-clock limit for one forwarded stream, in seconds
        options: Base sampling options; num_predict is redrawn per call
        rng: Random source for the token budget
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = STREAM_TIMEOUT_SECONDS,
        options: GenerationOptions | None = None,
        rng: random.Random | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.options = options or GenerationOptions()
        self.rng = rng or random.Random()
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        """Shared HTTP client, created on first use."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, connect=CONNECT_TIMEOUT_SECONDS),
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    def build_request(self, prompt: str) -> GenerateRequest:
        options = self.options.model_copy(update={"num_predict": sample_max_tokens(self.rng)})
        return GenerateRequest(model=self.model, prompt=prompt, options=options)

    async def forward(self, prompt: str, sink: CharSink, cancel: CancelToken) -> ForwardResult:
        """Stream a generation for prompt into sink.

        Disconnect and timeout both arrive through cancel. Once it fires the
        relay task is cancelled, which closes the backend response, and no
        more characters reach the sink.

        Args:
            prompt: Full prompt text
            sink: Awaitable callback receiving one character at a time
            cancel: Token fired on client disconnect; the timeout fires it too

        Returns:
            ForwardResult with the (possibly truncated) transcript

        Raises:
            UpstreamError: Backend unreachable or non-success status
        """
        request = self.build_request(prompt)
        session = StreamSession()

        logger.debug(
            f"Calling {self.base_url}/api/generate with model {self.model}, "
            f"prompt length {len(prompt)}, num_predict {request.options.num_predict}"
        )

        loop = asyncio.get_running_loop()
        watchdog = loop.call_later(self.timeout, cancel.cancel, CancelReason.TIMEOUT)
        relay = asyncio.create_task(self._relay(request, session, sink, cancel))
        cancel_wait = asyncio.create_task(cancel.wait())

        try:
            await asyncio.wait({relay, cancel_wait}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            watchdog.cancel()
            cancel_wait.cancel()
            if not relay.done():
                relay.cancel()
                await asyncio.gather(relay, return_exceptions=True)

        error = None if relay.cancelled() else relay.exception()

        if cancel.cancelled and not session.completed and not session.loop_detected:
            session.cancelled = True
            logger.info(
                f"Stream cancelled ({cancel.reason.value}) after {session.chars_emitted} characters"
            )
            return ForwardResult(session.text, ForwardStatus.CANCELLED, session.chars_emitted)

        if error is not None:
            raise error

        if session.loop_detected:
            return ForwardResult(session.text, ForwardStatus.TRUNCATED, session.chars_emitted)

        if session.chars_emitted == 0:
            logger.warning("No characters were streamed; backend sent no 'response' text")
        logger.debug(f"Streamed {session.chars_emitted} characters")

        return ForwardResult(session.text, ForwardStatus.COMPLETED, session.chars_emitted)

    async def _relay(
        self,
        request: GenerateRequest,
        session: StreamSession,
        sink: CharSink,
        cancel: CancelToken,
    ) -> None:
        url = f"{self.base_url}/api/generate"
        records = 0

        try:
            async with self.client.stream("POST", url, json=request.model_dump()) as response:
                if not response.is_success:
                    raise UpstreamError(
                        f"Ollama error: {response.status_code}",
                        status_code=response.status_code,
                    )

                async for line in response.aiter_lines():
                    if cancel.cancelled:
                        return

                    line = line.strip()
                    if not line:
                        continue

                    try:
                        chunk = BackendChunk.model_validate_json(line)
                    except ValidationError as e:
                        logger.warning(f"Skipping undecodable record {line[:100]!r}: {e.error_count()} error(s)")
                        continue

                    records += 1
                    if records <= MAX_DEBUG_RECORDS:
                        logger.debug(f"Record #{records} fields: {', '.join(chunk.model_dump(exclude_none=True))}")

                    if chunk.response and not await self._emit(chunk.response, session, sink, cancel):
                        return

                    if chunk.done:
                        logger.debug(f"Backend signalled completion after {records} records")
                        break

            session.completed = True
        except httpx.HTTPError as e:
            raise UpstreamError(f"Backend request failed: {e}") from e

    async def _emit(
        self,
        text: str,
        session: StreamSession,
        sink: CharSink,
        cancel: CancelToken,
    ) -> bool:
        """Send text to the sink character by character.

        Returns:
            False when relaying must stop (cancelled or repetition loop)
        """
        for char in text:
            if cancel.cancelled:
                session.cancelled = True
                return False

            await sink(char)
            session.text += char
            session.chars_emitted += 1

            if session.chars_emitted % REPETITION_CHECK_INTERVAL == 0 and is_repetitive(session.text):
                session.loop_detected = True
                session.text = truncate_words(session.text, TRUNCATE_WORDS)
                logger.warning(
                    f"Repetition loop detected after {session.chars_emitted} characters, "
                    f"truncated to {TRUNCATE_WORDS} words"
                )
                return False

        return True


async def check_backend(client: httpx.AsyncClient, base_url: str, model: str) -> bool:
    """Log whether the backend is reachable and has the configured model.

    Returns:
        True if the model is listed by GET /api/tags
    """
    base_url = base_url.rstrip("/")
    try:
        response = await client.get(f"{base_url}/api/tags")
    except httpx.HTTPError as e:
        logger.error(f"❌ Failed to connect to Ollama: {e}")
        logger.error(f"   OLLAMA_HOST is set to: {base_url}")
        return False

    if not response.is_success:
        logger.error(f"❌ Cannot connect to Ollama at {base_url} (status {response.status_code})")
        return False

    try:
        models = response.json().get("models", [])
    except ValueError:
        logger.error(f"❌ Ollama at {base_url} returned an unreadable model list")
        return False

    has_model = any(m.get("name") == model or m.get("model") == model for m in models)
    logger.info(f"✅ Connected to Ollama at {base_url}")
    if has_model:
        logger.info(f"✅ Model '{model}' is available")
    else:
        logger.warning(f"Model '{model}' NOT FOUND - please run: ollama pull {model}")
    return has_model
