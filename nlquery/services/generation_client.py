"""Client for an Ollama-compatible chat-completion backend.

Both modes build the same request: an optional system message carrying
the schema context, then prior history in its original order, then the
new user message.

Blocking mode returns the full text and a best-effort token count.
Streaming mode returns a GenerationStream: an async iterator of
non-empty text fragments in generation order, consumed once. Its
``aclose()`` stops the backend request, and the configured request
timeout is an overall deadline for the whole stream.
"""

import asyncio
import json
import logging
from collections.abc import Sequence
from typing import Any

import httpx

from nlquery.config import GenerationConfig
from nlquery.errors import GenerationError, GenerationTimeoutError
from nlquery.services.prompts import build_query_generation_prompt, is_generation_refusal

logger = logging.getLogger(__name__)

CHAT_PATH = "/api/chat"

History = Sequence[tuple[str, str]]


def build_messages(
    user_message: str,
    history: History = (),
    system_prompt: str | None = None,
) -> list[dict[str, str]]:
    """Assemble the outbound message list.

    Args:
        user_message: The new user message (always last).
        history: Prior (role, content) pairs in creation order.
        system_prompt: Optional system/schema message (always first).

    Returns:
        List of {"role", "content"} dicts.
    """
    messages: list[dict[str, str]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    for role, content in history:
        messages.append({"role": role, "content": content})
    messages.append({"role": "user", "content": user_message})
    return messages


def extract_token_count(body: dict[str, Any]) -> int:
    """Best-effort token usage from a backend reply. Falls back to 0."""
    for key in ("eval_count", "prompt_eval_count"):
        value = body.get(key)
        if isinstance(value, int):
            return value
    return 0


_END = object()


class GenerationStream:
    """Incremental fragments of one streamed backend response.

    A single producer task reads the backend's NDJSON lines and pushes
    non-empty fragments into a bounded queue; iteration pulls from it.
    The producer runs under one overall deadline. Not restartable.
    ``tokens_used`` is populated once the backend signals completion.
    """

    def __init__(
        self,
        config: GenerationConfig,
        payload: dict[str, Any],
        headers: dict[str, str],
        transport: httpx.AsyncBaseTransport | None = None,
        buffer_size: int = 256,
    ) -> None:
        self._config = config
        self._payload = payload
        self._headers = headers
        self._transport = transport
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=buffer_size)
        self._task: asyncio.Task | None = None
        self._exhausted = False
        self.tokens_used = 0
        self.completed = False

    def __aiter__(self) -> "GenerationStream":
        return self

    async def __anext__(self) -> str:
        if self._exhausted:
            raise StopAsyncIteration
        if self._task is None:
            self._task = asyncio.create_task(self._produce())
        item = await self._queue.get()
        if item is _END:
            self._exhausted = True
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            self._exhausted = True
            raise item
        return item

    async def aclose(self) -> None:
        """Stop requesting fragments and release the backend connection."""
        self._exhausted = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
            # asyncio.wait never raises the task's own CancelledError
            await asyncio.wait([self._task])

    async def _produce(self) -> None:
        try:
            await asyncio.wait_for(self._pump(), timeout=self._config.request_timeout_seconds)
        except asyncio.TimeoutError:
            logger.error(
                "Generation stream exceeded %ss overall timeout",
                self._config.request_timeout_seconds,
            )
            await self._queue.put(GenerationTimeoutError("Generation exceeded the request timeout"))
        except GenerationError as e:
            await self._queue.put(e)
        except Exception as e:
            logger.exception("Unexpected failure reading generation stream")
            await self._queue.put(GenerationError(str(e)))
        else:
            await self._queue.put(_END)

    async def _pump(self) -> None:
        url = f"{self._config.base_url}{CHAT_PATH}"
        timeout = httpx.Timeout(self._config.request_timeout_seconds)
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=timeout) as client:
                async with client.stream("POST", url, json=self._payload, headers=self._headers) as response:
                    if response.status_code >= 400:
                        body = (await response.aread()).decode("utf-8", errors="replace")
                        logger.error(
                            "Generation backend returned HTTP %d: %s",
                            response.status_code, body[:500],
                        )
                        raise GenerationError(f"HTTP {response.status_code}: {body[:500]}")
                    async for line in response.aiter_lines():
                        if not line.strip():
                            continue
                        try:
                            chunk = json.loads(line)
                        except json.JSONDecodeError as e:
                            raise GenerationError(f"Malformed stream line: {e}") from e
                        if chunk.get("error"):
                            raise GenerationError(str(chunk["error"]))
                        content = (chunk.get("message") or {}).get("content") or ""
                        if content:
                            await self._queue.put(content)
                        if chunk.get("done"):
                            self.tokens_used = extract_token_count(chunk)
                            self.completed = True
                            return
        except httpx.TimeoutException as e:
            logger.error("Generation stream timed out: %s", e)
            raise GenerationTimeoutError(str(e) or "timeout") from e
        except httpx.HTTPError as e:
            logger.error("Generation stream failed: %s", e)
            raise GenerationError(str(e)) from e
        raise GenerationError("Stream ended before the backend signalled completion")


class GenerationClient:
    """Chat-completion client with blocking and streaming modes.

    Args:
        config: Endpoint, model and limits. No defaults are applied here.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        config: GenerationConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._transport = transport

    @property
    def config(self) -> GenerationConfig:
        return self._config

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._config.api_key:
            headers["Authorization"] = f"Bearer {self._config.api_key}"
        return headers

    def _payload(self, messages: list[dict[str, str]], stream: bool) -> dict[str, Any]:
        return {
            "model": self._config.model,
            "messages": messages,
            "stream": stream,
            "options": {
                "temperature": self._config.temperature,
                "num_predict": self._config.max_output_tokens,
                "num_ctx": self._config.context_window,
            },
        }

    async def chat(
        self,
        user_message: str,
        history: History = (),
        schema_context: str | None = None,
    ) -> tuple[str, int]:
        """Send one blocking chat request.

        Args:
            user_message: The new user message.
            history: Prior (role, content) pairs in creation order.
            schema_context: Optional system prompt / schema text.

        Returns:
            Tuple of (response text, tokens used estimate).

        Raises:
            GenerationTimeoutError: If the request exceeds the timeout.
            GenerationError: On transport errors or an unusable reply.
        """
        payload = self._payload(build_messages(user_message, history, schema_context), stream=False)
        url = f"{self._config.base_url}{CHAT_PATH}"
        timeout = httpx.Timeout(self._config.request_timeout_seconds)
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=timeout) as client:
                response = await asyncio.wait_for(
                    client.post(url, json=payload, headers=self._headers()),
                    timeout=self._config.request_timeout_seconds,
                )
                response.raise_for_status()
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            logger.error("Generation request timed out after %ss", self._config.request_timeout_seconds)
            raise GenerationTimeoutError(str(e) or "timeout") from e
        except httpx.HTTPStatusError as e:
            logger.error(
                "Generation backend returned HTTP %d: %s",
                e.response.status_code, e.response.text[:500],
            )
            raise GenerationError(f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error("Error communicating with generation backend: %s", e)
            raise GenerationError(str(e)) from e

        try:
            body = response.json()
            text = body["message"]["content"] or ""
        except (ValueError, KeyError, TypeError) as e:
            raise GenerationError(f"Unexpected backend reply: {e}") from e
        return text, extract_token_count(body)

    def chat_stream(
        self,
        user_message: str,
        history: History = (),
        schema_context: str | None = None,
    ) -> GenerationStream:
        """Start a streamed chat request.

        The request is sent when the returned stream is first iterated.
        """
        payload = self._payload(build_messages(user_message, history, schema_context), stream=True)
        return GenerationStream(self._config, payload, self._headers(), self._transport)

    async def generate_query(
        self,
        question: str,
        schema_context: str,
        dialect_name: str = "SQL",
    ) -> str:
        """Ask the backend for a bare query answering ``question``.

        The reply is either the query text or a line starting with
        ``ERROR:``. Interpreting that sentinel is the caller's job.
        """
        system_prompt = build_query_generation_prompt(schema_context, dialect_name)
        text, _ = await self.chat(question, (), system_prompt)
        if is_generation_refusal(text):
            logger.info("Query generation declined: %s", text.strip()[:200])
        return text
