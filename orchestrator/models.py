"""Inference engines - the unit-level interface the generation loop drives.

``InferenceEngine`` is the contract; ``OllamaEngine`` fulfils it on top of
``OllamaClient``, a direct HTTP client for the Ollama REST API.
"""

from __future__ import annotations

import asyncio
import json
import re
from abc import ABC, abstractmethod
from typing import Any, AsyncGenerator, Awaitable, Callable, Iterable, TypeVar

import aiohttp
from orchestrator.exceptions import InferenceError, OllamaConnectionError, OllamaModelError


T = TypeVar("T")

# Ollama does not expose its tokenizer, so prompts are split into
# word/space/punctuation pieces for budget accounting. Joining the pieces
# reproduces the original text exactly.
_UNIT_PATTERN = re.compile(r"\s+|\w+|[^\w\s]")


class _EndOfGeneration:
    def __repr__(self) -> str:
        return "<end-of-generation>"


END_OF_GENERATION = _EndOfGeneration()


class InferenceEngine(ABC):
    """Base class for engines the generation loop can drive."""

    @abstractmethod
    async def tokenize(self, text: str) -> list:
        """Convert text to the engine's discrete units."""
        ...

    @abstractmethod
    async def decode(self, batch: list) -> None:
        """Advance the model state by one batch. Raises InferenceError."""
        ...

    @abstractmethod
    async def sample(self) -> Any:
        """Sample the next unit from the current model state."""
        ...

    @abstractmethod
    def is_end_of_generation(self, unit: Any) -> bool:
        ...

    @abstractmethod
    def unit_to_text(self, unit: Any) -> str:
        ...

    async def finish(self) -> None:
        """Release per-generation resources. Called once the loop stops."""
        return None


class OllamaClient:
    """Direct async HTTP client for the Ollama API."""

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        connect_timeout: float = 5.0,
        read_timeout: float = 120.0,
        max_retries: int = 3,
    ):
        self.base_url = base_url.rstrip("/")
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.max_retries = max_retries

    async def health_check(self) -> bool:
        """Check if Ollama is running. GET /api/tags"""
        try:
            async def _request() -> bool:
                async with aiohttp.ClientSession(timeout=self._timeout()) as session:
                    async with session.get(
                        f"{self.base_url}/api/tags",
                    ) as resp:
                        return resp.status == 200

            return await self._with_retry("health check", _request)
        except OllamaConnectionError:
            return False

    async def list_models(self) -> list[dict]:
        """List available local models. GET /api/tags"""
        async def _request() -> list[dict]:
            async with aiohttp.ClientSession(timeout=self._timeout()) as session:
                async with session.get(
                    f"{self.base_url}/api/tags",
                ) as resp:
                    if resp.status != 200:
                        body = await resp.text()
                        raise OllamaConnectionError(
                            f"Failed to list models (HTTP {resp.status}): {body}"
                        )
                    data = await resp.json()
                    return data.get("models", [])

        return await self._with_retry("list models", _request)

    @staticmethod
    def filter_missing_models(
        required_models: Iterable[str],
        available_models: Iterable[str],
    ) -> list[str]:
        """Filter required models against a list of available model names."""
        available = [m for m in available_models if m]
        missing: list[str] = []
        for required in required_models:
            if not required:
                continue
            if not OllamaClient._model_available(required, available):
                missing.append(required)
        return missing

    @staticmethod
    def _model_available(required: str, available: Iterable[str]) -> bool:
        """Check whether a model name is available, accounting for tags."""
        if required in available:
            return True
        tag_prefix = f"{required}:"
        return any(name.startswith(tag_prefix) for name in available)

    async def generate_stream(
        self,
        model: str,
        prompt: str,
        temperature: float = 0.0,
        options: dict | None = None,
    ) -> AsyncGenerator[str, None]:
        """
        Stream a raw completion. POST /api/generate with ``raw: true``.
        The prompt is sent verbatim; Ollama applies no template of its own.
        Yields non-empty text chunks until the server reports ``done``.
        """
        payload = {
            "model": model,
            "prompt": prompt,
            "raw": True,
            "stream": True,
            "options": {
                "temperature": temperature,
                **(options or {}),
            },
        }

        attempt = 0
        delay = 1.0
        while True:
            received_any = False
            try:
                async with aiohttp.ClientSession(timeout=self._timeout()) as session:
                    async with session.post(
                        f"{self.base_url}/api/generate",
                        json=payload,
                    ) as resp:
                        if resp.status == 404:
                            raise OllamaModelError(
                                f"Model '{model}' not found. Pull it with: ollama pull {model}"
                            )
                        if resp.status != 200:
                            body = await resp.text()
                            raise OllamaConnectionError(
                                f"Ollama generate failed (HTTP {resp.status}): {body}"
                            )

                        async for line in resp.content:
                            if not line.strip():
                                continue
                            try:
                                data = json.loads(line)
                            except json.JSONDecodeError:
                                continue
                            if "error" in data:
                                raise InferenceError(f"Ollama generate failed: {data['error']}")
                            chunk = data.get("response", "")
                            if chunk:
                                received_any = True
                                yield chunk
                            if data.get("done", False):
                                return
                        return
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                attempt += 1
                if received_any or attempt >= self.max_retries:
                    raise OllamaConnectionError(
                        self._connection_error_message("generate", e)
                    ) from e
                await asyncio.sleep(delay)
                delay *= 2

    def _timeout(self) -> aiohttp.ClientTimeout:
        """Build a client timeout configuration from settings."""
        return aiohttp.ClientTimeout(
            total=None,
            connect=self.connect_timeout,
            sock_connect=self.connect_timeout,
            sock_read=self.read_timeout,
        )

    async def _with_retry(self, operation: str, func: Callable[[], Awaitable[T]]) -> T:
        """Run an async operation with exponential backoff retries."""
        delay = 1.0
        last_error: Exception | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                return await func()
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = e
                if attempt >= self.max_retries:
                    break
                await asyncio.sleep(delay)
                delay *= 2

        raise OllamaConnectionError(self._connection_error_message(operation, last_error))

    def _connection_error_message(self, operation: str, error: Exception | None) -> str:
        """Create a user-friendly connection error message."""
        details = f"{error}" if error else "unknown error"
        return (
            f"Cannot connect to Ollama at {self.base_url} during {operation} "
            f"(after {self.max_retries} attempt(s)): {details}"
        )


class OllamaEngine(InferenceEngine):
    """Unit-level engine over Ollama's streaming raw generation.

    The first decode opens the stream for the whole prompt batch and reads
    the first chunk; every later decode acknowledges the previously sampled
    chunk and reads the next one. A finished stream samples as
    ``END_OF_GENERATION``.
    """

    def __init__(
        self,
        client: OllamaClient,
        model: str,
        temperature: float = 0.0,
        options: dict | None = None,
    ):
        self.client = client
        self.model = model
        self.temperature = temperature
        self.options = options or {}
        self._stream: AsyncGenerator[str, None] | None = None
        self._pending: Any = None
        self._last_sampled: Any = None

    async def tokenize(self, text: str) -> list[str]:
        return _UNIT_PATTERN.findall(text)

    async def decode(self, batch: list) -> None:
        if self._stream is None:
            self._stream = self.client.generate_stream(
                model=self.model,
                prompt="".join(batch),
                temperature=self.temperature,
                options=self.options,
            )
        elif list(batch) != [self._last_sampled]:
            raise InferenceError("Ollama streams cannot accept units it did not sample")

        try:
            self._pending = await self._stream.__anext__()
        except StopAsyncIteration:
            self._pending = END_OF_GENERATION

    async def sample(self) -> Any:
        if self._stream is None:
            raise InferenceError("sample() called before decode()")
        self._last_sampled = self._pending
        return self._pending

    def is_end_of_generation(self, unit: Any) -> bool:
        return unit is END_OF_GENERATION

    def unit_to_text(self, unit: Any) -> str:
        if not isinstance(unit, str):
            raise InferenceError(f"Cannot convert unit {unit!r} to text")
        return unit

    async def finish(self) -> None:
        stream, self._stream = self._stream, None
        self._pending = None
        self._last_sampled = None
        if stream is not None:
            await stream.aclose()
