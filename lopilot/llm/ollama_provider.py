"""
Ollama Inference Client.
Talks to a local Ollama server over its `/api/generate` and `/api/tags` endpoints.
"""

import asyncio
import httpx
import logging
import time
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Set

from .base import GenerateChunk, GenerateRequest, InferenceClient
from ..core.exceptions import InferenceError
from ..core.logging_config import truncate_large_data

logger = logging.getLogger(__name__)

_CANCELLED = object()


async def _wait_or_cancel(make_awaitable: Callable[[], Awaitable[Any]], cancel_event: asyncio.Event) -> Any:
    """
    Await `make_awaitable()` unless `cancel_event` is set first.

    Returns its result, or _CANCELLED once the pending awaitable has been
    cancelled and unwound. Exceptions of the awaitable propagate, including
    StopAsyncIteration at the end of a line iterator.
    """
    if cancel_event.is_set():
        return _CANCELLED

    pending = asyncio.ensure_future(make_awaitable())
    cancel_wait = asyncio.ensure_future(cancel_event.wait())
    try:
        done, _ = await asyncio.wait(
            {pending, cancel_wait}, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        for fut in (pending, cancel_wait):
            if not fut.done():
                fut.cancel()

    if pending in done:
        return pending.result()

    # Let the pending call unwind; a response that slipped through is closed
    result = (await asyncio.gather(pending, return_exceptions=True))[0]
    if isinstance(result, httpx.Response):
        await result.aclose()
    return _CANCELLED


class OllamaClient(InferenceClient):
    """
    Client for a local Ollama server.
    Default base_url points to Ollama's standard port.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        timeout: float = 120.0,
        probe_timeout: float = 2.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.probe_timeout = probe_timeout
        self._transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        if self._transport is not None:
            return httpx.AsyncClient(timeout=timeout, transport=self._transport)
        return httpx.AsyncClient(timeout=timeout)

    async def generate(self, model: str, prompt: str) -> Optional[str]:
        """Single-shot request; any failure gives None."""
        start_time = time.time()
        url = f"{self.base_url}/api/generate"
        request = GenerateRequest(model=model, prompt=prompt, stream=False)

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                f"Generate call starting: model={model}, "
                f"prompt={truncate_large_data(prompt, max_length=200)}"
            )

        try:
            async with self._client(self.timeout) as client:
                resp = await client.post(url, json=request.to_payload())
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(
                f"Generate call failed: {e}",
                extra={"extra_fields": {
                    "model": model,
                    "duration_ms": round((time.time() - start_time) * 1000, 2),
                    "error": str(e),
                }}
            )
            return None

        chunk = GenerateChunk.from_data(data)
        if chunk is None or chunk.response is None:
            logger.warning(f"Generate call returned no response field: model={model}")
            return None

        logger.info(
            "Generate call completed",
            extra={"extra_fields": {
                "model": model,
                "duration_ms": round((time.time() - start_time) * 1000, 2),
                "content_length": len(chunk.response),
            }}
        )
        return chunk.response

    async def stream_generate(
        self,
        model: str,
        prompt: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[str]:
        """
        Stream raw NDJSON lines from the generate endpoint.

        Waiting for the response headers is raced against `cancel_event` like
        every line read, since Ollama sends nothing while a model loads.
        """
        start_time = time.time()
        url = f"{self.base_url}/api/generate"
        payload = GenerateRequest(model=model, prompt=prompt, stream=True).to_payload()
        cancel_event = cancel_event or asyncio.Event()
        line_count = 0
        cancelled = False

        if cancel_event.is_set():
            logger.info(f"Generate stream cancelled before connecting: model={model}")
            return

        logger.debug(f"Generate stream starting: model={model}, prompt_length={len(prompt)}")

        try:
            async with self._client(self.timeout) as client:
                request = client.build_request("POST", url, json=payload)
                response = await _wait_or_cancel(lambda: client.send(request, stream=True), cancel_event)
                if response is _CANCELLED:
                    cancelled = True
                else:
                    try:
                        if response.status_code != 200:
                            raise InferenceError(
                                f"Inference server returned HTTP {response.status_code}"
                            )

                        lines = response.aiter_lines()
                        while True:
                            try:
                                line = await _wait_or_cancel(lines.__anext__, cancel_event)
                            except StopAsyncIteration:
                                break
                            if line is _CANCELLED:
                                cancelled = True
                                break
                            if not line.strip():
                                continue
                            line_count += 1
                            yield line
                    finally:
                        await response.aclose()
        except httpx.HTTPError as e:
            logger.error(
                f"Generate stream failed: {e}",
                exc_info=True,
                extra={"extra_fields": {
                    "model": model,
                    "duration_ms": round((time.time() - start_time) * 1000, 2),
                    "error": str(e),
                }}
            )
            raise InferenceError(str(e) or type(e).__name__) from e

        logger.info(
            "Generate stream cancelled" if cancelled else "Generate stream completed",
            extra={"extra_fields": {
                "model": model,
                "duration_ms": round((time.time() - start_time) * 1000, 2),
                "lines": line_count,
            }}
        )

    async def is_available(self) -> bool:
        try:
            async with self._client(self.probe_timeout) as client:
                await client.get(self.base_url)
            return True
        except httpx.HTTPError as e:
            logger.debug(f"Inference server not reachable at {self.base_url}: {e}")
            return False

    async def list_installed_models(self) -> Set[str]:
        try:
            async with self._client(self.probe_timeout) as client:
                resp = await client.get(f"{self.base_url}/api/tags")
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Could not list installed models: {e}")
            return set()

        models = data.get("models", []) if isinstance(data, dict) else []
        return {
            m["name"] for m in models
            if isinstance(m, dict) and isinstance(m.get("name"), str)
        }
