"""
Shared test fixtures and configuration.
"""

import asyncio
import os
from typing import AsyncIterator, Iterable, Optional, Set

import pytest

# Set test environment variables before importing app modules
os.environ.setdefault("LOPILOT_STORAGE_PATH", "/tmp/lopilot_test_data")
os.environ.setdefault("LOPILOT_LOG_FILE_ENABLED", "false")
os.environ.setdefault("LOPILOT_LAUNCH_BACKEND", "false")

from lopilot.core.ambient import AmbientContextProvider  # noqa: E402
from lopilot.core.orchestrator import SessionOrchestrator  # noqa: E402
from lopilot.core.session_repository import SessionRepository  # noqa: E402
from lopilot.llm.base import InferenceClient  # noqa: E402
from lopilot.storage import LocalStorage, PreferenceStore, SessionStore  # noqa: E402


class FakeInferenceClient(InferenceClient):
    """In-memory stand-in for the Ollama server."""

    def __init__(
        self,
        lines: Iterable[str] = (),
        title: Optional[str] = "Greeting Chat",
        available: bool = True,
        models: Iterable[str] = ("gemma3:1b",),
        block_until_cancelled: bool = False,
        error: Optional[Exception] = None,
        available_gate: Optional[asyncio.Event] = None,
    ):
        self.lines = list(lines)
        self.title = title
        self.available = available
        self.models = set(models)
        self.block_until_cancelled = block_until_cancelled
        self.error = error
        self.available_gate = available_gate
        self.stream_prompts = []
        self.generate_calls = []

    async def generate(self, model: str, prompt: str) -> Optional[str]:
        self.generate_calls.append((model, prompt))
        return self.title

    async def stream_generate(
        self,
        model: str,
        prompt: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[str]:
        self.stream_prompts.append((model, prompt))
        for line in self.lines:
            if cancel_event is not None and cancel_event.is_set():
                return
            yield line
            await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        if self.block_until_cancelled and cancel_event is not None:
            await cancel_event.wait()

    async def is_available(self) -> bool:
        if self.available_gate is not None:
            await self.available_gate.wait()
        return self.available

    async def list_installed_models(self) -> Set[str]:
        return set(self.models)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll `predicate` on the event loop until it holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.001)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / "data"))


@pytest.fixture
def session_store(storage):
    return SessionStore(storage)


@pytest.fixture
def repository(session_store):
    return SessionRepository(session_store)


@pytest.fixture
def fake_client():
    return FakeInferenceClient(
        lines=['{"response":"Hello"}', '{"response":" ther"}', '{"response":"e"}', '{"done":true}']
    )


@pytest.fixture
def ambient():
    return AmbientContextProvider(user_name="Ada")


@pytest.fixture
def make_orchestrator(repository, storage, ambient):
    def _make(client: InferenceClient, **kwargs) -> SessionOrchestrator:
        return SessionOrchestrator(
            repository=repository,
            client=client,
            ambient=ambient,
            preferences=PreferenceStore(storage),
            **kwargs,
        )
    return _make
