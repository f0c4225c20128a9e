"""
Inference Client Base - Typed request/response structures and the abstract
client for a local text-generation server.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Optional, Set


@dataclass
class GenerateRequest:
    """Body of a `POST /api/generate` call."""
    model: str
    prompt: str
    stream: bool = False

    def to_payload(self) -> Dict[str, Any]:
        return {"model": self.model, "prompt": self.prompt, "stream": self.stream}


@dataclass
class GenerateChunk:
    """
    One JSON object from the generate endpoint.
    Streaming chunks carry an incremental `response` fragment; the final chunk
    usually has `done=True` and an empty fragment.
    """
    response: Optional[str] = None
    done: bool = False

    @classmethod
    def from_data(cls, data: Any) -> Optional["GenerateChunk"]:
        if not isinstance(data, dict):
            return None
        response = data.get("response")
        return cls(
            response=response if isinstance(response, str) else None,
            done=data.get("done") is True,
        )

    @classmethod
    def from_line(cls, line: str) -> Optional["GenerateChunk"]:
        """Parse one line; blank or malformed lines give None."""
        if not line or not line.strip():
            return None
        try:
            return cls.from_data(json.loads(line))
        except json.JSONDecodeError:
            return None


class InferenceClient(ABC):
    """
    Abstract client for the local inference server.
    """

    @abstractmethod
    async def generate(self, model: str, prompt: str) -> Optional[str]:
        """
        Single-shot generation.

        Returns:
            The `response` text, or None on any transport or protocol failure
        """
        pass

    @abstractmethod
    def stream_generate(
        self,
        model: str,
        prompt: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[str]:
        """
        Streaming generation.

        Yields raw newline-delimited JSON lines as they arrive. Setting
        `cancel_event` ends the iteration at the next read, exactly like a
        normal end of stream.

        Raises:
            InferenceError: on transport failure or a non-200 status
        """
        pass

    @abstractmethod
    async def is_available(self) -> bool:
        """True if the server answers."""
        pass

    @abstractmethod
    async def list_installed_models(self) -> Set[str]:
        """Names of the locally installed models, e.g. {"gemma3:1b"}."""
        pass

    async def aclose(self) -> None:
        pass
