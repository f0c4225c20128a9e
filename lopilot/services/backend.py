"""
Backend Launcher - Makes sure a local Ollama server is running.
"""

import asyncio
import logging
from typing import Optional

from ..llm.base import InferenceClient

logger = logging.getLogger(__name__)


class BackendLauncher:
    """
    Probes the inference server and starts `ollama serve` when it is down.
    Start-up is fire-and-forget: callers do not wait for the server to answer.
    """

    def __init__(self, client: InferenceClient, binary: str = "/usr/local/bin/ollama", enabled: bool = True):
        """
        Args:
            client: Client used for the reachability probe
            binary: Path to the ollama executable
            enabled: When False the launcher only probes
        """
        self.client = client
        self.binary = binary
        self.enabled = enabled
        self._process: Optional[asyncio.subprocess.Process] = None

    @property
    def owns_server(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def ensure_running(self) -> bool:
        """
        Returns:
            bool: True if a server process was spawned by this call
        """
        if self.owns_server:
            return False
        if await self.client.is_available():
            return False
        if not self.enabled:
            logger.warning("Inference server is not reachable and auto-start is disabled")
            return False

        try:
            self._process = await asyncio.create_subprocess_exec(
                self.binary, "serve",
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            logger.error(f"Error starting server with {self.binary}: {e}")
            return False

        logger.info(f"Started inference server (pid={self._process.pid})")
        return True

    async def shutdown(self) -> None:
        """Terminate the server if this launcher started it."""
        if not self.owns_server:
            return
        self._process.terminate()
        try:
            await asyncio.wait_for(self._process.wait(), timeout=5)
        except asyncio.TimeoutError:
            self._process.kill()
        logger.info("Stopped inference server")
        self._process = None
