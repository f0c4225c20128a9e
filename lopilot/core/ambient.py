"""
Ambient Context - Situational data injected into every assembled prompt.

The OS-level focus tracking itself lives in the desktop shell; it reports
activations here through `record_activation` while monitoring is on.
"""

import getpass
import logging
import platform
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_FOCUSED_APP = "a macOS application"


@dataclass(frozen=True)
class AmbientContext:
    """Snapshot of the user's situation at prompt-assembly time."""
    now: datetime
    timezone: str
    user_name: str
    os_version: str
    device_model: str
    focused_app: str
    running_apps: List[str] = field(default_factory=list)

    @property
    def running_apps_text(self) -> str:
        return ", ".join(self.running_apps)


def _default_os_version() -> str:
    if platform.system() == "Darwin":
        release = platform.mac_ver()[0]
        if release:
            return f"macOS {release}"
    return f"{platform.system()} {platform.release()}".strip()


def _default_user_name() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "the user"


class AmbientContextProvider:
    """
    Supplies ambient context to the prompt assembler.

    Call `start_monitoring()` before feeding activations and
    `stop_monitoring()` when the app shuts down; activations reported while
    stopped are ignored.
    """

    def __init__(
        self,
        user_name: Optional[str] = None,
        ignored_apps: Iterable[str] = ("Lopilot", "Finder"),
        clock: Callable[[], datetime] = lambda: datetime.now().astimezone(),
    ):
        self._user_name = user_name or _default_user_name()
        self._ignored_apps = set(ignored_apps)
        self._clock = clock
        self._focused_app = DEFAULT_FOCUSED_APP
        self._running_apps: List[str] = []
        self._monitoring = False

    def start_monitoring(self) -> None:
        self._monitoring = True
        logger.debug("Ambient context monitoring started")

    def stop_monitoring(self) -> None:
        self._monitoring = False
        logger.debug("Ambient context monitoring stopped")

    def record_activation(self, app_name: Optional[str]) -> None:
        """Remember the most recently focused app, skipping ourselves and the file manager."""
        if not self._monitoring or not app_name or app_name in self._ignored_apps:
            return
        self._focused_app = app_name

    def set_running_applications(self, names: Iterable[str]) -> None:
        self._running_apps = [n for n in names if n and n not in self._ignored_apps]

    def snapshot(self) -> AmbientContext:
        now = self._clock()
        return AmbientContext(
            now=now,
            timezone=now.tzname() or "UTC",
            user_name=self._user_name,
            os_version=_default_os_version(),
            device_model=platform.machine() or "unknown",
            focused_app=self._focused_app,
            running_apps=list(self._running_apps),
        )
