"""Core module - chat sessions, prompt assembly and response streaming."""

from .exceptions import (
    LopilotError,
    AvailabilityError,
    BackendUnavailableError,
    NoModelsInstalledError,
    InferenceError,
)

__all__ = [
    'LopilotError',
    'AvailabilityError',
    'BackendUnavailableError',
    'NoModelsInstalledError',
    'InferenceError',
]
