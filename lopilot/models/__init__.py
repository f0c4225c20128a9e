"""Models module."""

from .chat import (
    AttachedFile,
    ChatSession,
    Message,
    NO_MODEL_LABEL,
    Role,
    SYSTEM_DIRECTIVE,
)

__all__ = [
    'AttachedFile', 'ChatSession', 'Message', 'Role',
    'NO_MODEL_LABEL', 'SYSTEM_DIRECTIVE',
]
