"""
Chat Models - Messages, attachments and sessions.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field


SYSTEM_DIRECTIVE = (
    "SYSTEM INSTRUCTIONS: You are a friendly, helpful assistant that doesn't use "
    "any emojis if the conversation is regarding code."
)
NO_MODEL_LABEL = "NONE"


class Role(str, Enum):
    """Author of a message."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class AttachedFile(BaseModel):
    """A user-supplied text file attached to a prompt."""
    model_config = ConfigDict(frozen=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    name: str
    content: str


class Message(BaseModel):
    """One turn in a conversation."""
    model_config = ConfigDict(frozen=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    role: Role
    text: str
    model_label: str = NO_MODEL_LABEL  # display name of the producing model
    is_pending: bool = False
    attachments: Optional[List[AttachedFile]] = None

    @classmethod
    def system(cls, text: str = SYSTEM_DIRECTIVE) -> "Message":
        return cls(role=Role.SYSTEM, text=text)

    @classmethod
    def user(cls, text: str, attachments: Optional[List[AttachedFile]] = None) -> "Message":
        return cls(role=Role.USER, text=text, attachments=attachments or None)

    @classmethod
    def assistant(cls, text: str, model_label: str) -> "Message":
        return cls(role=Role.ASSISTANT, text=text, model_label=model_label)


class ChatSession(BaseModel):
    """One persisted conversation."""
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    name: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    messages: List[Message] = Field(default_factory=list)

    @classmethod
    def new(cls, name: str, directive: str = SYSTEM_DIRECTIVE) -> "ChatSession":
        """Create a session holding only the behaviour directive."""
        return cls(name=name, messages=[Message.system(directive)])

    @property
    def is_empty(self) -> bool:
        """True while the session holds nothing but its system directive."""
        return len(self.messages) == 1 and self.messages[0].role == Role.SYSTEM

    @property
    def user_message_count(self) -> int:
        return sum(1 for m in self.messages if m.role == Role.USER)
