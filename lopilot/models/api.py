"""
API Models - Request and response bodies of the local HTTP API.
"""

import uuid
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field

from .chat import AttachedFile, ChatSession, Message


class SessionSummary(BaseModel):
    """Chat history list entry."""
    id: uuid.UUID
    name: str
    timestamp: datetime
    message_count: int
    is_active: bool = False

    @classmethod
    def from_session(cls, session: ChatSession, active_id: Optional[uuid.UUID] = None) -> "SessionSummary":
        return cls(
            id=session.id,
            name=session.name,
            timestamp=session.timestamp,
            message_count=len(session.messages),
            is_active=session.id == active_id,
        )


class RenameRequest(BaseModel):
    name: str = Field(min_length=1)


class SendPromptRequest(BaseModel):
    prompt: Optional[str] = None  # falls back to the orchestrator's input buffer


class AttachFileRequest(BaseModel):
    name: str = Field(min_length=1)
    content: str


class SelectModelRequest(BaseModel):
    model: str


class ActivationRequest(BaseModel):
    app_name: str


class RunningAppsRequest(BaseModel):
    names: List[str]


class ChatState(BaseModel):
    """Everything the chat view needs to render."""
    state: str
    active_session: Optional[ChatSession] = None
    pending_message: Optional[Message] = None
    attachments: List[AttachedFile] = Field(default_factory=list)
    selected_model: str = ""


class ModelInfo(BaseModel):
    name: str
    display_name: str


class ModelList(BaseModel):
    installed: List[ModelInfo]
    selected: str
