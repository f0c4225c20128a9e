"""
Session API endpoints - Chat history management.
"""

import uuid
from typing import List
from fastapi import APIRouter, Depends, HTTPException, status

from .deps import get_orchestrator
from ..core.orchestrator import SessionOrchestrator
from ..models import ChatSession
from ..models.api import RenameRequest, SessionSummary

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.get("", response_model=List[SessionSummary])
async def list_sessions(orchestrator: SessionOrchestrator = Depends(get_orchestrator)):
    """List chat sessions, newest first."""
    return [
        SessionSummary.from_session(s, orchestrator.active_session_id)
        for s in orchestrator.repository.list()
    ]


@router.post("", response_model=ChatSession, status_code=status.HTTP_201_CREATED)
async def create_session(orchestrator: SessionOrchestrator = Depends(get_orchestrator)):
    """Open a new chat (an existing empty chat is reused)."""
    return await orchestrator.create_new_chat()


@router.get("/{session_id}", response_model=ChatSession)
async def get_session(session_id: uuid.UUID, orchestrator: SessionOrchestrator = Depends(get_orchestrator)):
    session = orchestrator.repository.get(session_id)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return session


@router.post("/{session_id}/select", response_model=ChatSession)
async def select_session(session_id: uuid.UUID, orchestrator: SessionOrchestrator = Depends(get_orchestrator)):
    """Make a session the active chat. Stops a generation running in another chat."""
    if not await orchestrator.select_session(session_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return orchestrator.active_session


@router.patch("/{session_id}", response_model=ChatSession)
async def rename_session(
    session_id: uuid.UUID,
    body: RenameRequest,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator)
):
    session = await orchestrator.rename_session(session_id, body.name.strip())
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return session


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(session_id: uuid.UUID, orchestrator: SessionOrchestrator = Depends(get_orchestrator)):
    """Delete a session. Unknown ids are ignored."""
    await orchestrator.delete_session(session_id)


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def clear_sessions(orchestrator: SessionOrchestrator = Depends(get_orchestrator)):
    """Delete the entire chat history and open a fresh chat."""
    await orchestrator.clear_all()
