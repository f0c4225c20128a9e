"""
Chat API endpoints - Send prompts, stop generation, follow the stream.
"""

import asyncio
import json
import logging
import uuid
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse

from .deps import get_orchestrator
from ..core.exceptions import AvailabilityError
from ..core.orchestrator import OrchestratorEvent, SessionOrchestrator
from ..models import AttachedFile
from ..models.api import AttachFileRequest, ChatState, SendPromptRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])


def _chat_state(orchestrator: SessionOrchestrator) -> ChatState:
    return ChatState(
        state=orchestrator.state.value,
        active_session=orchestrator.active_session,
        pending_message=orchestrator.pending_message,
        attachments=list(orchestrator.attachments),
        selected_model=orchestrator.selected_model,
    )


@router.get("/state", response_model=ChatState)
async def get_state(orchestrator: SessionOrchestrator = Depends(get_orchestrator)):
    return _chat_state(orchestrator)


@router.post("/send", response_model=ChatState, status_code=status.HTTP_202_ACCEPTED)
async def send_prompt(
    body: SendPromptRequest,
    orchestrator: SessionOrchestrator = Depends(get_orchestrator)
):
    """
    Start generating a reply in the active chat.

    The reply streams in the background; follow it with GET /chat/events.
    """
    if orchestrator.is_busy:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A reply is already being generated")

    try:
        task = await orchestrator.send_prompt(body.prompt)
    except AvailabilityError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    if task is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Prompt is empty")
    return _chat_state(orchestrator)


@router.post("/stop", response_model=ChatState)
async def stop_generation(orchestrator: SessionOrchestrator = Depends(get_orchestrator)):
    """Stop the running generation; text received so far is kept."""
    await orchestrator.stop()
    return _chat_state(orchestrator)


@router.post("/attachments", response_model=AttachedFile, status_code=status.HTTP_201_CREATED)
async def attach_file(body: AttachFileRequest, orchestrator: SessionOrchestrator = Depends(get_orchestrator)):
    file = orchestrator.attach_file(body.name, body.content)
    if file is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"At most {orchestrator.max_attachments} files can be attached"
        )
    return file


@router.delete("/attachments/{file_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_attachment(file_id: uuid.UUID, orchestrator: SessionOrchestrator = Depends(get_orchestrator)):
    if not orchestrator.remove_attachment(file_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Attachment not found")


@router.get("/events")
async def events(orchestrator: SessionOrchestrator = Depends(get_orchestrator)):
    """Server-Sent Events feed of orchestrator notifications."""
    queue: asyncio.Queue = asyncio.Queue()

    def listener(event: OrchestratorEvent) -> None:
        queue.put_nowait(event)

    async def event_generator():
        orchestrator.add_listener(listener)
        try:
            while True:
                event = await queue.get()
                payload = {"type": event.type, **event.data}
                yield f"data: {json.dumps(payload, ensure_ascii=False, default=str)}\n\n"
        finally:
            orchestrator.remove_listener(listener)
            logger.debug("Event stream client disconnected")

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        }
    )
