"""
Session Orchestrator - Drives a chat from user prompt to persisted reply.

Owns the Idle/Generating state machine, the input buffer and attachment set,
and the transient streaming slot that the UI shows as the last bubble while a
reply is being generated. All session mutations go through the repository;
background tasks (streaming, title generation) only report back through the
finalization coroutines defined here.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

import aiofiles

from .ambient import AmbientContextProvider
from .exceptions import BackendUnavailableError, InferenceError, NoModelsInstalledError
from .logging_config import LoggerAdapter
from .model_catalog import display_name
from .prompt_assembler import PromptAssembler
from .session_repository import SessionRepository
from .stream_reducer import StreamReducer
from ..llm.base import InferenceClient
from ..models import AttachedFile, ChatSession, Message, Role
from ..storage import PreferenceStore

logger = logging.getLogger(__name__)

TITLE_PROMPT = (
    "Summarize this request into a title of 3-5 words. "
    "Do not use quotes, punctuation, or Markdown: \"{prompt}\""
)


class GenerationState(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"


@dataclass
class OrchestratorEvent:
    """Notification delivered to UI listeners."""
    type: str  # state_changed, streaming_text, session_updated, sessions_changed, session_selected, attachments_changed
    data: Dict[str, Any] = field(default_factory=dict)


Listener = Callable[[OrchestratorEvent], None]


class SessionOrchestrator:
    """
    Top-level chat state machine.

    At most one generation runs at a time. Switching away from, deleting or
    clearing the session that is generating stops the generation first; a
    stopped generation keeps whatever text had arrived.
    """

    def __init__(
        self,
        repository: SessionRepository,
        client: InferenceClient,
        ambient: AmbientContextProvider,
        assembler: Optional[PromptAssembler] = None,
        preferences: Optional[PreferenceStore] = None,
        default_model: str = "gemma3:1b",
        max_attachments: int = 10,
        stream_update_interval: float = 0.05,
    ):
        self.repository = repository
        self.client = client
        self.ambient = ambient
        self.assembler = assembler or PromptAssembler()
        self.preferences = preferences
        self.default_model = default_model
        self.max_attachments = max_attachments
        self.stream_update_interval = stream_update_interval

        self.state = GenerationState.IDLE
        self.active_session_id: Optional[uuid.UUID] = None
        self.current_prompt = ""
        self.attachments: List[AttachedFile] = []
        self.selected_model = ""
        self.installed_models: Set[str] = set()
        self._preferred_model: Optional[str] = None

        self._streaming_text = ""
        self._generating_session_id: Optional[uuid.UUID] = None
        self._generating_model = ""
        self._cancel_event: Optional[asyncio.Event] = None
        self._generation_task: Optional[asyncio.Task] = None
        self._send_in_progress = False
        self._background_tasks: Set[asyncio.Task] = set()
        self._listeners: List[Listener] = []

    # ------------------------------------------------------------------
    # Observation

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, event_type: str, **data: Any) -> None:
        event = OrchestratorEvent(type=event_type, data=data)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"Listener failed on {event_type} event")

    @property
    def is_generating(self) -> bool:
        return self.state is GenerationState.GENERATING

    @property
    def is_busy(self) -> bool:
        """True while a send is starting up or a reply is being generated."""
        return self.is_generating or self._send_in_progress

    @property
    def streaming_text(self) -> str:
        return self._streaming_text

    @property
    def active_session(self) -> Optional[ChatSession]:
        if self.active_session_id is None:
            return None
        return self.repository.get(self.active_session_id)

    @property
    def pending_message(self) -> Optional[Message]:
        """Synthetic assistant bubble for the reply being generated, if any."""
        if not self.is_generating:
            return None
        return Message(
            role=Role.ASSISTANT,
            text=self._streaming_text,
            model_label=display_name(self._generating_model),
            is_pending=not self._streaming_text,
        )

    def _set_state(self, state: GenerationState) -> None:
        self.state = state
        self._notify("state_changed", state=state.value, session_id=self._generating_session_id)

    def _set_streaming_text(self, text: str) -> None:
        self._streaming_text = text
        self._notify("streaming_text", text=text, session_id=self._generating_session_id)

    # ------------------------------------------------------------------
    # Lifecycle

    async def start(self) -> None:
        """Load history, pick a model and open a chat to type into."""
        await self.repository.load()
        self.ambient.start_monitoring()
        if self.preferences:
            self._preferred_model = await self.preferences.get_last_selected_model()
        await self.refresh_models()

        await self.create_new_chat()
        logger.info(
            f"Orchestrator started: sessions={len(self.repository)}, "
            f"model={self.selected_model or 'none'}"
        )

    async def shutdown(self) -> None:
        await self.stop()
        for task in list(self._background_tasks):
            task.cancel()
        await asyncio.gather(*self._background_tasks, return_exceptions=True)
        self.ambient.stop_monitoring()

    async def refresh_models(self) -> Set[str]:
        """
        Re-read the installed models and keep the selection valid.

        A lost or missing selection falls back to the last model the user
        picked, else the first installed one. The server may still be starting
        at `start()`, so this runs again on every send.
        """
        self.installed_models = await self.client.list_installed_models()
        if self.selected_model not in self.installed_models:
            if self._preferred_model in self.installed_models:
                self.selected_model = self._preferred_model
            elif self.installed_models:
                self.selected_model = sorted(self.installed_models)[0]
            else:
                self.selected_model = ""
        return self.installed_models

    async def select_model(self, model: str) -> None:
        self.selected_model = model
        self._preferred_model = model or self._preferred_model
        if self.preferences and model:
            await self.preferences.save_last_selected_model(model)

    async def check_availability(self) -> None:
        """
        Raises:
            BackendUnavailableError: the inference server does not answer
            NoModelsInstalledError: the server has no local models
        """
        if not await self.client.is_available():
            raise BackendUnavailableError()
        if not await self.refresh_models():
            raise NoModelsInstalledError()

    # ------------------------------------------------------------------
    # Sessions

    async def create_new_chat(self) -> ChatSession:
        """Select an existing empty chat, or create one if none is left."""
        for session in self.repository.list():
            if session.is_empty:
                await self.select_session(session.id)
                return session

        session = ChatSession.new(name=f"New Chat {len(self.repository) + 1}")
        await self.repository.upsert(session)
        self._notify("sessions_changed")
        await self.select_session(session.id)
        return session

    async def select_session(self, session_id: uuid.UUID) -> bool:
        if self.repository.get(session_id) is None:
            return False
        if self.is_generating and self._generating_session_id != session_id:
            await self.stop()
        self.active_session_id = session_id
        self._notify("session_selected", session_id=session_id)
        return True

    async def rename_session(self, session_id: uuid.UUID, name: str) -> Optional[ChatSession]:
        session = await self.repository.update(session_id, lambda s: setattr(s, "name", name))
        if session is not None:
            self._notify("session_updated", session_id=session_id)
        return session

    async def delete_session(self, session_id: uuid.UUID) -> None:
        if self.is_generating and self._generating_session_id == session_id:
            await self.stop()
        await self.repository.delete(session_id)
        self._notify("sessions_changed")
        if session_id == self.active_session_id:
            self.active_session_id = None
            await self.create_new_chat()

    async def clear_all(self) -> None:
        await self.stop()
        await self.repository.clear_all()
        self.active_session_id = None
        self._notify("sessions_changed")
        await self.create_new_chat()

    # ------------------------------------------------------------------
    # Attachments

    def attach_file(self, name: str, content: str) -> Optional[AttachedFile]:
        """Attach a text file to the next prompt; None once the limit is reached."""
        if len(self.attachments) >= self.max_attachments:
            return None
        file = AttachedFile(name=name, content=content)
        self.attachments.append(file)
        self._notify("attachments_changed", count=len(self.attachments))
        return file

    async def attach_path(self, path: str | Path) -> Optional[AttachedFile]:
        """Read a UTF-8 text file from disk and attach it. Unreadable files are skipped."""
        path = Path(path)
        try:
            async with aiofiles.open(path, 'r', encoding='utf-8') as f:
                content = await f.read()
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Failed to read attachment {path}: {e}")
            return None
        return self.attach_file(path.name, content)

    def remove_attachment(self, file_id: uuid.UUID) -> bool:
        before = len(self.attachments)
        self.attachments = [f for f in self.attachments if f.id != file_id]
        removed = len(self.attachments) != before
        if removed:
            self._notify("attachments_changed", count=len(self.attachments))
        return removed

    # ------------------------------------------------------------------
    # Generation

    async def send_prompt(self, prompt: Optional[str] = None) -> Optional[asyncio.Task]:
        """
        Commit a user turn and start streaming the reply.

        Args:
            prompt: Text to send; defaults to the input buffer

        Returns:
            The generation task, or None when the prompt is blank or another send
            is starting or generating

        Raises:
            AvailabilityError: the backend is down or no model is installed
        """
        if self.is_busy:
            return None
        text = (self.current_prompt if prompt is None else prompt).strip()
        if not text:
            return None

        # Claim the send before the first await so a second send is refused
        self._send_in_progress = True
        self._cancel_event = asyncio.Event()
        try:
            await self.check_availability()
            if self.active_session is None:
                await self.create_new_chat()
            session_id = self.active_session_id
            model = self.selected_model or self.default_model

            attachments = list(self.attachments) or None
            history = list(self.active_session.messages)
            user_message = Message.user(text, attachments)
            session = await self.repository.update(session_id, lambda s: s.messages.append(user_message))
        except BaseException:
            self._send_in_progress = False
            self._cancel_event = None
            raise

        self._notify("session_updated", session_id=session_id)
        log = LoggerAdapter(logger, {"session_id": str(session_id), "model": model})
        log.info(f"Sending prompt: length={len(text)}, attachments={len(attachments or [])}")

        if session is not None and session.user_message_count == 1:
            self._spawn(self._generate_title(session_id, text, model))

        self.current_prompt = ""
        self.attachments = []
        self._notify("attachments_changed", count=0)

        full_prompt = self.assembler.assemble(history, text, attachments, self.ambient.snapshot())

        self._generating_session_id = session_id
        self._generating_model = model
        self._streaming_text = ""
        self._set_state(GenerationState.GENERATING)
        self._send_in_progress = False
        self._generation_task = asyncio.create_task(
            self._run_generation(session_id, model, full_prompt, self._cancel_event)
        )
        return self._generation_task

    async def stop(self) -> None:
        """
        Cancel the running generation and wait until its partial text is saved.

        A send that is still starting up gets its cancel event set, so its
        stream ends before connecting and no reply is added.
        """
        if self._cancel_event is None:
            return
        if self._send_in_progress and not self.is_generating:
            logger.info("Stopping a send that is still starting")
            self._cancel_event.set()
            return
        if not self.is_generating:
            return
        logger.info(f"Stopping generation for session {self._generating_session_id}")
        self._cancel_event.set()
        task = self._generation_task
        if task is not None and task is not asyncio.current_task():
            await asyncio.shield(task)

    async def _run_generation(
        self,
        session_id: uuid.UUID,
        model: str,
        prompt: str,
        cancel_event: asyncio.Event,
    ) -> None:
        log = LoggerAdapter(logger, {"session_id": str(session_id), "model": model})
        reducer = StreamReducer(
            on_update=self._set_streaming_text,
            min_interval=self.stream_update_interval,
        )
        try:
            text = await reducer.consume(self.client.stream_generate(model, prompt, cancel_event))
        except InferenceError as e:
            log.error(f"Generation failed: {e}")
            text = f"Error: {e}"
        except asyncio.CancelledError:
            log.warning("Generation task cancelled, keeping partial reply")
            await self._finalize(session_id, reducer.text, model)
            raise
        except Exception as e:
            log.error(f"Generation failed unexpectedly: {e}", exc_info=True)
            text = f"Error: {e}"

        await self._finalize(session_id, text, model)
        log.info(
            f"Generation finished: length={len(text)} chars, "
            f"stopped={cancel_event.is_set()}"
        )

    async def _finalize(self, session_id: uuid.UUID, text: str, model: str) -> None:
        if text:
            reply = Message.assistant(text, display_name(model))
            session = await self.repository.update(session_id, lambda s: s.messages.append(reply))
            if session is not None:
                self._notify("session_updated", session_id=session_id)

        self._streaming_text = ""
        self._generating_session_id = None
        self._generating_model = ""
        self._cancel_event = None
        self._generation_task = None
        self._set_state(GenerationState.IDLE)

    # ------------------------------------------------------------------
    # Title generation

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def wait_for_background_tasks(self) -> None:
        """Wait for pending title generations (used at shutdown and in tests)."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    async def _generate_title(self, session_id: uuid.UUID, prompt: str, model: str) -> None:
        title = await self.client.generate(model, TITLE_PROMPT.format(prompt=prompt))
        if not title:
            logger.debug(f"No title generated for session {session_id}")
            return
        clean_title = title.strip().replace('"', '')
        if clean_title:
            await self.rename_session(session_id, clean_title)
