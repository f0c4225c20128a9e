"""
Unit tests for the session orchestrator.
Covers the send/stream/finalize flow, stop, errors and session management.
"""

import asyncio
import time
import uuid

import httpx
import pytest

from lopilot.core.exceptions import BackendUnavailableError, InferenceError, NoModelsInstalledError
from lopilot.core.orchestrator import GenerationState, SessionOrchestrator, TITLE_PROMPT
from lopilot.core.prompt_assembler import ATTACHMENTS_HEADER, SYSTEM_DETAILS_HEADER
from lopilot.core.session_repository import SessionRepository
from lopilot.llm.ollama_provider import OllamaClient
from lopilot.models import ChatSession, Role
from lopilot.storage import PreferenceStore

from conftest import FakeInferenceClient, wait_until


class TestSendPrompt:
    """Tests for the main send flow."""

    @pytest.mark.asyncio
    async def test_end_to_end_reply_and_title(self, make_orchestrator, fake_client, session_store):
        orchestrator = make_orchestrator(fake_client)
        await orchestrator.start()
        default_name = orchestrator.active_session.name

        task = await orchestrator.send_prompt("Hi")
        await task
        await orchestrator.wait_for_background_tasks()

        session = orchestrator.active_session
        assert [m.role for m in session.messages] == [Role.SYSTEM, Role.USER, Role.ASSISTANT]
        assert session.messages[1].text == "Hi"
        assert session.messages[2].text == "Hello there"
        assert session.messages[2].model_label == "Google Gemma3 (1b)"
        assert session.name == "Greeting Chat"
        assert session.name != default_name
        assert orchestrator.state is GenerationState.IDLE
        assert orchestrator.streaming_text == ""

        stored = await session_store.load()
        assert [m.text for m in stored[0].messages[1:]] == ["Hi", "Hello there"]
        assert stored[0].name == "Greeting Chat"

    @pytest.mark.asyncio
    async def test_whitespace_prompt_rejected(self, make_orchestrator, fake_client):
        orchestrator = make_orchestrator(fake_client)
        await orchestrator.start()

        assert await orchestrator.send_prompt("   \n\t") is None
        assert len(orchestrator.active_session.messages) == 1
        assert orchestrator.state is GenerationState.IDLE
        assert fake_client.stream_prompts == []

    @pytest.mark.asyncio
    async def test_uses_input_buffer_and_clears_it(self, make_orchestrator, fake_client):
        orchestrator = make_orchestrator(fake_client)
        await orchestrator.start()
        orchestrator.current_prompt = "  From the buffer  "

        await (await orchestrator.send_prompt())
        assert orchestrator.current_prompt == ""
        assert orchestrator.active_session.messages[1].text == "From the buffer"

    @pytest.mark.asyncio
    async def test_second_send_while_generating_refused(self, make_orchestrator):
        client = FakeInferenceClient(lines=['{"response":"a"}'], block_until_cancelled=True)
        orchestrator = make_orchestrator(client)
        await orchestrator.start()

        task = await orchestrator.send_prompt("one")
        assert orchestrator.is_generating
        assert await orchestrator.send_prompt("two") is None

        await orchestrator.stop()
        await task
        user_texts = [m.text for m in orchestrator.active_session.messages if m.role == Role.USER]
        assert user_texts == ["one"]

    @pytest.mark.asyncio
    async def test_prompt_includes_history_and_attachments(self, make_orchestrator, fake_client):
        orchestrator = make_orchestrator(fake_client)
        await orchestrator.start()
        await (await orchestrator.send_prompt("Hi"))

        orchestrator.attach_file("todo.txt", "ship it")
        await (await orchestrator.send_prompt("Read this"))

        _, prompt = fake_client.stream_prompts[-1]
        # system + user + assistant from the first turn
        assert prompt.count(SYSTEM_DETAILS_HEADER) == 3
        assert prompt.endswith("Read this\n\n" + ATTACHMENTS_HEADER + "\ntodo.txt:\n\n```\nship it\n```\n\n")
        assert orchestrator.attachments == []

        user_message = orchestrator.active_session.messages[3]
        assert user_message.attachments[0].name == "todo.txt"

    @pytest.mark.asyncio
    async def test_title_generated_only_for_first_prompt(self, make_orchestrator, fake_client):
        orchestrator = make_orchestrator(fake_client)
        await orchestrator.start()
        await (await orchestrator.send_prompt("Plan my week"))
        await (await orchestrator.send_prompt("And the weekend?"))
        await orchestrator.wait_for_background_tasks()

        assert len(fake_client.generate_calls) == 1
        model, prompt = fake_client.generate_calls[0]
        assert model == "gemma3:1b"
        assert prompt == TITLE_PROMPT.format(prompt="Plan my week")

    @pytest.mark.asyncio
    async def test_title_is_cleaned(self, make_orchestrator, fake_client):
        fake_client.title = '  "Weekly Plan"\n'
        orchestrator = make_orchestrator(fake_client)
        await orchestrator.start()
        await (await orchestrator.send_prompt("Plan my week"))
        await orchestrator.wait_for_background_tasks()
        assert orchestrator.active_session.name == "Weekly Plan"

    @pytest.mark.asyncio
    async def test_failed_title_keeps_name(self, make_orchestrator, fake_client):
        fake_client.title = None
        orchestrator = make_orchestrator(fake_client)
        await orchestrator.start()
        name = orchestrator.active_session.name
        await (await orchestrator.send_prompt("Plan my week"))
        await orchestrator.wait_for_background_tasks()
        assert orchestrator.active_session.name == name

    @pytest.mark.asyncio
    async def test_empty_reply_appends_nothing(self, make_orchestrator):
        orchestrator = make_orchestrator(FakeInferenceClient(lines=['{"done":true}']))
        await orchestrator.start()
        await (await orchestrator.send_prompt("Hi"))

        assert [m.role for m in orchestrator.active_session.messages] == [Role.SYSTEM, Role.USER]
        assert orchestrator.state is GenerationState.IDLE

    @pytest.mark.asyncio
    async def test_listeners_see_state_and_streaming_text(self, make_orchestrator, fake_client):
        orchestrator = make_orchestrator(fake_client)
        events = []
        orchestrator.add_listener(events.append)
        await orchestrator.start()
        await (await orchestrator.send_prompt("Hi"))

        states = [e.data["state"] for e in events if e.type == "state_changed"]
        assert states == ["generating", "idle"]
        texts = [e.data["text"] for e in events if e.type == "streaming_text"]
        assert texts[-1] == "Hello there"


class TestStopAndErrors:
    """Tests for cancellation and failure paths."""

    @pytest.mark.asyncio
    async def test_stop_keeps_partial_reply(self, make_orchestrator):
        client = FakeInferenceClient(lines=['{"response":"Hel"}'], block_until_cancelled=True)
        orchestrator = make_orchestrator(client)
        await orchestrator.start()

        task = await orchestrator.send_prompt("Hi")
        await wait_until(lambda: orchestrator.streaming_text == "Hel")
        pending = orchestrator.pending_message
        assert pending.text == "Hel" and not pending.is_pending

        await orchestrator.stop()

        assert task.done()
        assert orchestrator.state is GenerationState.IDLE
        assert orchestrator.pending_message is None
        last = orchestrator.active_session.messages[-1]
        assert last.role == Role.ASSISTANT
        assert last.text == "Hel"

    @pytest.mark.asyncio
    async def test_pending_placeholder_before_first_fragment(self, make_orchestrator):
        client = FakeInferenceClient(lines=[], block_until_cancelled=True)
        orchestrator = make_orchestrator(client)
        await orchestrator.start()

        await orchestrator.send_prompt("Hi")
        assert orchestrator.pending_message.is_pending
        await orchestrator.stop()
        assert orchestrator.active_session.messages[-1].role == Role.USER

    @pytest.mark.asyncio
    async def test_stop_when_idle_is_noop(self, make_orchestrator, fake_client):
        orchestrator = make_orchestrator(fake_client)
        await orchestrator.start()
        await orchestrator.stop()
        assert orchestrator.state is GenerationState.IDLE

    @pytest.mark.asyncio
    async def test_transport_error_becomes_message(self, make_orchestrator):
        client = FakeInferenceClient(lines=['{"response":"par"}'], error=InferenceError("connection reset"))
        orchestrator = make_orchestrator(client)
        await orchestrator.start()
        await (await orchestrator.send_prompt("Hi"))

        last = orchestrator.active_session.messages[-1]
        assert last.role == Role.ASSISTANT
        assert last.text == "Error: connection reset"
        assert orchestrator.state is GenerationState.IDLE

    @pytest.mark.asyncio
    async def test_backend_unavailable(self, make_orchestrator):
        orchestrator = make_orchestrator(FakeInferenceClient(available=False))
        await orchestrator.start()

        with pytest.raises(BackendUnavailableError):
            await orchestrator.send_prompt("Hi")
        assert len(orchestrator.active_session.messages) == 1
        assert orchestrator.state is GenerationState.IDLE

    @pytest.mark.asyncio
    async def test_no_models_installed(self, make_orchestrator):
        orchestrator = make_orchestrator(FakeInferenceClient(models=()))
        await orchestrator.start()

        with pytest.raises(NoModelsInstalledError):
            await orchestrator.send_prompt("Hi")
        assert len(orchestrator.active_session.messages) == 1
        # A later send is not blocked by the failed one
        orchestrator.client.models = {"mistral:7b"}
        task = await orchestrator.send_prompt("Hi")
        assert task is not None
        await task


    @pytest.mark.asyncio
    async def test_stop_while_server_loads_model(self, make_orchestrator):
        async def handler(request):
            if request.url.path == "/api/tags":
                return httpx.Response(200, json={"models": [{"name": "gemma3:1b"}]})
            if request.url.path == "/api/generate":
                # No headers until the model is loaded
                await asyncio.sleep(3)
                return httpx.Response(200, content=b'{"response":"late"}\n')
            return httpx.Response(200, text="Ollama is running")

        orchestrator = make_orchestrator(OllamaClient(transport=httpx.MockTransport(handler)))
        await orchestrator.start()
        task = await orchestrator.send_prompt("Hi")
        await asyncio.sleep(0.1)

        started = time.monotonic()
        await orchestrator.stop()
        assert time.monotonic() - started < 0.5

        assert task.done()
        assert orchestrator.state is GenerationState.IDLE
        assert orchestrator.active_session.messages[-1].text == "Hi"
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_stop_during_send_startup(self, make_orchestrator):
        gate = asyncio.Event()
        client = FakeInferenceClient(lines=['{"response":"Hello"}'], available_gate=gate)
        orchestrator = make_orchestrator(client)
        await orchestrator.start()

        sending = asyncio.create_task(orchestrator.send_prompt("Hi"))
        await wait_until(lambda: orchestrator.is_busy)
        assert not orchestrator.is_generating
        await orchestrator.stop()

        gate.set()
        task = await sending
        await task
        await orchestrator.wait_for_background_tasks()

        assert orchestrator.state is GenerationState.IDLE
        assert [m.role for m in orchestrator.active_session.messages] == [Role.SYSTEM, Role.USER]

    @pytest.mark.asyncio
    async def test_send_refused_while_another_is_starting(self, make_orchestrator):
        gate = asyncio.Event()
        client = FakeInferenceClient(lines=['{"response":"Hello"}'], available_gate=gate)
        orchestrator = make_orchestrator(client)
        await orchestrator.start()

        sending = asyncio.create_task(orchestrator.send_prompt("one"))
        await wait_until(lambda: orchestrator.is_busy)
        assert await orchestrator.send_prompt("two") is None

        gate.set()
        await (await sending)
        await orchestrator.wait_for_background_tasks()
        assert not orchestrator.is_busy
        user_texts = [m.text for m in orchestrator.active_session.messages if m.role == Role.USER]
        assert user_texts == ["one"]


class TestSessions:
    """Tests for session management around generation."""

    @pytest.mark.asyncio
    async def test_start_creates_one_empty_session(self, make_orchestrator, fake_client, repository):
        orchestrator = make_orchestrator(fake_client)
        await orchestrator.start()
        assert len(repository.list()) == 1
        assert orchestrator.active_session.is_empty
        assert orchestrator.active_session.name == "New Chat 1"

    @pytest.mark.asyncio
    async def test_start_reuses_empty_session(self, make_orchestrator, fake_client, repository):
        existing = ChatSession.new(name="Leftover")
        await repository.upsert(existing)

        orchestrator = make_orchestrator(fake_client)
        await orchestrator.start()
        assert orchestrator.active_session_id == existing.id
        assert len(repository.list()) == 1

    @pytest.mark.asyncio
    async def test_new_chat_reuses_empty_then_creates(self, make_orchestrator, fake_client, repository):
        orchestrator = make_orchestrator(fake_client)
        await orchestrator.start()
        first_id = orchestrator.active_session_id

        await orchestrator.create_new_chat()
        assert orchestrator.active_session_id == first_id

        await (await orchestrator.send_prompt("Hi"))
        second = await orchestrator.create_new_chat()
        assert second.id != first_id
        assert second.name == "New Chat 2"
        assert len(repository.list()) == 2

    @pytest.mark.asyncio
    async def test_switching_session_stops_generation(self, make_orchestrator, repository):
        client = FakeInferenceClient(lines=['{"response":"Hel"}'], block_until_cancelled=True)
        orchestrator = make_orchestrator(client)
        await orchestrator.start()
        other = ChatSession.new(name="Other")
        await repository.upsert(other)
        generating_id = orchestrator.active_session_id

        await orchestrator.send_prompt("Hi")
        await wait_until(lambda: orchestrator.streaming_text == "Hel")
        assert await orchestrator.select_session(other.id)

        assert orchestrator.state is GenerationState.IDLE
        assert orchestrator.active_session_id == other.id
        assert repository.get(generating_id).messages[-1].text == "Hel"
        assert other.is_empty

    @pytest.mark.asyncio
    async def test_select_unknown_session(self, make_orchestrator, fake_client):
        orchestrator = make_orchestrator(fake_client)
        await orchestrator.start()
        assert await orchestrator.select_session(uuid.uuid4()) is False

    @pytest.mark.asyncio
    async def test_delete_active_session_while_generating(self, make_orchestrator, repository):
        client = FakeInferenceClient(lines=['{"response":"Hel"}'], block_until_cancelled=True)
        orchestrator = make_orchestrator(client)
        await orchestrator.start()
        doomed = orchestrator.active_session_id

        await orchestrator.send_prompt("Hi")
        await orchestrator.delete_session(doomed)

        assert orchestrator.state is GenerationState.IDLE
        assert repository.get(doomed) is None
        assert orchestrator.active_session is not None
        assert orchestrator.active_session.is_empty

    @pytest.mark.asyncio
    async def test_clear_all(self, make_orchestrator, fake_client, repository):
        orchestrator = make_orchestrator(fake_client)
        await orchestrator.start()
        await (await orchestrator.send_prompt("Hi"))
        await orchestrator.create_new_chat()

        await orchestrator.clear_all()
        assert len(repository.list()) == 1
        assert orchestrator.active_session.is_empty

    @pytest.mark.asyncio
    async def test_rename_session(self, make_orchestrator, fake_client):
        orchestrator = make_orchestrator(fake_client)
        await orchestrator.start()
        renamed = await orchestrator.rename_session(orchestrator.active_session_id, "Mine")
        assert renamed.name == "Mine"

    @pytest.mark.asyncio
    async def test_history_survives_restart(self, make_orchestrator, fake_client, session_store, ambient):
        orchestrator = make_orchestrator(fake_client)
        await orchestrator.start()
        await (await orchestrator.send_prompt("Hi"))
        await orchestrator.shutdown()

        restarted = SessionOrchestrator(SessionRepository(session_store), fake_client, ambient)
        await restarted.start()
        # Previous chat is kept and a fresh empty one is opened
        assert len(restarted.repository.list()) == 2
        assert restarted.active_session.is_empty


class TestAttachmentsAndModels:
    """Tests for attachments and model selection."""

    @pytest.mark.asyncio
    async def test_attachment_limit(self, make_orchestrator, fake_client):
        orchestrator = make_orchestrator(fake_client, max_attachments=10)
        for i in range(10):
            assert orchestrator.attach_file(f"f{i}.txt", "x") is not None
        assert orchestrator.attach_file("extra.txt", "x") is None
        assert len(orchestrator.attachments) == 10

    def test_remove_attachment(self, make_orchestrator, fake_client):
        orchestrator = make_orchestrator(fake_client)
        file = orchestrator.attach_file("a.txt", "x")
        assert orchestrator.remove_attachment(file.id) is True
        assert orchestrator.remove_attachment(file.id) is False

    @pytest.mark.asyncio
    async def test_attach_path(self, make_orchestrator, fake_client, tmp_path):
        orchestrator = make_orchestrator(fake_client)
        text_file = tmp_path / "notes.md"
        text_file.write_text("# Notes", encoding="utf-8")
        binary_file = tmp_path / "image.bin"
        binary_file.write_bytes(b"\xff\xfe\x00\x81")

        attached = await orchestrator.attach_path(text_file)
        assert attached.name == "notes.md"
        assert attached.content == "# Notes"
        assert await orchestrator.attach_path(binary_file) is None
        assert await orchestrator.attach_path(tmp_path / "missing.txt") is None

    @pytest.mark.asyncio
    async def test_start_restores_last_selected_model(self, make_orchestrator, storage):
        await PreferenceStore(storage).save_last_selected_model("mistral:7b")
        orchestrator = make_orchestrator(FakeInferenceClient(models=("gemma3:1b", "mistral:7b")))
        await orchestrator.start()
        assert orchestrator.selected_model == "mistral:7b"

    @pytest.mark.asyncio
    async def test_start_falls_back_to_first_installed(self, make_orchestrator, storage):
        await PreferenceStore(storage).save_last_selected_model("llama3.1:8b")
        orchestrator = make_orchestrator(FakeInferenceClient(models=("mistral:7b", "gemma3:1b")))
        await orchestrator.start()
        assert orchestrator.selected_model == "gemma3:1b"

    @pytest.mark.asyncio
    async def test_preferred_model_restored_once_server_is_up(self, make_orchestrator, storage):
        await PreferenceStore(storage).save_last_selected_model("mistral:7b")
        client = FakeInferenceClient(lines=['{"response":"Hi"}'], models=())
        orchestrator = make_orchestrator(client)

        # Server still starting: nothing installed yet
        await orchestrator.start()
        assert orchestrator.selected_model == ""

        client.models = {"gemma3:1b", "mistral:7b"}
        await (await orchestrator.send_prompt("Hello"))

        assert orchestrator.selected_model == "mistral:7b"
        assert client.stream_prompts[-1][0] == "mistral:7b"
        assert orchestrator.active_session.messages[-1].model_label == "Mistral (7b)"

    @pytest.mark.asyncio
    async def test_select_model_saved(self, make_orchestrator, fake_client, storage):
        orchestrator = make_orchestrator(fake_client)
        await orchestrator.select_model("gemma3:1b")
        assert await PreferenceStore(storage).get_last_selected_model() == "gemma3:1b"
