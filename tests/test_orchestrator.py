import asyncio
import base64
import json
import logging

import pytest

from app.core.errors import ArchiveWriteFailure
from app.models.conversation import ArchiveState
from app.models.session import SessionStatus
from app.orchestrator.orchestrator import RealtimeEventOrchestrator
from app.services import realtime
from app.services.conversation_archive import ConversationArchiver


@pytest.fixture
def sent():
    return []


@pytest.fixture
def make_orchestrator(sessions, archiver, vehicles, engine, sent):
    async def emit(message):
        sent.append(message)

    def make(session_id, archive=None):
        return RealtimeEventOrchestrator(
            session_id=session_id,
            engine=engine,
            sessions=sessions,
            archiver=archive or archiver,
            vehicles=vehicles,
            emit=emit,
            debounce_ms=10,
            poll_interval_ms=20,
        )

    return make


def _types(sent):
    return [m["type"] for m in sent]


@pytest.mark.asyncio
async def test_user_turn_updates_transcript_and_application(sessions, make_orchestrator, sent):
    session = sessions.create_session()
    orch = make_orchestrator(session.id)

    await orch.handle_raw({
        "type": "conversation.item.input_audio_transcription.completed",
        "item_id": "item_1",
        "transcript": "My name is Jane Doe and my zip code is 90210",
    })

    assert [e.content for e in session.conversation_history] == ["My name is Jane Doe and my zip code is 90210"]
    assert session.data.personal_info.first_name == "Jane"
    assert session.data.personal_info.last_name == "Doe"
    assert session.data.personal_info.address.zip_code == "90210"
    assert _types(sent) == ["user:transcript", "data:updated"]
    assert sent[1]["data"]["personal_info"]["first_name"] == "Jane"


@pytest.mark.asyncio
async def test_duplicate_turn_is_handled_once(sessions, make_orchestrator, sent):
    session = sessions.create_session()
    orch = make_orchestrator(session.id)
    raw = {
        "type": "conversation.item.input_audio_transcription.completed",
        "item_id": "item_1",
        "transcript": "Hello there",
    }

    await orch.handle_raw(raw)
    await orch.handle_raw({"type": "transport_event", "event": raw})

    assert len(session.conversation_history) == 1
    assert _types(sent) == ["user:transcript"]


@pytest.mark.asyncio
async def test_free_text_vehicles_do_not_override_validated_slot(sessions, vehicles, make_orchestrator):
    session = sessions.create_session()
    await vehicles.collect_year(session.id, 1, 2019)
    await vehicles.collect_make(session.id, 1, "Honda")
    orch = make_orchestrator(session.id)

    await orch.handle_raw({
        "type": "conversation.item.input_audio_transcription.completed",
        "item_id": "item_1",
        "transcript": "Actually my daughter drives a 2021 Toyota Camry",
    })

    info = session.data.vehicle_info
    assert info.make == "Honda"
    assert info.vehicles[0].make == "Honda"
    assert [(v.year, v.make, v.model) for v in info.mentioned_vehicles] == [(2021, "Toyota", "Camry")]


@pytest.mark.asyncio
async def test_tool_call_runs_and_returns_result(sessions, make_orchestrator, engine, sent):
    session = sessions.create_session()
    orch = make_orchestrator(session.id)

    await orch.handle_raw({
        "type": "response.function_call_arguments.done",
        "call_id": "call_1",
        "name": "collect_personal_info",
        "arguments": json.dumps({"first_name": "Jane", "city": "Austin", "sessions": "ignored"}),
    })

    assert session.data.personal_info.first_name == "Jane"
    assert session.data.personal_info.address.city == "Austin"
    call_id, output = engine.tool_results[0]
    assert call_id == "call_1"
    assert json.loads(output)["success"] is True
    assert _types(sent) == ["tool:invoked", "tool:result", "data:updated"]
    assert session.conversation_history[0].metadata["event"] == "tool_invoked"
    assert session.conversation_history[0].metadata["risk"] == "write"
    assert session.conversation_history[0].metadata["category"] == "application"

    await orch.handle_raw({
        "type": "conversation.item.created",
        "item": {"id": "item_9", "type": "function_call_output", "call_id": "call_1", "output": output},
    })
    assert _types(sent).count("tool:result") == 1


@pytest.mark.asyncio
async def test_only_side_effecting_tools_are_logged(sessions, make_orchestrator, caplog):
    session = sessions.create_session()
    orch = make_orchestrator(session.id)

    with caplog.at_level(logging.INFO, logger="app.orchestrator.orchestrator"):
        await orch.run_tool("validate_and_summarize", {})
        await orch.run_tool("collect_personal_info", {"first_name": "Jane"})

    running = [r.getMessage() for r in caplog.records if r.getMessage().startswith("Running")]
    assert running == [f"Running write tool collect_personal_info (session={session.id})"]


@pytest.mark.asyncio
async def test_vehicle_tool_uses_collector(sessions, make_orchestrator, engine):
    session = sessions.create_session()
    orch = make_orchestrator(session.id)

    await orch.handle_raw({
        "type": "response.function_call_arguments.done",
        "call_id": "call_1",
        "name": "collect_vehicle_make",
        "arguments": json.dumps({"vehicle_number": 1, "make": "Honda"}),
    })

    result = json.loads(engine.tool_results[0][1])
    assert result["success"] is False
    assert result["next_step"] == "collect_vehicle_year"


@pytest.mark.asyncio
async def test_unknown_tool_reports_failure(sessions, make_orchestrator, engine):
    session = sessions.create_session()
    orch = make_orchestrator(session.id)

    await orch.handle_raw({
        "type": "response.function_call_arguments.done",
        "call_id": "call_2",
        "name": "book_flight",
        "arguments": "{}",
    })

    assert json.loads(engine.tool_results[0][1]) == {"success": False, "error": "Unknown tool: book_flight"}


@pytest.mark.asyncio
async def test_malformed_event_is_dropped(sessions, make_orchestrator, sent):
    session = sessions.create_session()
    orch = make_orchestrator(session.id)

    await orch.handle_raw({"type": "mystery.event"})
    await orch.handle_raw(["not", "an", "event"])

    assert sent == []
    assert session.conversation_history == []


@pytest.mark.asyncio
async def test_engine_error_is_recorded_not_fatal(sessions, make_orchestrator, sent):
    session = sessions.create_session()
    orch = make_orchestrator(session.id)

    await orch.handle_raw({"type": "error", "error": {"type": "invalid_request_error", "message": "bad audio"}})

    assert _types(sent) == ["session:error"]
    assert session.conversation_history[0].role.value == "system"
    assert not orch.ended


@pytest.mark.asyncio
async def test_output_guardrail_trips_on_sensitive_numbers(sessions, make_orchestrator, sent):
    session = sessions.create_session()
    orch = make_orchestrator(session.id)

    await orch.handle_raw({
        "type": "response.audio_transcript.done",
        "item_id": "item_2",
        "response_id": "resp_1",
        "transcript": "I have your SSN as 123-45-6789.",
    })

    assert _types(sent) == ["agent:response", "guardrail:tripped"]
    assert sent[1]["data"]["guardrail"] == "no_personal_data_leak"
    assert [e.role.value for e in session.conversation_history] == ["agent", "system"]


@pytest.mark.asyncio
async def test_send_text_checks_input(sessions, make_orchestrator, engine, sent):
    session = sessions.create_session()
    orch = make_orchestrator(session.id)

    assert await orch.send_text("   ") is False
    assert await orch.send_text("I'd like a quote") is True

    assert engine.texts == ["I'd like a quote"]
    assert _types(sent) == ["guardrail:tripped"]


@pytest.mark.asyncio
async def test_audio_segments_are_forwarded_and_recorded(sessions, make_orchestrator, archiver, sent):
    session = sessions.create_session()
    orch = make_orchestrator(session.id)
    await orch.start()
    pcm = b"\x01\x00\x02\x00"

    await orch.handle_raw({"type": "response.audio.delta", "response_id": "r1", "delta": base64.b64encode(pcm[:2]).decode()})
    await orch.handle_raw({"type": "response.audio.delta", "response_id": "r1", "delta": base64.b64encode(pcm[2:]).decode()})
    await orch.handle_raw({"type": "response.audio.done", "response_id": "r1"})

    audio = [m for m in sent if m["type"] == "audio:output"]
    assert len(audio) == 1
    assert base64.b64decode(audio[0]["data"]["audio"]) == pcm
    assert archiver.get_record(session.id).audio_chunks == [pcm]

    result = await orch.end()
    assert result.audio_key is not None


@pytest.mark.asyncio
@pytest.mark.parametrize("raw", [
    {"type": "response.audio.done", "response_id": "r1", "audio": "AQACAA=="},
    {"type": "transport_event", "event": {"type": "audio", "audio": "AQACAA=="}},
])
async def test_audio_block_is_forwarded_as_one_segment(sessions, make_orchestrator, archiver, sent, raw):
    session = sessions.create_session()
    orch = make_orchestrator(session.id)
    await orch.start()

    await orch.handle_raw(raw)

    audio = [m for m in sent if m["type"] == "audio:output"]
    assert len(audio) == 1
    assert base64.b64decode(audio[0]["data"]["audio"]) == b"\x01\x00\x02\x00"
    assert archiver.get_record(session.id).audio_chunks == [b"\x01\x00\x02\x00"]
    await orch.end()


@pytest.mark.asyncio
async def test_end_is_idempotent(sessions, make_orchestrator, archiver, engine, sent):
    session = sessions.create_session()
    orch = make_orchestrator(session.id)
    await orch.start({"client": "test"})
    await orch.handle_raw({
        "type": "conversation.item.input_audio_transcription.completed",
        "item_id": "item_1",
        "transcript": "My name is Jane Doe",
    })

    first, second = await asyncio.gather(orch.end("user_ended"), orch.end("user_ended"))
    third = await orch.end("client_disconnected")

    assert first is second is third
    assert engine.disconnects == 1
    assert archiver.status(session.id) is ArchiveState.ARCHIVED
    assert session.status is SessionStatus.COMPLETED
    assert sessions.get_session(session.id) is None
    ended = [m for m in sent if m["type"] == "session:ended"]
    assert len(ended) == 1
    assert ended[0]["data"]["reason"] == "user_ended"
    assert ended[0]["data"]["conversation_id"] == first.conversation_id

    conversation = json.loads(await archiver.storage.read(first.conversation_key))
    assert conversation["metadata"]["end_reason"] == "user_ended"
    assert conversation["metadata"]["client"] == "test"
    assert conversation["history_snapshots"][-1]["event_type"] == "session_end"


@pytest.mark.asyncio
async def test_engine_disconnect_ends_session(sessions, make_orchestrator, archiver, engine):
    session = sessions.create_session()
    orch = make_orchestrator(session.id)
    await orch.start()

    engine.feed({"type": "connection.state", "state": "disconnected", "reason": "socket closed"})
    for _ in range(50):
        if orch.ended and archiver.status(session.id) is ArchiveState.ARCHIVED:
            break
        await asyncio.sleep(0.01)

    result = await orch.end()
    conversation = json.loads(await archiver.storage.read(result.conversation_key))
    assert conversation["metadata"]["end_reason"] == "connection_closed"
    assert session.status is SessionStatus.COMPLETED


@pytest.mark.asyncio
async def test_failed_start_tears_down(sessions, make_orchestrator, archiver, engine, monkeypatch):
    async def unavailable(session_id, metadata=None):
        raise RuntimeError("notifier down")

    monkeypatch.setattr(realtime, "session_started", unavailable)
    session = sessions.create_session()
    orch = make_orchestrator(session.id)

    with pytest.raises(RuntimeError):
        await orch.start()

    assert engine.disconnects == 1
    assert archiver.status(session.id) is ArchiveState.NOT_STARTED
    assert archiver.active() == []
    assert orch._reader is None and orch._poller is None


@pytest.mark.asyncio
async def test_failed_start_keeps_existing_recording(sessions, make_orchestrator, archiver, engine, monkeypatch):
    async def refuse():
        raise ConnectionError("engine unreachable")

    session = sessions.create_session()
    archiver.start(session.id, {"client": "earlier"})
    monkeypatch.setattr(engine, "connect", refuse)

    with pytest.raises(ConnectionError):
        await make_orchestrator(session.id).start()

    assert archiver.status(session.id) is ArchiveState.RECORDING


@pytest.mark.asyncio
async def test_history_poll_snapshots_changes(sessions, make_orchestrator, archiver):
    session = sessions.create_session()
    orch = make_orchestrator(session.id)
    await orch.start()

    await orch.handle_raw({
        "type": "conversation.item.input_audio_transcription.completed",
        "item_id": "item_1",
        "transcript": "Hi",
    })
    await asyncio.sleep(0.1)

    snapshots = archiver.get_record(session.id).history_snapshots
    assert len(snapshots) == 1
    assert snapshots[0].history_length == 1

    await orch.end()


@pytest.mark.asyncio
async def test_failed_archive_can_be_retried(sessions, make_orchestrator, flaky_storage, sent):
    archive = ConversationArchiver(storage=flaky_storage, record_audio=False, mask_pii=True, save_extracted_data=True)
    session = sessions.create_session()
    orch = make_orchestrator(session.id, archive=archive)
    await orch.start()

    with pytest.raises(ArchiveWriteFailure):
        await orch.end("user_ended")

    assert session.status is SessionStatus.ERROR
    assert archive.status(session.id) is ArchiveState.RECORDING
    assert sent[-1]["data"]["archive_error"]

    result = await orch.end("user_ended")

    assert result is not None
    assert archive.status(session.id) is ArchiveState.ARCHIVED
    conversation = json.loads(await flaky_storage.read(result.conversation_key))
    assert conversation["metadata"]["end_reason"] == "user_ended"
