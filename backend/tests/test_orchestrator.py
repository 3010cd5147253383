import asyncio
import json
import random
from dataclasses import dataclass

import pytest

from core.config import Settings
from core.state import SessionState
from live_interview.dependencies import InterviewServices
from live_interview.services.llm_service import InterviewLLMService
from live_interview.session.orchestrator import SIMULATED_TRANSCRIPTS, InterviewOrchestrator
from live_interview.session.registry import SessionRegistry
from live_interview.system_metrics import get_metric

from conftest import FakeAsrClient, FakeChatClient, FakeStream, FakeWebSocket, wait_for


@dataclass
class _Services(InterviewServices):
    fake_asr: FakeAsrClient | None = None
    fail_asr_connect: bool = False

    def create_asr_client(self, *, on_partial, on_final, on_disconnect):
        self.fake_asr = FakeAsrClient(on_partial, on_final, on_disconnect)
        self.fake_asr.fail_connect = self.fail_asr_connect
        return self.fake_asr


def _settings(live: bool, **overrides) -> Settings:
    values = {
        "asr_api_key": "asr-key" if live else "",
        "llm_api_key": "test-key",
        "heartbeat_interval_ms": 60000,
        "test_mode_first_delay_ms": 60000,
        "test_mode_interval_ms": 60000,
    }
    values.update(overrides)
    return Settings(**values)


def _services(live: bool = True, chat: FakeChatClient | None = None, **overrides) -> _Services:
    return _Services(
        settings=_settings(live, **overrides),
        llm=InterviewLLMService(client=chat or FakeChatClient()),
        registry=SessionRegistry(),
    )


async def _start(services: _Services, ws: FakeWebSocket):
    orchestrator = InterviewOrchestrator(ws, services, rng=random.Random(7))
    task = asyncio.create_task(orchestrator.run())
    await wait_for(lambda: ws.frames("session_started"))
    return orchestrator, task


async def _finish(ws: FakeWebSocket, task: asyncio.Task):
    ws.disconnect()
    await asyncio.wait_for(task, timeout=2.0)


@pytest.mark.asyncio
async def test_live_session_starts_and_forwards_audio(fake_ws):
    services = _services(live=True)
    orchestrator, task = await _start(services, fake_ws)

    started = fake_ws.frames()[0]
    assert started["type"] == "session_started"
    assert started["mode"] == "live"
    assert started["sessionId"] in services.registry
    assert services.fake_asr.connected is True
    assert orchestrator.session.state is SessionState.ACTIVE

    fake_ws.push_bytes(b"\x00\x00\x80\x3f")
    fake_ws.push_text("opaque-audio")
    await wait_for(lambda: len(services.fake_asr.audio) == 2)
    assert services.fake_asr.audio == [b"\x00\x00\x80\x3f", b"opaque-audio"]

    await _finish(fake_ws, task)
    assert services.fake_asr.closed is True
    assert len(services.registry) == 0
    assert orchestrator.session.state is SessionState.CLOSED


@pytest.mark.asyncio
async def test_asr_events_become_deduplicated_transcript_updates(fake_ws):
    services = _services(live=True)
    _, task = await _start(services, fake_ws)
    asr = services.fake_asr

    await asr.on_partial("A", "I have")
    await asr.on_partial("A", "I have")
    await asr.on_final("B", "I have been coding")

    updates = fake_ws.frames("transcript_update")
    assert [(u["transcript"], u["isPartial"], u["segmentId"]) for u in updates] == [
        ("I have", True, "A"),
        ("I have been coding", False, "B"),
    ]

    await _finish(fake_ws, task)


@pytest.mark.asyncio
async def test_final_after_partial_of_same_segment_is_committed(fake_ws):
    services = _services(live=True)
    orchestrator, task = await _start(services, fake_ws)
    asr = services.fake_asr

    await asr.on_partial("S1", "hi")
    await asr.on_final("S1", "hi there")
    await asr.on_final("S1", "hi there")

    updates = fake_ws.frames("transcript_update")
    assert [(u["transcript"], u["isPartial"]) for u in updates] == [("hi", True), ("hi there", False)]
    assert orchestrator.session.buffer.full_transcript == "hi there"
    assert orchestrator.session.buffer.current_segment == ""

    await _finish(fake_ws, task)


@pytest.mark.asyncio
async def test_asr_connect_failure_keeps_session_alive(fake_ws):
    services = _services(live=True)
    services.fail_asr_connect = True
    orchestrator, task = await _start(services, fake_ws)

    assert orchestrator.session.asr_conn is None
    fake_ws.push_bytes(b"\x01\x02")
    fake_ws.push_json({"type": "generate_questions"})
    await wait_for(lambda: fake_ws.frames("error"))
    assert services.fake_asr.audio == []

    await _finish(fake_ws, task)


@pytest.mark.asyncio
async def test_generate_questions_with_empty_buffer_reports_error(fake_ws):
    chat = FakeChatClient()
    services = _services(live=True, chat=chat)
    _, task = await _start(services, fake_ws)

    fake_ws.push_json({"type": "generate_questions"})
    await wait_for(lambda: fake_ws.frames("error"))

    error = fake_ws.frames("error")[0]
    assert error["message"] == "No transcript available for question generation"
    assert "timestamp" in error
    assert chat.completions.calls == []

    await _finish(fake_ws, task)


@pytest.mark.asyncio
async def test_generate_questions_replaces_session_questions(fake_ws):
    items = [{"id": "q1", "text": "How did you test it?", "category": "technical"}]
    chat = FakeChatClient([json.dumps(items)])
    services = _services(live=True, chat=chat)
    orchestrator, task = await _start(services, fake_ws)
    await services.fake_asr.on_final("s1", "I built a payments API")

    fake_ws.push_json({"type": "generate_questions"})
    await wait_for(lambda: fake_ws.frames("questions_generated"))

    frame = fake_ws.frames("questions_generated")[0]
    assert [q["id"] for q in frame["questions"]] == ["q1"]
    assert [q.id for q in orchestrator.session.questions] == ["q1"]

    await _finish(fake_ws, task)


@pytest.mark.asyncio
async def test_get_answer_for_unknown_question(fake_ws):
    chat = FakeChatClient()
    services = _services(live=True, chat=chat)
    _, task = await _start(services, fake_ws)

    fake_ws.push_json({"type": "get_answer", "questionId": "nope"})
    await wait_for(lambda: fake_ws.frames("error"))

    error = fake_ws.frames("error")[0]
    assert error["questionId"] == "nope"
    assert error["error"] == "Question not found"
    assert chat.completions.calls == []

    await _finish(fake_ws, task)


@pytest.mark.asyncio
async def test_get_answer_for_known_question(fake_ws):
    questions = [{"id": "q1", "text": "Why Node.js?", "category": "technical"}]
    answer = {"answer": "Non-blocking IO.", "confidence": 0.8, "sources": [], "keyPoints": ["IO"]}
    chat = FakeChatClient([json.dumps(questions), json.dumps(answer)])
    services = _services(live=True, chat=chat)
    _, task = await _start(services, fake_ws)
    await services.fake_asr.on_final("s1", "I've worked with Node.js")

    fake_ws.push_json({"type": "generate_questions"})
    await wait_for(lambda: fake_ws.frames("questions_generated"))
    fake_ws.push_json({"type": "get_answer", "questionId": "q1", "style": "concise"})
    await wait_for(lambda: fake_ws.frames("answer_received"))

    frame = fake_ws.frames("answer_received")[0]
    assert frame["questionId"] == "q1"
    assert frame["question"] == "Why Node.js?"
    assert frame["answer"]["answer"] == "Non-blocking IO."

    await _finish(fake_ws, task)


@pytest.mark.asyncio
async def test_invalid_control_message_reports_validation_error(fake_ws):
    services = _services(live=True)
    _, task = await _start(services, fake_ws)

    fake_ws.push_json({"type": "get_transcript_answer", "style": "pirate"})
    fake_ws.push_json({"type": "unknown_kind"})
    await wait_for(lambda: fake_ws.frames("error"))

    assert fake_ws.frames("error")[0]["message"] == "Invalid control message"
    assert len(fake_ws.frames("error")) == 1

    await _finish(fake_ws, task)


@pytest.mark.asyncio
async def test_oversized_text_frame_is_rejected(fake_ws):
    services = _services(live=True, ws_max_text_bytes=1024)
    _, task = await _start(services, fake_ws)

    fake_ws.push_text("x" * 2048)
    await wait_for(lambda: fake_ws.frames("error"))

    assert fake_ws.frames("error")[0]["message"] == "Message too large"
    assert services.fake_asr.audio == []

    await _finish(fake_ws, task)


@pytest.mark.asyncio
async def test_transcript_answer_streams_then_clears_buffer(fake_ws):
    chat = FakeChatClient(stream=FakeStream(["Hello", " world"]))
    services = _services(live=True, chat=chat)
    orchestrator, task = await _start(services, fake_ws)
    await services.fake_asr.on_final("s1", "Tell me about yourself")

    fake_ws.push_json({"type": "get_transcript_answer"})
    await wait_for(lambda: fake_ws.frames("answer_complete"))
    await wait_for(lambda: orchestrator.session.buffer.display() == "")

    types = [frame["type"] for frame in fake_ws.frames()]
    assert types == ["session_started", "transcript_update", "answer_chunk", "answer_chunk", "answer_complete"]
    assert fake_ws.frames("answer_complete")[0]["answer"] == "Hello world"
    assert "Tell me about yourself" in chat.completions.calls[0]["messages"][-1]["content"]

    await _finish(fake_ws, task)


@pytest.mark.asyncio
async def test_transcript_answer_keeps_buffer_when_clearing_disabled(fake_ws):
    chat = FakeChatClient(stream=FakeStream(["ok"]))
    services = _services(live=True, chat=chat, clear_transcript_after_answer=False)
    orchestrator, task = await _start(services, fake_ws)
    await services.fake_asr.on_final("s1", "keep me")

    fake_ws.push_json({"type": "get_transcript_answer"})
    await wait_for(lambda: fake_ws.frames("answer_complete"))
    await asyncio.sleep(0.05)

    assert orchestrator.session.buffer.display() == "keep me"

    await _finish(fake_ws, task)


@pytest.mark.asyncio
async def test_transcript_answer_without_transcript(fake_ws):
    chat = FakeChatClient(stream=FakeStream(["never"]))
    services = _services(live=True, chat=chat)
    _, task = await _start(services, fake_ws)

    fake_ws.push_json({"type": "get_transcript_answer"})
    await wait_for(lambda: fake_ws.frames("error"))

    error = fake_ws.frames("error")[0]
    assert error["message"] == "Failed to get transcript answer"
    assert error["error"] == "No transcript available"
    assert chat.completions.calls == []

    await _finish(fake_ws, task)


@pytest.mark.asyncio
async def test_llm_failure_becomes_error_frame_and_session_continues(fake_ws):
    chat = FakeChatClient()
    chat.completions.error = RuntimeError("provider down")
    services = _services(live=True, chat=chat)
    orchestrator, task = await _start(services, fake_ws)
    await services.fake_asr.on_final("s1", "some words")

    fake_ws.push_json({"type": "generate_questions"})
    await wait_for(lambda: fake_ws.frames("error"))

    error = fake_ws.frames("error")[0]
    assert error["message"] == "Failed to generate questions from transcript"
    assert "provider down" in error["error"]
    assert orchestrator.session.state is SessionState.ACTIVE

    await _finish(fake_ws, task)


@pytest.mark.asyncio
async def test_end_interview_mid_stream(fake_ws):
    gate = asyncio.Event()
    stream = FakeStream(["partial", " rest", " more"], gate=gate, pause_after=1)
    chat = FakeChatClient(stream=stream)
    services = _services(live=True, chat=chat)
    orchestrator, task = await _start(services, fake_ws)
    session_id = orchestrator.session_id
    cancelled_before = get_metric("answer_streams_cancelled")
    await services.fake_asr.on_final("s1", "Describe your last project")

    fake_ws.push_json({"type": "get_transcript_answer"})
    await wait_for(lambda: fake_ws.frames("answer_chunk"))
    fake_ws.push_json({"type": "end_interview"})
    await wait_for(lambda: fake_ws.frames("interview_ended"))
    gate.set()
    await wait_for(lambda: stream.closed)

    fake_ws.push_json({"type": "end_interview"})
    fake_ws.push_json({"type": "generate_questions"})
    await asyncio.sleep(0.05)

    assert len(fake_ws.frames("interview_ended")) == 1
    assert fake_ws.frames("interview_ended")[0]["message"] == "Interview ended successfully"
    assert fake_ws.frames("answer_complete") == []
    assert fake_ws.frames("error") == []
    assert fake_ws.frames()[-1]["type"] == "interview_ended"
    assert services.fake_asr.closed is True
    assert session_id not in services.registry
    await wait_for(lambda: get_metric("answer_streams_cancelled") == cancelled_before + 1)

    ended_before = get_metric("ws_disconnect_end_interview")
    await _finish(fake_ws, task)
    assert get_metric("ws_disconnect_end_interview") == ended_before + 1


@pytest.mark.asyncio
async def test_test_mode_emits_simulated_transcript_and_question(fake_ws):
    reply = json.dumps({"id": "rt-1", "text": "Which React patterns do you use?", "category": "technical"})
    chat = FakeChatClient([reply])
    services = _services(live=False, chat=chat, test_mode_first_delay_ms=10)
    orchestrator, task = await _start(services, fake_ws)

    assert fake_ws.frames("session_started")[0]["mode"] == "test"
    assert services.fake_asr is None

    await wait_for(lambda: fake_ws.frames("question_generated"))

    update = fake_ws.frames("transcript_update")[0]
    assert update["segmentId"].startswith("sim_")
    assert update["transcript"] in SIMULATED_TRANSCRIPTS
    assert fake_ws.frames("question_generated")[0]["question"]["id"] == "rt-1"
    assert [q.id for q in orchestrator.session.questions] == ["rt-1"]

    await _finish(fake_ws, task)


@pytest.mark.asyncio
async def test_heartbeat_frames_are_sent(fake_ws):
    services = _services(live=True, heartbeat_interval_ms=20)
    _, task = await _start(services, fake_ws)

    await wait_for(lambda: len(fake_ws.frames("heartbeat")) >= 2)

    await _finish(fake_ws, task)
    count = len(fake_ws.frames("heartbeat"))
    await asyncio.sleep(0.05)
    assert len(fake_ws.frames("heartbeat")) == count
