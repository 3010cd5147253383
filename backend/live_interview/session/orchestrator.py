from __future__ import annotations

import asyncio
import json
import logging
import random
import time
from typing import Awaitable, Callable

from starlette.websockets import WebSocketState

from core.logger import log_event
from core.state import SessionMode, SessionState
from live_interview.api.ws_interview_components import ControlRouter, FrameSink
from live_interview.dependencies import InterviewServices
from live_interview.errors import InterviewError, TransportError, UpstreamAsrError, ValidationError
from live_interview.prompts import build_transcript_answer_prompt
from live_interview.schemas import (
    EndInterview,
    GenerateQuestions,
    GetAnswer,
    GetTranscriptAnswer,
    now_ms,
)
from live_interview.session.registry import Session
from live_interview.session_controller import SessionController
from live_interview.system_metrics import (
    decrement_metric,
    increment_metric,
    observe_stream_duration,
    record_ws_disconnect,
)

logger = logging.getLogger("live_interview.session.orchestrator")

SIMULATED_TRANSCRIPTS = (
    "I have been working with React for the past three years.",
    "My experience includes building scalable web applications.",
    "I've worked on projects involving Node.js and MongoDB.",
    "I'm passionate about creating user-friendly interfaces.",
    "I've led a team of five developers on multiple projects.",
    "I specialize in frontend development and API integration.",
    "I've implemented authentication systems and payment gateways.",
    "My background includes both startup and enterprise environments.",
)

QUESTIONS_PER_REQUEST = 5


class InterviewOrchestrator:
    """
    Drives one client connection through INIT -> ACTIVE -> CLOSING -> CLOSED.

    Inbound frames, ASR events, LLM replies and timers all run on the event
    loop; LLM requests are serialized through one lock so replies never
    interleave, and every outbound frame goes through one send lock.
    """

    def __init__(self, websocket, services: InterviewServices, *, rng: random.Random | None = None):
        self.websocket = websocket
        self.services = services
        self.settings = services.settings
        self.llm = services.llm
        self.registry = services.registry
        self.controller = SessionController()
        self.session: Session | None = None
        self._rng = rng or random.Random()
        self._send_lock = asyncio.Lock()
        self._llm_lock = asyncio.Lock()
        self._active_sink: FrameSink | None = None
        self._simulator_task: asyncio.Task | None = None
        self._ended = False
        self._simulated_count = 0
        self.router = ControlRouter(
            on_audio=self._forward_audio,
            handlers={
                "end_interview": self._handle_end_interview,
                "get_transcript_answer": self._handle_get_transcript_answer,
                "get_answer": self._handle_get_answer,
                "generate_questions": self._handle_generate_questions,
            },
        )

    # ================= LIFECYCLE =================

    @property
    def session_id(self) -> str:
        return self.session.session_id if self.session else ""

    def _log_event(self, event: str, **fields) -> None:
        log_event("ws_interview", event, self.session_id, **fields)

    async def run(self) -> None:
        await self.websocket.accept()
        mode = SessionMode.TEST if self.settings.test_mode else SessionMode.LIVE
        self.session = self.registry.create(self.websocket, mode)
        self.session.state = SessionState.ACTIVE
        increment_metric("ws_connections_active", 1)
        increment_metric("ws_connections_total", 1)
        self._log_event("connect", mode=mode.value)

        try:
            await self._send({
                "type": "session_started",
                "sessionId": self.session_id,
                "mode": mode.value,
                "timestamp": now_ms(),
            })

            if mode is SessionMode.LIVE:
                await self._connect_asr()
            else:
                increment_metric("sessions_test_mode_total", 1)
                logger.info("Test mode: no ASR credential configured | session_id=%s", self.session_id)
                self._simulator_task = self.controller.create_task(
                    self._simulate_transcripts(), name=f"simulate-{self.session_id}"
                )

            self.session.heartbeat_task = self.controller.create_task(
                self._heartbeat(), name=f"heartbeat-{self.session_id}"
            )
            self.controller.create_task(self._receive_loop(), name=f"receive-{self.session_id}")
            await self.controller.stop_event.wait()
        except asyncio.CancelledError:
            self.controller.request_stop("cancelled")
            raise
        except Exception as exc:
            logger.exception("Session failed | session_id=%s", self.session_id)
            await self._report_fatal(exc)
        finally:
            await self._teardown()

    async def _teardown(self) -> None:
        session = self.session
        if session is None:
            return
        if session.state is not SessionState.CLOSED:
            session.state = SessionState.CLOSING
        if self._active_sink is not None:
            self._active_sink.close()

        await self.controller.stop()
        await self._close_asr()
        self.registry.destroy(session.session_id)
        session.state = SessionState.CLOSED

        reason = "end_interview" if self._ended else (self.controller.stop_reason or "other")
        decrement_metric("ws_connections_active", 1)
        record_ws_disconnect(reason)
        self._log_event("session_stopped", reason=reason)

    async def _report_fatal(self, exc: Exception) -> None:
        await self._send_error(InterviewError("Internal server error", detail=str(exc) or exc.__class__.__name__))
        self.controller.request_stop("fatal_error")

    # ================= OUTBOUND =================

    def _client_open(self) -> bool:
        return getattr(self.websocket, "client_state", None) == WebSocketState.CONNECTED

    async def _send(self, payload: dict) -> bool:
        if not self._client_open():
            err = TransportError("Client socket not open", detail=str(payload.get("type")))
            logger.warning("%s; frame skipped | session_id=%s type=%s", err.message, self.session_id, err.detail)
            return False
        try:
            encoded = json.dumps(payload)
        except (TypeError, ValueError) as exc:
            logger.warning("ws payload encode failed | session_id=%s err=%s", self.session_id, exc)
            return False
        async with self._send_lock:
            try:
                await self.websocket.send_text(encoded)
            except Exception as exc:
                logger.warning("ws send failed | session_id=%s err=%s", self.session_id, exc)
                self.controller.request_stop("client_disconnect")
                return False
        return True

    async def _send_error(self, exc: InterviewError) -> None:
        increment_metric("error_frames_sent", 1)
        self._log_event("error_frame", kind=exc.kind, message=exc.message)
        await self._send(exc.to_frame(now_ms()))

    async def _send_transcript_update(self, update) -> None:
        if update is None:
            return
        if await self._send(update.to_dict()):
            increment_metric("transcript_updates_sent", 1)

    # ================= TIMERS =================

    async def _heartbeat(self) -> None:
        interval = self.settings.heartbeat_interval_ms / 1000.0
        while not self.controller.stop_event.is_set():
            await asyncio.sleep(interval)
            if not self._client_open():
                logger.info("Heartbeat stopped; socket closed | session_id=%s", self.session_id)
                return
            await self._send({"type": "heartbeat", "timestamp": now_ms()})

    async def _simulate_transcripts(self) -> None:
        await asyncio.sleep(self.settings.test_mode_first_delay_ms / 1000.0)
        interval = self.settings.test_mode_interval_ms / 1000.0
        while not self.controller.stop_event.is_set():
            await self.simulate_once()
            await asyncio.sleep(interval)

    async def simulate_once(self) -> None:
        session = self.session
        if session is None or session.state is not SessionState.ACTIVE:
            return
        sentence = self._rng.choice(SIMULATED_TRANSCRIPTS)
        self._simulated_count += 1
        update = session.buffer.apply_final(f"sim_{now_ms()}_{self._simulated_count}", sentence)
        await self._send_transcript_update(update)

        await self._run_llm_request(
            lambda: self._emit_single_question(sentence),
            failure_message="Failed to generate real-time question",
        )

    async def _emit_single_question(self, text: str) -> None:
        question = await self.llm.generate_single_question(text)
        if not self._accepting_replies():
            return
        self.session.questions.append(question)
        await self._send({
            "type": "question_generated",
            "question": question.model_dump(),
            "timestamp": now_ms(),
        })

    # ================= ASR =================

    async def _connect_asr(self) -> None:
        client = self.services.create_asr_client(
            on_partial=self._on_partial_transcript,
            on_final=self._on_final_transcript,
            on_disconnect=self._on_asr_disconnect,
        )
        try:
            await client.connect()
        except UpstreamAsrError as exc:
            increment_metric("asr_connect_failures", 1)
            logger.warning("ASR unavailable; continuing without transcripts | session_id=%s err=%s", self.session_id, exc.detail)
            return
        self.session.asr_conn = client
        self._log_event("asr_connected")

    async def _on_partial_transcript(self, segment_id: str, text: str) -> None:
        if not self._accepting_replies():
            return
        await self._send_transcript_update(self.session.buffer.apply_partial(segment_id, text))

    async def _on_final_transcript(self, segment_id: str, text: str) -> None:
        if not self._accepting_replies():
            return
        await self._send_transcript_update(self.session.buffer.apply_final(segment_id, text))

    async def _on_asr_disconnect(self, reason: str) -> None:
        increment_metric("asr_disconnects", 1)
        self._log_event("asr_disconnected", reason=reason)
        if self.session is not None:
            self.session.asr_conn = None

    async def _forward_audio(self, frame: bytes) -> None:
        asr = self.session.asr_conn if self.session else None
        if asr is None or not self._accepting_replies():
            return
        await asr.send_audio(frame)

    async def _close_asr(self) -> None:
        if self.session is None:
            return
        asr, self.session.asr_conn = self.session.asr_conn, None
        if asr is not None:
            await asr.close()

    # ================= INBOUND =================

    async def _receive_loop(self) -> None:
        while not self.controller.stop_event.is_set():
            try:
                message = await self.websocket.receive()
            except Exception as exc:
                logger.info("Client receive failed | session_id=%s err=%s", self.session_id, exc)
                self.controller.request_stop("client_disconnect")
                return

            if message.get("type") == "websocket.disconnect":
                self._log_event("disconnect", code=message.get("code"))
                self.controller.request_stop("client_disconnect")
                return

            text = message.get("text")
            if text is not None and len(text.encode("utf-8")) > self.settings.ws_max_text_bytes:
                await self._send_error(ValidationError("Message too large", detail=f"max {self.settings.ws_max_text_bytes} bytes"))
                continue

            try:
                await self.router.route(message)
            except InterviewError as exc:
                await self._send_error(exc)
            except Exception as exc:
                logger.exception("Frame handling failed | session_id=%s", self.session_id)
                await self._report_fatal(exc)
                return

    def _accepting_replies(self) -> bool:
        return (
            not self._ended
            and self.session is not None
            and self.session.state is SessionState.ACTIVE
        )

    def _spawn_request(self, work: Callable[[], Awaitable[None]], failure_message: str, question_id: str | None = None) -> None:
        self.controller.create_task(
            self._run_llm_request(work, failure_message=failure_message, question_id=question_id)
        )

    async def _run_llm_request(
        self,
        work: Callable[[], Awaitable[None]],
        *,
        failure_message: str,
        question_id: str | None = None,
    ) -> None:
        async with self._llm_lock:
            if not self._accepting_replies():
                return
            try:
                await work()
            except ValidationError as exc:
                if question_id is not None and exc.question_id is None:
                    exc.question_id = question_id
                await self._send_error(exc)
            except InterviewError as exc:
                increment_metric("llm_failures", 1)
                if self._accepting_replies():
                    await self._send_error(
                        exc.__class__(failure_message, detail=exc.message, question_id=question_id)
                    )
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception("LLM request crashed | session_id=%s", self.session_id)
                await self._report_fatal(exc)

    # ================= CONTROL HANDLERS =================

    async def _handle_end_interview(self, message: EndInterview) -> None:
        if self._ended:
            logger.info("end_interview repeated; ignored | session_id=%s", self.session_id)
            return
        self._ended = True
        session = self.session
        session.state = SessionState.CLOSING
        if self._active_sink is not None:
            self._active_sink.close()
        if session.heartbeat_task and not session.heartbeat_task.done():
            session.heartbeat_task.cancel()
        if self._simulator_task is not None and not self._simulator_task.done():
            self._simulator_task.cancel()

        await self._close_asr()
        session.buffer.clear()
        self.registry.destroy(session.session_id)
        self._log_event("interview_ended")
        await self._send({
            "type": "interview_ended",
            "message": "Interview ended successfully",
            "timestamp": now_ms(),
        })

    async def _handle_get_transcript_answer(self, message: GetTranscriptAnswer) -> None:
        if not self._accepting_replies():
            logger.info("get_transcript_answer after end; ignored | session_id=%s", self.session_id)
            return
        self._spawn_request(
            lambda: self._stream_transcript_answer(message.style),
            failure_message="Failed to get transcript answer",
        )

    async def _stream_transcript_answer(self, style: str) -> None:
        session = self.session
        transcript = session.buffer.snapshot_final()
        if not transcript.strip():
            raise ValidationError("Failed to get transcript answer", detail="No transcript available")

        sink = FrameSink(self._send, self._client_open)
        self._active_sink = sink
        increment_metric("answer_streams_started", 1)
        started_at = time.time()
        self._log_event("answer_stream_started", style=style, transcript=transcript)
        try:
            answer = await self.llm.stream_answer(
                build_transcript_answer_prompt(transcript, style),
                temperature=0.5,
                max_tokens=1500,
                sink=sink,
            )
        finally:
            if self._active_sink is sink:
                self._active_sink = None
            observe_stream_duration(time.time() - started_at)

        if answer is None:
            increment_metric("answer_streams_cancelled", 1)
            self._log_event("answer_stream_cancelled", chunks=sink.frames_written)
            return

        increment_metric("answer_streams_completed", 1)
        self._log_event("answer_stream_completed", chunks=sink.frames_written, answer=answer)
        if self.settings.clear_transcript_after_answer and self._accepting_replies():
            session.buffer.clear()
            logger.info("Transcript buffer cleared after answer | session_id=%s", self.session_id)

    async def _handle_get_answer(self, message: GetAnswer) -> None:
        if not self._accepting_replies():
            logger.info("get_answer after end; ignored | session_id=%s", self.session_id)
            return
        self._spawn_request(
            lambda: self._answer_question(message.questionId, message.style),
            failure_message="Failed to get answer",
            question_id=message.questionId,
        )

    async def _answer_question(self, question_id: str, style: str) -> None:
        session = self.session
        question = session.find_question(question_id)
        if question is None:
            raise ValidationError("Failed to get answer", detail="Question not found", question_id=question_id)

        answer = await self.llm.get_answer(question.text, session.buffer.snapshot_final(), style)
        if not self._accepting_replies():
            return
        await self._send({
            "type": "answer_received",
            "questionId": question_id,
            "question": question.text,
            "answer": answer.model_dump(),
            "timestamp": now_ms(),
        })

    async def _handle_generate_questions(self, message: GenerateQuestions) -> None:
        if not self._accepting_replies():
            logger.info("generate_questions after end; ignored | session_id=%s", self.session_id)
            return
        if not self.session.buffer.snapshot_final().strip():
            await self._send_error(
                ValidationError("No transcript available for question generation", detail="Transcript is empty")
            )
            return
        self._spawn_request(
            self._generate_questions,
            failure_message="Failed to generate questions from transcript",
        )

    async def _generate_questions(self) -> None:
        session = self.session
        transcript = session.buffer.snapshot_final()
        if not transcript.strip():
            raise ValidationError("No transcript available for question generation", detail="Transcript is empty")

        questions = await self.llm.generate_questions(transcript, QUESTIONS_PER_REQUEST)
        if not self._accepting_replies():
            return
        session.questions = list(questions)
        await self._send({
            "type": "questions_generated",
            "questions": [question.model_dump() for question in questions],
            "timestamp": now_ms(),
        })
