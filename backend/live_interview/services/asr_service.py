from __future__ import annotations

import asyncio
import json
import logging
from typing import Awaitable, Callable

import websockets
from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

from live_interview.errors import UpstreamAsrError
from live_interview.schemas import now_ms

logger = logging.getLogger("live_interview.asr")

SegmentFn = Callable[[str, str], Awaitable[None]]
DisconnectFn = Callable[[str], Awaitable[None]]

STOP_RECOGNITION = {"message": "StopRecognition"}


def build_start_recognition(language: str = "en", sample_rate: int = 16000) -> dict:
    return {
        "message": "StartRecognition",
        "audio_format": {
            "type": "raw",
            "encoding": "pcm_f32le",
            "sample_rate": sample_rate,
        },
        "transcription_config": {
            "language": language,
            "enable_partials": True,
        },
    }


def parse_transcript_event(raw: str | bytes) -> tuple[str, str, str] | None:
    """
    Returns (kind, segment_id, text) for transcript events, None otherwise.
    kind is "final" or "partial". Raises ValueError on non-JSON input.
    """
    message = json.loads(raw)
    if not isinstance(message, dict):
        return None

    message_type = str(message.get("message") or "")
    if message_type not in {"AddTranscript", "AddPartialTranscript"}:
        if message_type in {"Error", "Warning"}:
            logger.warning("ASR %s event | type=%s reason=%s", message_type.lower(), message.get("type"), message.get("reason"))
        return None

    metadata = message.get("metadata") or {}
    text = str(metadata.get("transcript") or "").strip()
    if not text:
        return None
    segment_id = str(metadata.get("segment_id") or f"seg_{now_ms()}")
    kind = "final" if message_type == "AddTranscript" else "partial"
    return kind, segment_id, text


class RealtimeAsrClient:
    """
    One upstream recognition session per interview.

    The connection is opened once; a broken upstream is reported through
    ``on_disconnect`` and never reopened. Audio sent while the channel is not
    open is dropped.
    """

    def __init__(
        self,
        *,
        url: str,
        api_key: str,
        language: str = "en",
        on_partial: SegmentFn,
        on_final: SegmentFn,
        on_disconnect: DisconnectFn | None = None,
        connect_fn=None,
    ):
        self.url = url
        self.api_key = api_key
        self.language = language
        self._on_partial = on_partial
        self._on_final = on_final
        self._on_disconnect = on_disconnect
        self._connect_fn = connect_fn or websockets.connect
        self.connection = None
        self._receive_task: asyncio.Task | None = None
        self._closed = False
        self._close_task: asyncio.Task | None = None
        self.frames_sent = 0

    def is_open(self) -> bool:
        if self._closed or self.connection is None:
            return False
        return getattr(self.connection, "state", None) is State.OPEN

    async def connect(self) -> None:
        if self.connection is not None:
            return
        try:
            self.connection = await self._connect_fn(
                self.url,
                additional_headers={"Authorization": f"Bearer {self.api_key}"},
                max_size=None,
            )
            await self.connection.send(json.dumps(build_start_recognition(self.language)))
        except Exception as exc:
            self.connection = None
            self._closed = True
            raise UpstreamAsrError("Failed to connect to speech recognition", detail=str(exc)) from exc

        self._receive_task = asyncio.create_task(self._receive_loop())
        logger.info("ASR connected | url=%s language=%s", self.url, self.language)

    async def send_audio(self, frame: bytes) -> bool:
        if not self.is_open():
            return False
        if isinstance(frame, bytearray):
            frame = bytes(frame)
        try:
            await self.connection.send(frame)
        except Exception as exc:
            err = UpstreamAsrError("ASR audio send failed", detail=str(exc))
            logger.warning("%s | err=%s", err.message, err.detail)
            await self._mark_broken(f"send_failed: {exc}")
            return False
        self.frames_sent += 1
        return True

    async def _receive_loop(self) -> None:
        reason = "upstream_closed"
        try:
            async for raw in self.connection:
                try:
                    event = parse_transcript_event(raw)
                except (ValueError, TypeError) as exc:
                    logger.warning("ASR message parse failed: %s", exc)
                    continue
                if event is None:
                    continue
                kind, segment_id, text = event
                if kind == "final":
                    await self._on_final(segment_id, text)
                else:
                    await self._on_partial(segment_id, text)
        except asyncio.CancelledError:
            raise
        except ConnectionClosed as exc:
            reason = f"connection_closed: {exc}"
        except Exception as exc:
            reason = f"receive_failed: {exc}"
            logger.warning("ASR receive loop failed: %s", exc)
        if not self._closed:
            await self._mark_broken(reason)

    async def _mark_broken(self, reason: str) -> None:
        if self._closed:
            return
        self._closed = True
        logger.warning("ASR connection lost | reason=%s", reason)
        if self._on_disconnect is not None:
            try:
                await self._on_disconnect(reason)
            except Exception as exc:
                logger.warning("ASR disconnect callback failed: %s", exc)

    async def close(self) -> None:
        """
        Graceful shutdown: StopRecognition, then close.
        Safe to call multiple times; upstream errors are ignored.
        """
        self._closed = True
        connection, self.connection = self.connection, None
        if connection is not None:
            try:
                await connection.send(json.dumps(STOP_RECOGNITION))
            except Exception as exc:
                logger.debug("StopRecognition send ignored: %s", exc)
            try:
                await connection.close()
            except Exception as exc:
                logger.debug("ASR close ignored: %s", exc)
            logger.info("ASR closed | frames_sent=%s", self.frames_sent)

        task, self._receive_task = self._receive_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                logger.debug("ASR receive task ended with error: %s", exc)

    def stop(self) -> None:
        """
        Immediate shutdown hook (sync-safe); the graceful close is scheduled
        on the running loop when there is one.
        """
        if self.connection is None and self._receive_task is None:
            self._closed = True
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._closed = True
            self.connection = None
            return
        if self._close_task is None:
            self._close_task = loop.create_task(self.close())
            self._close_task.add_done_callback(self._on_close_done)

    @staticmethod
    def _on_close_done(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Scheduled ASR close failed: %s", exc)
