from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from pydantic import ValidationError as PydanticValidationError

from live_interview.errors import ValidationError
from live_interview.schemas import CONTROL_MESSAGE_TYPES, control_message_adapter

logger = logging.getLogger("live_interview.ws.components")

SendFn = Callable[[dict], Awaitable[bool]]
AudioFn = Callable[[bytes], Awaitable[None]]
ControlHandler = Callable[[object], Awaitable[None]]


def parse_control_frame(text: str) -> dict | None:
    """
    A text frame is a control message only when it looks like a JSON object
    and parses as one. Anything else is treated as audio by the caller.
    """
    if not str(text or "").lstrip().startswith("{"):
        return None
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.info("Text frame is not valid JSON; treating as audio | err=%s", exc)
        return None
    return payload if isinstance(payload, dict) else None


class FrameSink:
    """
    Write end handed to the LLM adapter for streamed replies.

    ``closed`` turns true once ``close()`` is called or the client socket
    stops being open; writes to a closed sink are dropped and return False.
    """

    def __init__(self, send_fn: SendFn, is_open_fn: Callable[[], bool]):
        self._send_fn = send_fn
        self._is_open_fn = is_open_fn
        self._closed = False
        self.frames_written = 0

    @property
    def closed(self) -> bool:
        return self._closed or not self._is_open_fn()

    async def write(self, frame: dict) -> bool:
        if self.closed:
            return False
        sent = await self._send_fn(frame)
        if sent:
            self.frames_written += 1
        return sent

    def close(self) -> None:
        self._closed = True


@dataclass
class ControlRouter:
    on_audio: AudioFn
    handlers: dict[str, ControlHandler] = field(default_factory=dict)

    async def route(self, frame: dict) -> None:
        """
        Routes one inbound ASGI websocket.receive message.
        Raises ValidationError for a known control type with invalid fields.
        """
        raw_bytes = frame.get("bytes")
        if raw_bytes is not None:
            await self.on_audio(raw_bytes)
            return

        text = frame.get("text")
        if text is None:
            return

        payload = parse_control_frame(text)
        if payload is None:
            await self.on_audio(text.encode("utf-8"))
            return

        await self.dispatch(payload)

    async def dispatch(self, payload: dict) -> None:
        message_type = str(payload.get("type") or "").strip()
        if message_type not in CONTROL_MESSAGE_TYPES:
            logger.warning("Unknown control message ignored | type=%s", message_type or "<missing>")
            return

        try:
            message = control_message_adapter.validate_python(payload)
        except PydanticValidationError as exc:
            fields = ", ".join(".".join(str(part) for part in err["loc"]) for err in exc.errors())
            question_id = payload.get("questionId") if message_type == "get_answer" else None
            raise ValidationError(
                "Invalid control message",
                detail=f"{message_type}: invalid {fields or 'payload'}",
                question_id=str(question_id) if question_id is not None else None,
            ) from exc

        handler = self.handlers.get(message_type)
        if handler is None:
            logger.warning("No handler registered | type=%s", message_type)
            return
        await handler(message)
