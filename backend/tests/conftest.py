import asyncio
import json
import sys
from pathlib import Path

import pytest
from starlette.websockets import WebSocketState


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def _test_env(monkeypatch: pytest.MonkeyPatch):
    from core.config import reset_settings

    monkeypatch.setenv("LLM_API_KEY", "test-key")
    monkeypatch.delenv("ASR_API_KEY", raising=False)
    reset_settings()
    yield
    reset_settings()


class FakeWebSocket:
    """Client side of an interview socket, driven by the test through ``inbox``."""

    def __init__(self):
        self.client_state = WebSocketState.CONNECTING
        self.sent: list[str] = []
        self.inbox: asyncio.Queue = asyncio.Queue()

    async def accept(self):
        self.client_state = WebSocketState.CONNECTED

    async def receive(self) -> dict:
        message = await self.inbox.get()
        if message["type"] == "websocket.disconnect":
            self.client_state = WebSocketState.DISCONNECTED
        return message

    async def send_text(self, payload: str):
        await asyncio.sleep(0)
        self.sent.append(payload)

    def push_json(self, payload: dict):
        self.push_text(json.dumps(payload))

    def push_text(self, text: str):
        self.inbox.put_nowait({"type": "websocket.receive", "text": text})

    def push_bytes(self, data: bytes):
        self.inbox.put_nowait({"type": "websocket.receive", "bytes": data})

    def disconnect(self, code: int = 1000):
        self.inbox.put_nowait({"type": "websocket.disconnect", "code": code})

    def frames(self, frame_type: str | None = None) -> list[dict]:
        decoded = [json.loads(item) for item in self.sent]
        if frame_type is None:
            return decoded
        return [frame for frame in decoded if frame.get("type") == frame_type]


class _Message:
    def __init__(self, content: str):
        self.content = content


class _Choice:
    def __init__(self, content: str):
        self.message = _Message(content)


class _Response:
    def __init__(self, content: str):
        self.choices = [_Choice(content)]


class _Delta:
    def __init__(self, content):
        self.content = content


class _StreamChoice:
    def __init__(self, content):
        self.delta = _Delta(content)


class _Chunk:
    def __init__(self, content):
        self.choices = [_StreamChoice(content)]


class FakeStream:
    """
    Async iterator over canned deltas. When ``gate`` is set the stream pauses
    after ``pause_after`` deltas until the gate is released.
    """

    def __init__(self, tokens: list[str], gate: asyncio.Event | None = None, pause_after: int = 1):
        self._tokens = list(tokens)
        self._index = 0
        self._gate = gate
        self._pause_after = pause_after
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.closed or self._index >= len(self._tokens):
            raise StopAsyncIteration
        if self._gate is not None and self._index == self._pause_after:
            await self._gate.wait()
        token = self._tokens[self._index]
        self._index += 1
        return _Chunk(token)

    async def close(self):
        self.closed = True


class FakeCompletions:
    def __init__(self, replies: list[str] | None = None, stream: FakeStream | None = None):
        self.replies = list(replies or [])
        self.stream = stream
        self.calls: list[dict] = []
        self.error: Exception | None = None

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        if kwargs.get("stream"):
            return self.stream or FakeStream([])
        return _Response(self.replies.pop(0) if self.replies else "")


class FakeChatClient:
    """Stands in for ``AsyncOpenAI``; only ``chat.completions.create`` is used."""

    def __init__(self, replies: list[str] | None = None, stream: FakeStream | None = None):
        self.completions = FakeCompletions(replies, stream)
        self.chat = self


class FakeAsrClient:
    def __init__(self, on_partial, on_final, on_disconnect):
        self.on_partial = on_partial
        self.on_final = on_final
        self.on_disconnect = on_disconnect
        self.connected = False
        self.closed = False
        self.audio: list[bytes] = []
        self.fail_connect = False

    async def connect(self):
        from live_interview.errors import UpstreamAsrError

        if self.fail_connect:
            raise UpstreamAsrError("Failed to connect to speech recognition", detail="refused")
        self.connected = True

    async def send_audio(self, frame: bytes) -> bool:
        self.audio.append(frame)
        return True

    async def close(self):
        self.closed = True

    def stop(self):
        self.closed = True


async def wait_for(predicate, timeout: float = 2.0, interval: float = 0.01):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


@pytest.fixture
def fake_ws() -> FakeWebSocket:
    return FakeWebSocket()


@pytest.fixture
def fake_chat() -> FakeChatClient:
    return FakeChatClient()
