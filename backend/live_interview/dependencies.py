from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

from core.config import Settings, get_settings
from live_interview.services.asr_service import DisconnectFn, RealtimeAsrClient, SegmentFn
from live_interview.services.llm_service import InterviewLLMService
from live_interview.session.registry import SessionRegistry, session_registry


@dataclass
class InterviewServices:
    """Everything a live session needs from the process, built once at startup."""

    settings: Settings
    llm: InterviewLLMService
    registry: SessionRegistry = field(default_factory=lambda: session_registry)
    asr_connect_fn: Callable | None = None

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "InterviewServices":
        settings = settings or get_settings()
        return cls(settings=settings, llm=InterviewLLMService.from_settings(settings))

    def create_asr_client(
        self,
        *,
        on_partial: SegmentFn,
        on_final: SegmentFn,
        on_disconnect: DisconnectFn,
    ) -> RealtimeAsrClient:
        return RealtimeAsrClient(
            url=self.settings.asr_url,
            api_key=self.settings.asr_api_key,
            language=self.settings.asr_language,
            on_partial=on_partial,
            on_final=on_final,
            on_disconnect=on_disconnect,
            connect_fn=self.asr_connect_fn,
        )


_services: InterviewServices | None = None


def get_services() -> InterviewServices:
    global _services
    if _services is None:
        _services = InterviewServices.from_settings()
    return _services


def set_services(services: InterviewServices | None) -> None:
    global _services
    _services = services
