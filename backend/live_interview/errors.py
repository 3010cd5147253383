from __future__ import annotations


class InterviewError(Exception):
    """Base for failures a live interview session knows how to report."""

    kind = "interview_error"

    def __init__(self, message: str, *, detail: str = "", question_id: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or message
        self.question_id = question_id

    def to_frame(self, timestamp: int) -> dict:
        frame = {
            "type": "error",
            "message": self.message,
            "error": self.detail,
            "timestamp": timestamp,
        }
        if self.question_id is not None:
            frame["questionId"] = self.question_id
        return frame


class ValidationError(InterviewError):
    kind = "validation_error"


class UpstreamAsrError(InterviewError):
    kind = "upstream_asr_error"


class UpstreamLlmError(InterviewError):
    kind = "upstream_llm_error"


class TransportError(InterviewError):
    kind = "transport_error"
