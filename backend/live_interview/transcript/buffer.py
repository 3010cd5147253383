from __future__ import annotations

import logging
from dataclasses import dataclass, field

from live_interview.schemas import now_ms

logger = logging.getLogger("live_interview.transcript")


@dataclass
class TranscriptUpdate:
    transcript: str
    is_partial: bool
    segment_id: str
    timestamp: int = field(default_factory=now_ms)

    def to_dict(self) -> dict:
        return {
            "type": "transcript_update",
            "transcript": self.transcript,
            "isPartial": self.is_partial,
            "segmentId": self.segment_id,
            "timestamp": self.timestamp,
        }


class TranscriptBuffer:
    """
    Per-session transcript accumulator.

    Finals are committed to ``full_transcript``; the latest partial only lives
    in ``current_segment``. A segment id is applied at most once as a partial
    and at most once as a final, so a re-emitted event is a no-op while the
    final for a segment that already showed a partial is still committed.
    """

    def __init__(self):
        self.full_transcript: str = ""
        self.current_segment: str = ""
        self.processed_segments: set[tuple[str, str]] = set()

    def display(self) -> str:
        return f"{self.full_transcript} {self.current_segment}".strip()

    def snapshot_final(self) -> str:
        return self.full_transcript

    def _claim(self, kind: str, segment_id: str) -> bool:
        key = (kind, segment_id)
        if key in self.processed_segments:
            logger.info("Duplicate %s segment skipped | segment_id=%s", kind, segment_id)
            return False
        self.processed_segments.add(key)
        return True

    def apply_partial(self, segment_id: str, text: str) -> TranscriptUpdate | None:
        segment_id = str(segment_id or "")
        if not self._claim("partial", segment_id):
            return None
        self.current_segment = str(text or "").strip()
        return TranscriptUpdate(
            transcript=self.display(),
            is_partial=True,
            segment_id=segment_id,
        )

    def apply_final(self, segment_id: str, text: str) -> TranscriptUpdate | None:
        segment_id = str(segment_id or "")
        if not self._claim("final", segment_id):
            return None
        self.full_transcript = f"{self.full_transcript} {str(text or '').strip()}".strip()
        self.current_segment = ""
        return TranscriptUpdate(
            transcript=self.display(),
            is_partial=False,
            segment_id=segment_id,
        )

    def clear(self) -> None:
        self.full_transcript = ""
        self.current_segment = ""
        self.processed_segments.clear()
