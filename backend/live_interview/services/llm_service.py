from __future__ import annotations

import json
import logging
import re
import time
from typing import Any, Protocol

import openai
from openai import AsyncOpenAI

from core.config import Settings
from live_interview.errors import UpstreamLlmError, ValidationError
from live_interview.prompts import (
    ANALYSIS_PROMPT,
    ANALYSIS_PROMPTS,
    ANSWER_PROMPT,
    JSON_SYSTEM_PROMPT,
    QUESTIONS_PROMPT,
    SINGLE_QUESTION_PROMPT,
    SYSTEM_PROMPT,
    style_prompt,
)
from live_interview.schemas import (
    ANALYSIS_TYPES,
    ANSWER_STYLES,
    QUESTION_CATEGORIES,
    Answer,
    Question,
    new_question_id,
    now_ms,
)

logger = logging.getLogger("live_interview.services.llm_service")

MAX_QUESTIONS = 10
MAX_TRANSCRIPT_CHARS = 10000

_TECHNICAL_WORDS = {"function", "code", "programming", "react", "javascript", "api", "database", "circuit"}
_BEHAVIORAL_WORDS = {"experience", "worked", "project", "team", "challenge", "lead"}


class AnswerSink(Protocol):
    @property
    def closed(self) -> bool:
        ...

    async def write(self, frame: dict) -> bool:
        ...

    def close(self) -> None:
        ...


def _strip_code_fence(text: str) -> str:
    cleaned = str(text or "").strip()
    cleaned = re.sub(r"^```(?:json)?\s*", "", cleaned)
    cleaned = re.sub(r"\s*```$", "", cleaned)
    return cleaned.strip()


def _parse_json(text: str) -> Any:
    return json.loads(_strip_code_fence(text))


def _coerce_category(value: Any) -> str:
    category = str(value or "").strip().lower()
    return category if category in QUESTION_CATEGORIES else "general"


def _coerce_confidence(value: Any, default: float = 0.7) -> float:
    try:
        return float(value) if value else default
    except (TypeError, ValueError):
        return default


def _question_from_payload(payload: dict, fallback_id: str) -> Question:
    text = str(payload.get("text") or "").strip()
    if not text:
        raise ValueError("question text missing")
    return Question(
        id=str(payload.get("id") or fallback_id),
        text=text,
        category=_coerce_category(payload.get("category")),
        suggestedAnswer=str(payload.get("suggestedAnswer") or ""),
        confidence=_coerce_confidence(payload.get("confidence")),
    )


def fallback_single_question(text: str) -> Question:
    words = set(str(text or "").lower().replace(".", " ").replace(",", " ").split())
    question = "What specific examples can you provide from your experience?"
    category = "general"
    if words & _TECHNICAL_WORDS:
        question = "Can you walk me through your technical approach to this problem?"
        category = "technical"
    elif words & _BEHAVIORAL_WORDS:
        question = "What specific challenges did you face and how did you overcome them?"
        category = "behavioral"
    return Question(
        id=new_question_id("fallback"),
        text=question,
        category=category,
        suggestedAnswer="Provide specific examples and your approach",
        confidence=0.6,
    )


def fallback_questions(max_questions: int) -> list[Question]:
    stamp = now_ms()
    base = [
        Question(
            id=f"fallback_{stamp}_1",
            text="Tell me about your experience with this topic",
            category="general",
            suggestedAnswer="Based on the conversation, discuss your relevant experience.",
        ),
        Question(
            id=f"fallback_{stamp}_2",
            text="What challenges have you faced in this area?",
            category="behavioral",
            suggestedAnswer="Share specific challenges and how you overcame them.",
        ),
        Question(
            id=f"fallback_{stamp}_3",
            text="How would you approach this problem?",
            category="technical",
            suggestedAnswer="Explain your problem-solving approach step by step.",
        ),
    ]
    return base[:max_questions]


def fallback_answer(question: str) -> Answer:
    return Answer(
        answer=(
            f'Based on the context provided, here\'s a suggested answer for: "{question}". '
            "Consider discussing your relevant experience, providing specific examples, "
            "and connecting your response to the interview context."
        ),
        confidence=0.6,
        sources=["Interview context"],
        keyPoints=["Relevance to question", "Specific examples", "Connection to context"],
    )


def validate_style(style: str) -> str:
    normalized = str(style or "").strip().lower()
    if normalized not in ANSWER_STYLES:
        raise ValidationError(
            "Invalid style. Must be one of: " + ", ".join(ANSWER_STYLES),
            detail=f"unknown style: {style}",
        )
    return normalized


class InterviewLLMService:
    """
    Question and answer generation for the live interview.

    Provider failures raise ``UpstreamLlmError``; content that is not the
    requested JSON shape degrades to canned fallback content.
    """

    def __init__(self, api_key: str = "", model: str = "gpt-4o-mini", client: AsyncOpenAI | None = None):
        self.model = model
        self.client = client
        if self.client is None and api_key:
            self.client = AsyncOpenAI(api_key=api_key)

    @classmethod
    def from_settings(cls, settings: Settings) -> "InterviewLLMService":
        return cls(api_key=settings.llm_api_key, model=settings.llm_model)

    @property
    def configured(self) -> bool:
        return self.client is not None

    def _require_client(self) -> AsyncOpenAI:
        if self.client is None:
            raise UpstreamLlmError("LLM API key not configured")
        return self.client

    @staticmethod
    def _provider_error(exc: Exception) -> UpstreamLlmError:
        if isinstance(exc, openai.AuthenticationError):
            message = "Invalid API key or access denied."
        elif isinstance(exc, openai.RateLimitError):
            message = "Rate limit exceeded. Please try again later."
        else:
            message = f"LLM provider error: {exc}"
        return UpstreamLlmError(message, detail=str(exc))

    async def make_request(
        self,
        prompt: str,
        *,
        temperature: float = 0.5,
        max_tokens: int | None = None,
        json_only: bool = False,
    ) -> str:
        client = self._require_client()
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": JSON_SYSTEM_PROMPT if json_only else SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": temperature,
        }
        if max_tokens:
            kwargs["max_tokens"] = max_tokens

        started = time.perf_counter()
        try:
            response = await client.chat.completions.create(**kwargs)
        except Exception as exc:
            logger.warning("LLM request failed | model=%s err=%s", self.model, exc)
            raise self._provider_error(exc) from exc

        content = str(response.choices[0].message.content or "").strip()
        logger.info(
            "LLM request completed | model=%s duration_ms=%.0f chars=%s",
            self.model,
            (time.perf_counter() - started) * 1000.0,
            len(content),
        )
        return content

    async def generate_single_question(self, text: str) -> Question:
        raw = await self.make_request(
            SINGLE_QUESTION_PROMPT.format(text=text),
            temperature=0.7,
            max_tokens=300,
            json_only=True,
        )
        try:
            payload = _parse_json(raw)
            if not isinstance(payload, dict):
                raise ValueError("expected a JSON object")
            return _question_from_payload(payload, new_question_id())
        except (ValueError, TypeError) as exc:
            logger.warning("Single question parse failed; using fallback: %s", exc)
            return fallback_single_question(text)

    async def generate_questions(
        self,
        transcript: str,
        max_questions: int = 5,
        categories: list[str] | tuple[str, ...] = QUESTION_CATEGORIES,
    ) -> list[Question]:
        transcript = str(transcript or "")
        if not transcript.strip():
            raise ValidationError("Transcript is required and must be a non-empty string")
        if len(transcript) > MAX_TRANSCRIPT_CHARS:
            raise ValidationError("Transcript too long (max 10,000 characters)")
        if not isinstance(max_questions, int) or not 1 <= max_questions <= MAX_QUESTIONS:
            raise ValidationError(f"maxQuestions must be between 1 and {MAX_QUESTIONS}")
        categories = [str(c).strip().lower() for c in (categories or QUESTION_CATEGORIES)]
        unknown = [c for c in categories if c not in QUESTION_CATEGORIES]
        if unknown:
            raise ValidationError("Invalid categories: " + ", ".join(unknown))

        raw = await self.make_request(
            QUESTIONS_PROMPT.format(
                max_questions=max_questions,
                transcript=transcript,
                categories=", ".join(categories),
            ),
            temperature=0.6,
            json_only=True,
        )
        try:
            payload = _parse_json(raw)
            if not isinstance(payload, list):
                raise ValueError("expected a JSON array")
            stamp = now_ms()
            questions = [
                _question_from_payload(item, f"question_{stamp}_{index}")
                for index, item in enumerate(payload)
                if isinstance(item, dict)
            ]
            if not questions:
                raise ValueError("no usable questions")
            return questions[:max_questions]
        except (ValueError, TypeError) as exc:
            logger.warning("Questions parse failed; using fallback: %s", exc)
            return fallback_questions(max_questions)

    async def get_answer(self, question: str, context: str = "", style: str = "professional") -> Answer:
        style = validate_style(style)
        question = str(question or "").strip()
        if not question:
            raise ValidationError("Question is required and must be a string")

        raw = await self.make_request(
            ANSWER_PROMPT.format(question=question, context=context or "", style_prompt=style_prompt(style)),
            temperature=0.5,
            max_tokens=1500,
            json_only=True,
        )
        try:
            payload = _parse_json(raw)
            if not isinstance(payload, dict):
                raise ValueError("expected a JSON object")
            return Answer(
                answer=str(payload.get("answer") or "Unable to generate answer"),
                confidence=_coerce_confidence(payload.get("confidence")),
                sources=[str(s) for s in payload.get("sources") or []],
                keyPoints=[str(p) for p in payload.get("keyPoints") or []],
                estimatedDuration=str(payload.get("estimatedDuration") or "2-3 minutes"),
            )
        except (ValueError, TypeError) as exc:
            logger.warning("Answer parse failed; using fallback: %s", exc)
            return fallback_answer(question)

    async def analyze_transcript(self, transcript: str, analysis_type: str = "summary") -> dict:
        transcript = str(transcript or "")
        if not transcript.strip():
            raise ValidationError("Transcript is required and must be a non-empty string")
        if len(transcript) > MAX_TRANSCRIPT_CHARS:
            raise ValidationError("Transcript too long (max 10,000 characters)")
        analysis_type = str(analysis_type or "").strip().lower()
        if analysis_type not in ANALYSIS_TYPES:
            raise ValidationError("Invalid analysis type. Must be one of: " + ", ".join(ANALYSIS_TYPES))

        raw = await self.make_request(
            ANALYSIS_PROMPT.format(transcript=transcript, task_prompt=ANALYSIS_PROMPTS[analysis_type]),
            temperature=0.4,
            max_tokens=800,
            json_only=True,
        )
        try:
            payload = _parse_json(raw)
            if not isinstance(payload, dict):
                raise ValueError("expected a JSON object")
            return {
                "analysisType": analysis_type,
                "analysis": str(payload.get("analysis") or ""),
                "keyPoints": [str(p) for p in payload.get("keyPoints") or []],
            }
        except (ValueError, TypeError):
            # plain prose is still a usable analysis
            return {"analysisType": analysis_type, "analysis": raw, "keyPoints": []}

    async def health_check(self) -> str:
        return await self.make_request(
            'Hello, this is a health check. Please respond with "OK" if you can read this.',
            temperature=0.0,
            max_tokens=10,
        )

    async def stream_answer(
        self,
        prompt: str,
        *,
        temperature: float = 0.5,
        max_tokens: int = 1500,
        sink: AnswerSink,
    ) -> str | None:
        """
        Streams provider deltas into ``sink`` as ``answer_chunk`` frames and
        finishes with one ``answer_complete`` frame.

        Returns the full text, or None when the sink closed mid-stream or the
        ``answer_complete`` frame was not delivered; after a mid-stream close
        nothing further is written and the provider stream is closed.
        """
        client = self._require_client()
        if sink.closed:
            return None

        try:
            stream = await client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
                stream=True,
            )
        except Exception as exc:
            logger.warning("LLM stream open failed | model=%s err=%s", self.model, exc)
            raise self._provider_error(exc) from exc

        built_answer = ""
        aborted = False
        started = time.perf_counter()
        first_chunk_at: float | None = None
        try:
            async for chunk in stream:
                if sink.closed:
                    aborted = True
                    break
                if not chunk.choices:
                    continue
                token = chunk.choices[0].delta.content
                if not token:
                    continue
                if first_chunk_at is None:
                    first_chunk_at = time.perf_counter()
                    logger.info("LLM stream first token in %.0fms", (first_chunk_at - started) * 1000)
                built_answer += token
                written = await sink.write({"type": "answer_chunk", "text": token, "timestamp": now_ms()})
                if not written:
                    aborted = True
                    break
        except Exception as exc:
            logger.warning("LLM stream failed | model=%s err=%s", self.model, exc)
            raise self._provider_error(exc) from exc
        finally:
            if aborted:
                try:
                    await stream.close()
                except Exception as exc:
                    logger.debug("LLM stream close ignored: %s", exc)

        if aborted or sink.closed:
            logger.info("LLM stream aborted by closed sink | chars=%s", len(built_answer))
            return None

        if not await sink.write({"type": "answer_complete", "answer": built_answer.strip(), "timestamp": now_ms()}):
            logger.info("LLM stream completion not delivered | chars=%s", len(built_answer))
            return None
        return built_answer.strip()
