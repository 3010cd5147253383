from __future__ import annotations

import random
import string
import time
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

AnswerStyle = Literal["professional", "conversational", "detailed", "concise"]
QuestionCategory = Literal["technical", "behavioral", "general"]
AnalysisType = Literal["summary", "insights", "suggestions"]

ANSWER_STYLES: tuple[str, ...] = ("professional", "conversational", "detailed", "concise")
QUESTION_CATEGORIES: tuple[str, ...] = ("technical", "behavioral", "general")
ANALYSIS_TYPES: tuple[str, ...] = ("summary", "insights", "suggestions")


def now_ms() -> int:
    return int(time.time() * 1000)


def new_question_id(prefix: str = "question") -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=5))
    return f"{prefix}_{now_ms()}_{suffix}"


class Question(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_question_id)
    text: str
    category: QuestionCategory = "general"
    suggestedAnswer: str = ""
    confidence: float = 0.7


class Answer(BaseModel):
    answer: str
    confidence: float = 0.7
    sources: list[str] = Field(default_factory=list)
    keyPoints: list[str] = Field(default_factory=list)
    estimatedDuration: str = "2-3 minutes"


# ---------- WS control messages ----------

class EndInterview(BaseModel):
    type: Literal["end_interview"]


class GetTranscriptAnswer(BaseModel):
    type: Literal["get_transcript_answer"]
    style: AnswerStyle = "professional"


class GetAnswer(BaseModel):
    type: Literal["get_answer"]
    questionId: str = Field(min_length=1)
    style: AnswerStyle = "professional"


class GenerateQuestions(BaseModel):
    type: Literal["generate_questions"]


ControlMessage = Annotated[
    Union[EndInterview, GetTranscriptAnswer, GetAnswer, GenerateQuestions],
    Field(discriminator="type"),
]

CONTROL_MESSAGE_TYPES: frozenset[str] = frozenset(
    {"end_interview", "get_transcript_answer", "get_answer", "generate_questions"}
)

control_message_adapter: TypeAdapter = TypeAdapter(ControlMessage)


# ---------- REST bodies ----------

class GenerateQuestionsRequest(BaseModel):
    transcript: str
    maxQuestions: int = 5
    categories: list[str] = Field(default_factory=lambda: list(QUESTION_CATEGORIES))


class AnswerRequest(BaseModel):
    question: str
    context: str = ""
    style: str = "professional"


class AnalyzeRequest(BaseModel):
    transcript: str
    analysisType: str = "summary"
