import logging
import time

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from live_interview.dependencies import InterviewServices, get_services
from live_interview.errors import InterviewError, ValidationError
from live_interview.schemas import AnalyzeRequest, AnswerRequest, GenerateQuestionsRequest

logger = logging.getLogger("live_interview.api.interview_routes")

router = APIRouter(prefix="/api/interview")

FEATURES = [
    "question-generation",
    "answer-generation",
    "transcript-analysis",
    "multiple-styles",
    "fallback-responses",
]


def _services(request: Request) -> InterviewServices:
    services = getattr(request.app.state, "services", None)
    return services if isinstance(services, InterviewServices) else get_services()


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def _failure(exc: InterviewError, started: float, model: str) -> JSONResponse:
    status_code = 400 if isinstance(exc, ValidationError) else 502
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": exc.message,
            "metadata": {"processingTime": _elapsed_ms(started), "model": model},
        },
    )


@router.post("/questions")
async def generate_questions(body: GenerateQuestionsRequest, request: Request):
    llm = _services(request).llm
    started = time.perf_counter()
    try:
        questions = await llm.generate_questions(body.transcript, body.maxQuestions, body.categories)
    except InterviewError as exc:
        logger.warning("Question generation failed: %s", exc.message)
        return _failure(exc, started, llm.model)

    return {
        "success": True,
        "questions": [question.model_dump() for question in questions],
        "metadata": {
            "totalQuestions": len(questions),
            "processingTime": _elapsed_ms(started),
            "model": llm.model,
            "transcriptLength": len(body.transcript),
        },
    }


@router.post("/answer")
async def get_answer(body: AnswerRequest, request: Request):
    llm = _services(request).llm
    started = time.perf_counter()
    try:
        answer = await llm.get_answer(body.question, body.context, body.style)
    except InterviewError as exc:
        logger.warning("Answer generation failed: %s", exc.message)
        return _failure(exc, started, llm.model)

    return {
        "success": True,
        **answer.model_dump(),
        "metadata": {
            "processingTime": _elapsed_ms(started),
            "model": llm.model,
            "style": body.style,
            "questionLength": len(body.question),
            "contextLength": len(body.context or ""),
        },
    }


@router.post("/analyze")
async def analyze_transcript(body: AnalyzeRequest, request: Request):
    llm = _services(request).llm
    started = time.perf_counter()
    try:
        analysis = await llm.analyze_transcript(body.transcript, body.analysisType)
    except InterviewError as exc:
        logger.warning("Transcript analysis failed: %s", exc.message)
        return _failure(exc, started, llm.model)

    return {
        "success": True,
        **analysis,
        "metadata": {
            "processingTime": _elapsed_ms(started),
            "model": llm.model,
            "analysisType": analysis["analysisType"],
            "transcriptLength": len(body.transcript),
        },
    }


@router.get("/health")
async def llm_health(request: Request):
    llm = _services(request).llm
    try:
        response = await llm.health_check()
    except InterviewError as exc:
        return JSONResponse(
            status_code=503,
            content={
                "success": False,
                "status": "unhealthy",
                "error": exc.message,
                "message": "LLM provider is not responding correctly",
            },
        )
    return {
        "success": True,
        "status": "healthy",
        "message": "LLM provider is working correctly",
        "response": response.strip(),
    }


@router.get("/config")
def llm_config(request: Request):
    llm = _services(request).llm
    return {
        "success": True,
        "config": {
            "hasApiKey": llm.configured,
            "model": llm.model,
            "sdk": "openai",
            "features": FEATURES,
        },
    }
