import logging

from fastapi import APIRouter, WebSocket

from live_interview.dependencies import InterviewServices, get_services
from live_interview.session.orchestrator import InterviewOrchestrator

logging.basicConfig(
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    level=logging.INFO,
)

logger = logging.getLogger("ws_interview")

router = APIRouter()


def _services_for(websocket: WebSocket) -> InterviewServices:
    services = getattr(websocket.app.state, "services", None)
    return services if isinstance(services, InterviewServices) else get_services()


@router.websocket("/ws/interview")
@router.websocket("/")
async def interview_ws(websocket: WebSocket):
    orchestrator = InterviewOrchestrator(websocket, _services_for(websocket))
    await orchestrator.run()
    logger.info("Interview socket finished | session_id=%s", orchestrator.session_id)
