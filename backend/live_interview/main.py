import logging

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.config import get_settings
from core.logger import configure_logging
from live_interview.api.interview_routes import router as interview_router
from live_interview.api.ws_interview import router as interview_ws_router
from live_interview.dependencies import InterviewServices
from live_interview.system_metrics import get_metrics_snapshot

settings = get_settings()
configure_logging(settings.log_level)

app = FastAPI(title="Live Interview Pipeline")
logger = logging.getLogger("live_interview.main")

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_allow_origins),
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,
)

app.state.services = InterviewServices.from_settings(settings)

app.include_router(interview_ws_router)
app.include_router(interview_router)


@app.get("/health")
def health():
    services = app.state.services
    return {
        "status": "ok",
        "service": "live-interview",
        "mode": "test" if services.settings.test_mode else "live",
        "activeSessions": len(services.registry),
    }


@app.get("/metrics")
def metrics():
    services = app.state.services
    return get_metrics_snapshot(extra={"sessions_active": len(services.registry)})


if __name__ == "__main__":
    logger.info("Starting live interview server on port %s", settings.client_port)
    uvicorn.run(app, host="0.0.0.0", port=settings.client_port)
