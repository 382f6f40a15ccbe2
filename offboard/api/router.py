from fastapi import APIRouter

from offboard.api.execution_logs import router as execution_logs_router
from offboard.api.poller import router as poller_router
from offboard.api.scheduled_actions import router as scheduled_actions_router

api_router = APIRouter()

# API routes at /api/*
api_router.include_router(scheduled_actions_router, prefix="/api", tags=["scheduled-actions"])
api_router.include_router(execution_logs_router, prefix="/api", tags=["execution-logs"])
api_router.include_router(poller_router, prefix="/api", tags=["poller"])
