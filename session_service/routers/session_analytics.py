"""
Session Analytics Router

PATHS:
- POST /api/v1/session-analytics/page-transition
- GET  /api/v1/session-analytics
- GET  /api/v1/session-analytics/last-activity
- GET  /api/v1/session-analytics/user-sessions-last-week
- GET  /api/v1/session-analytics/history
"""
from functools import lru_cache
from typing import Optional
from fastapi import APIRouter, HTTPException, Depends, Query
from fastapi.responses import JSONResponse
import logging

from session_service import dynamo
from session_service.caliper_client import CaliperCollector
from session_service.schemas import (
    PageTransitionRequest,
    PageTransitionResponse,
    SessionAnalyticsResponse,
    LastActivityResponse,
    UserSessionsResponse,
    SessionHistoryResponse,
)
from session_service.services.activity_metrics_service import ActivityMetricsService
from session_service.services.analytics_emitter import AnalyticsEmitter
from session_service.services.progress_lookup import ProgressLookup
from session_service.services.session_analytics_service import SessionAnalyticsService
from session_service.services.session_reports import SessionReportService
from session_service.services.token_provider import TokenProvider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/session-analytics", tags=["session-analytics"])


# Singletons: the flush lock table and the token cache must be shared by all requests

@lru_cache()
def get_analytics_emitter() -> AnalyticsEmitter:
    return AnalyticsEmitter(
        collector=CaliperCollector(),
        token_provider=TokenProvider(),
        profile_store=dynamo.get_metrics_store()
    )


@lru_cache()
def get_session_analytics_service() -> SessionAnalyticsService:
    """Dependency injection for SessionAnalyticsService."""
    emitter = get_analytics_emitter()
    return SessionAnalyticsService(
        store=dynamo.get_session_store(),
        metrics=ActivityMetricsService(dynamo.get_metrics_store(), emitter),
        emitter=emitter,
        progress=ProgressLookup(dynamo.get_metrics_store())
    )


def get_session_report_service() -> SessionReportService:
    return SessionReportService(dynamo.get_session_store())


@router.post("/page-transition", response_model=PageTransitionResponse)
async def record_page_transition(
    request: PageTransitionRequest,
    service: SessionAnalyticsService = Depends(get_session_analytics_service)
):
    """
    Record a page transition for the user's current session.

    Malformed beacons are rejected with 422 before any session state
    changes. A session write that still conflicts after retries answers
    500 with success=false.
    """
    result = await service.record_page_transition(
        user_id=request.userId,
        track_id=request.trackId,
        page=request.page,
        facts_by_stage=request.factsByStage
    )
    if not result.success:
        return JSONResponse(status_code=500, content=result.model_dump(exclude_none=True))
    return result


@router.get("", response_model=SessionAnalyticsResponse)
async def get_session_analytics(
    userId: str = Query(..., min_length=1),
    trackId: Optional[str] = Query(None),
    fromDate: Optional[str] = Query(None, description="ISO 8601, defaults to start of today (UTC)"),
    toDate: Optional[str] = Query(None, description="ISO 8601, defaults to end of today (UTC)"),
    service: SessionReportService = Depends(get_session_report_service)
):
    try:
        return await service.get_session_analytics(userId, track_id=trackId, from_date=fromDate, to_date=toDate)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid date: {str(e)}")


@router.get("/last-activity", response_model=LastActivityResponse)
async def get_last_activity(
    userId: str = Query(..., min_length=1),
    service: SessionReportService = Depends(get_session_report_service)
):
    last_activity = await service.get_last_activity(userId)
    return LastActivityResponse(userId=userId, lastActivity=last_activity)


@router.get("/user-sessions-last-week", response_model=UserSessionsResponse)
async def get_user_sessions_last_week(
    userId: str = Query(..., min_length=1),
    service: SessionReportService = Depends(get_session_report_service)
):
    sessions = await service.get_user_sessions_last_week(userId)
    return UserSessionsResponse(userId=userId, sessions=[service.summarize(s) for s in sessions])


@router.get("/history", response_model=SessionHistoryResponse)
async def get_session_history(
    userId: str = Query(..., min_length=1),
    trackId: Optional[str] = Query(None),
    service: SessionReportService = Depends(get_session_report_service)
):
    history = await service.get_session_history(userId, track_id=trackId)
    return SessionHistoryResponse(userId=userId, **history)
