"""Session Reports - short-range, read-only queries over stored sessions"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List, Callable

from session_service.config import get_settings
from session_service.dynamo import ConditionalStore
from session_service.logic.activities import FACT_STAGES, TIME_FIELDS
from session_service.logic.time_breakdown import (
    calculate_metrics_for_track,
    count_facts_for_track,
    format_timestamp,
    parse_timestamp,
    utc_now,
)
from session_service.schemas import (
    SessionAnalyticsResponse,
    SessionSummary,
    TimeByActivity,
)

settings = get_settings()
logger = logging.getLogger(__name__)

SESSION_TOTALS = ['totalActiveTime', 'totalWasteTime', 'totalXpEarned', 'totalQuestions', 'correctQuestions']


def start_of_day(value: datetime) -> datetime:
    return value.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)


class SessionReportService:
    """Aggregates for dashboards: today, a date window, the last week."""

    def __init__(self, store: ConditionalStore, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.clock = clock

    async def get_session_analytics(
        self,
        user_id: str,
        track_id: Optional[str] = None,
        from_date: Optional[str] = None,
        to_date: Optional[str] = None
    ) -> SessionAnalyticsResponse:
        """
        Aggregate session time and metrics over a window.

        The window defaults to today (UTC). Sessions count when they start at
        or after from_date and end at or before to_date. With a track id,
        time is recomputed from the transitions on that track only and the
        average seconds per fact is reported per stage; accumulated metrics
        are not tracked per track and stay at 0.
        """
        today = start_of_day(self.clock())
        window_start = parse_timestamp(from_date) if from_date else today
        window_end = parse_timestamp(to_date) if to_date else today + timedelta(days=1) - timedelta(milliseconds=1)

        try:
            sessions = await self.store.query_by_user_id(user_id, start_from=format_timestamp(window_start))
        except Exception as e:
            logger.error(f"Error getting session analytics for user {user_id}: {str(e)}")
            return SessionAnalyticsResponse()

        sessions = [
            s for s in sessions
            if parse_timestamp(s['startTime']) >= window_start and parse_timestamp(s['endTime']) <= window_end
        ]

        if track_id:
            return self._track_analytics(sessions, track_id)

        totals: Dict[str, float] = {field: 0 for field in TIME_FIELDS}
        response = SessionAnalyticsResponse()
        for session in sessions:
            response.totalTimeSpent += session.get('totalDuration') or 0
            for field in TIME_FIELDS:
                totals[field] += session.get(field) or 0
            for field in SESSION_TOTALS:
                setattr(response, field, getattr(response, field) + (session.get(field) or 0))
        response.timeByActivity = TimeByActivity(**totals)
        return response

    @staticmethod
    def _track_analytics(sessions: List[Dict[str, Any]], track_id: str) -> SessionAnalyticsResponse:
        metrics = calculate_metrics_for_track(sessions, track_id, settings.MAX_SEGMENT_SECONDS)
        fact_counts = count_facts_for_track(sessions, track_id)

        averages = {}
        for stage in FACT_STAGES:
            if fact_counts[stage] > 0:
                averages[stage] = metrics['timeByActivity'][f'{stage}Time'] / fact_counts[stage]

        return SessionAnalyticsResponse(
            totalTimeSpent=metrics['totalTimeSpent'],
            timeByActivity=TimeByActivity(**metrics['timeByActivity']),
            averageTimePerIteration=averages
        )

    async def get_last_activity(self, user_id: str) -> Optional[str]:
        """endTime of the user's most recent session"""
        try:
            latest = await self.store.get_latest_by_user_id(user_id)
        except Exception as e:
            logger.error(f"Error getting last activity for user {user_id}: {str(e)}")
            return None
        return latest.get('endTime') if latest else None

    async def get_user_sessions_last_week(self, user_id: str) -> List[Dict[str, Any]]:
        """Sessions started during the 7 days before today, newest first"""
        today = start_of_day(self.clock())
        week_start = today - timedelta(days=7)
        yesterday_end = today - timedelta(milliseconds=1)
        try:
            sessions = await self.store.query_by_user_id(
                user_id,
                start_from=format_timestamp(week_start),
                start_to=format_timestamp(yesterday_end)
            )
        except Exception as e:
            logger.error(f"Error getting last week's sessions for user {user_id}: {str(e)}")
            return []
        return sorted(sessions, key=lambda s: s['startTime'], reverse=True)

    async def get_session_history(self, user_id: str, track_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Time spent today plus a per-day breakdown of the previous 7 days.

        Returns:
            {"totalTimeToday", "totalTimeLastWeek", "dailyTimeData": [{"date", "totalTime"}]}
        """
        today = start_of_day(self.clock())
        today_data = await self.get_session_analytics(user_id, track_id=track_id)
        sessions = await self.get_user_sessions_last_week(user_id)

        daily = {
            (today + timedelta(days=offset)).strftime('%Y-%m-%d'): 0.0
            for offset in range(-7, 0)
        }
        for session in sessions:
            day = parse_timestamp(session['startTime']).strftime('%Y-%m-%d')
            if day not in daily:
                continue
            if track_id:
                daily[day] += calculate_metrics_for_track([session], track_id, settings.MAX_SEGMENT_SECONDS)['totalTimeSpent']
            else:
                daily[day] += session.get('totalDuration') or 0

        return {
            'totalTimeToday': today_data.totalTimeSpent,
            'totalTimeLastWeek': sum(daily.values()),
            'dailyTimeData': [{'date': day, 'totalTime': total} for day, total in daily.items()],
        }

    @staticmethod
    def summarize(session: Dict[str, Any]) -> SessionSummary:
        return SessionSummary(
            sessionId=session['sessionId'],
            trackId=session.get('trackId'),
            startTime=session['startTime'],
            endTime=session['endTime'],
            totalDuration=session.get('totalDuration') or 0,
            totalActiveTime=session.get('totalActiveTime') or 0,
            totalXpEarned=session.get('totalXpEarned') or 0
        )
