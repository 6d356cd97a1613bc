"""
Analytics Emitter

Turns flush results and session completions into Caliper records and hands
them to the collector. Emission is best effort: every public method catches
and logs its own failures and reports success as a bool, so metric
reporting never breaks session tracking.
"""
import uuid
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

from session_service.config import get_settings
from session_service.caliper_client import CaliperCollector
from session_service.dynamo import ConditionalStore, profile_key
from session_service.logic.activities import (
    ActivityType,
    ACTIVITY_TIME_FIELDS,
    FLUENCY_STAGES,
    activity_type_for_page,
)
from session_service.logic.time_breakdown import (
    format_timestamp,
    fluency_stage_for,
    sort_transitions,
)
from session_service.services.token_provider import TokenProvider

settings = get_settings()
logger = logging.getLogger(__name__)

ACTIVITY_RESOURCE_SLUGS = {
    ActivityType.LEARNING: 'learning',
    ActivityType.ACCURACY_PRACTICE: 'accuracy-practice',
    ActivityType.FLUENCY_PRACTICE: 'fluency-practice',
    ActivityType.ASSESSMENT: 'assessment',
    ActivityType.ONBOARDING: 'onboarding',
    ActivityType.DAILY_GOALS: 'daily-goals',
}

# Stage whose facts are counted for each activity on session completion
ACTIVITY_FACT_STAGES = {
    ActivityType.LEARNING: ['learning'],
    ActivityType.ACCURACY_PRACTICE: ['accuracyPractice'],
    ActivityType.FLUENCY_PRACTICE: FLUENCY_STAGES,
    ActivityType.ASSESSMENT: [],
    ActivityType.ONBOARDING: [],
}


class AnalyticsEmitter:
    """Builds Caliper envelopes and posts them to the collector."""

    def __init__(
        self,
        collector: CaliperCollector,
        token_provider: TokenProvider,
        profile_store: ConditionalStore,
        enabled: Optional[bool] = None
    ):
        self.collector = collector
        self.token_provider = token_provider
        self.profile_store = profile_store
        self.enabled = settings.ANALYTICS_ENABLED if enabled is None else enabled

    # ============= PUBLIC API =============

    async def send_metrics(
        self,
        user_id: str,
        session_id: str,
        items: Dict[str, float],
        event_time: Optional[str] = None
    ) -> bool:
        """
        Send accumulated metric items (xpEarned, totalQuestions, ...) as one
        ActivityEvent. No-op on empty items.
        """
        if not items:
            return False
        try:
            email = await self._get_user_email(user_id)
            event = self._event(
                event_type='ActivityEvent',
                action='Completed',
                user_id=user_id,
                email=email,
                session_id=session_id,
                activity={
                    'id': self._resource_id('activity-metrics'),
                    'name': 'Activity Metrics'
                },
                event_time=event_time,
                generated={
                    'id': f"{settings.ONEROSTER_API_BASE}/ims/metrics/collections/activity/{session_id}",
                    'type': 'TimebackActivityMetricsCollection',
                    'items': [{'type': key, 'value': value} for key, value in items.items()]
                }
            )
            return await self._post([event])
        except Exception as e:
            logger.error(f"Error sending metrics for user {user_id}, session {session_id}: {str(e)}")
            return False

    async def send_activity_time(
        self,
        user_id: str,
        session_id: str,
        activity_type: ActivityType,
        time_spent: float,
        waste_time: float = 0,
        facts_count: Optional[int] = None,
        event_time: Optional[str] = None
    ) -> bool:
        """
        Send time spent on an activity as a TimeSpentEvent, plus an
        ActivityEvent carrying the facts count when there is one.

        Args:
            user_id: User identifier
            session_id: Session the time belongs to
            activity_type: Reportable activity
            time_spent: Active seconds
            waste_time: Idle seconds within the same segment
            facts_count: Facts practiced, reported as totalQuestions
            event_time: ISO timestamp, defaults to now

        Returns:
            True if a record was accepted by the collector
        """
        if not time_spent and not facts_count:
            return False
        try:
            email = await self._get_user_email(user_id)
            activity = {
                'id': self._resource_id(ACTIVITY_RESOURCE_SLUGS.get(activity_type, 'activity')),
                'name': activity_type.value
            }
            events = []
            if time_spent and time_spent > 0:
                events.append(self._event(
                    event_type='TimeSpentEvent',
                    action='SpentTime',
                    user_id=user_id,
                    email=email,
                    session_id=session_id,
                    activity=activity,
                    event_time=event_time,
                    generated={
                        'id': f"{settings.ONEROSTER_API_BASE}/ims/metrics/collections/timespent/{session_id}",
                        'type': 'TimebackTimeSpentMetricsCollection',
                        'items': [
                            {'type': 'active', 'value': time_spent},
                            {'type': 'waste', 'value': waste_time or 0}
                        ]
                    }
                ))
            if facts_count and facts_count > 0:
                events.append(self._event(
                    event_type='ActivityEvent',
                    action='Completed',
                    user_id=user_id,
                    email=email,
                    session_id=session_id,
                    activity=activity,
                    event_time=event_time,
                    generated={
                        'id': f"{settings.ONEROSTER_API_BASE}/ims/metrics/collections/activity/{session_id}",
                        'type': 'TimebackActivityMetricsCollection',
                        'items': [{'type': 'totalQuestions', 'value': facts_count}],
                        'extensions': {'factsPracticed': facts_count}
                    }
                ))
            return await self._post(events)
        except Exception as e:
            logger.error(f"Error sending {activity_type.value} time for user {user_id}, session {session_id}: {str(e)}")
            return False

    async def send_session_completed_event(self, user_id: str, session: Dict[str, Any]) -> bool:
        """
        Report the session's last activity only (facts covered and time).

        XP is never part of this event; it already went out with the
        real-time flushes. Sessions ending on a non-reportable page send
        nothing.
        """
        session_id = session.get('sessionId', '')
        try:
            transitions = sort_transitions(session.get('pageTransitions') or [])
            if not transitions:
                return False

            last = transitions[-1]
            activity_type = activity_type_for_page(last.get('page', 'other'))
            if activity_type is None:
                return False

            facts_count, time_spent = self._last_activity_totals(session, last, activity_type)
            if facts_count <= 0 and time_spent <= 0:
                return False

            return await self.send_activity_time(
                user_id=user_id,
                session_id=session_id,
                activity_type=activity_type,
                time_spent=time_spent,
                waste_time=0,
                facts_count=facts_count or None,
                event_time=session.get('endTime')
            )
        except Exception as e:
            logger.error(f"Error sending session completed event for session {session_id}: {str(e)}")
            return False

    # ============= HELPERS =============

    @staticmethod
    def _last_activity_totals(session: Dict[str, Any], last: Dict[str, Any], activity_type: ActivityType):
        facts_covered = session.get('factsCovered') or {}

        if activity_type == ActivityType.FLUENCY_PRACTICE:
            stage = fluency_stage_for(last)
            stages = [stage] if stage else FLUENCY_STAGES
            facts_count = sum(len(facts_covered.get(s) or []) for s in stages)
            time_spent = sum(session.get(f'{s}Time') or 0 for s in stages)
            return facts_count, time_spent

        facts_count = sum(len(facts_covered.get(s) or []) for s in ACTIVITY_FACT_STAGES[activity_type])
        time_spent = sum(session.get(field) or 0 for field in ACTIVITY_TIME_FIELDS[activity_type])
        return facts_count, time_spent

    async def _get_user_email(self, user_id: str) -> str:
        try:
            profile = await self.profile_store.get_item(profile_key(user_id))
        except Exception as e:
            logger.warning(f"Could not load profile for user {user_id}: {str(e)}")
            return ''
        return (profile or {}).get('email') or ''

    @staticmethod
    def _resource_id(slug: str) -> str:
        return f"{settings.ONEROSTER_API_BASE}/ims/oneroster/resources/v1p2/resources/{settings.CALIPER_APP_SLUG}-{slug}"

    def _event(
        self,
        event_type: str,
        action: str,
        user_id: str,
        email: str,
        session_id: str,
        activity: Dict[str, str],
        event_time: Optional[str],
        generated: Dict[str, Any]
    ) -> Dict[str, Any]:
        return {
            'id': f'urn:uuid:{uuid.uuid4()}',
            'type': event_type,
            'actor': {
                'id': f"{settings.ONEROSTER_API_BASE}/ims/oneroster/rostering/v1p2/users/{user_id}",
                'type': 'TimebackUser',
                'email': email
            },
            'action': action,
            'object': {
                'id': f"{settings.ONEROSTER_API_BASE}/ims/activity/context/{session_id}",
                'type': 'TimebackActivityContext',
                'subject': settings.CALIPER_SUBJECT,
                'app': {'name': settings.CALIPER_APP_NAME},
                'activity': activity,
                'course': {
                    'id': f"{settings.ONEROSTER_API_BASE}/ims/oneroster/rostering/v1p2/courses/{settings.CALIPER_APP_SLUG}",
                    'name': settings.CALIPER_APP_NAME
                }
            },
            'eventTime': event_time or format_timestamp(datetime.now(timezone.utc)),
            'profile': 'TimebackProfile',
            'generated': generated
        }

    async def _post(self, events: List[Dict[str, Any]]) -> bool:
        if not events:
            return False
        if not self.enabled:
            logger.info(f"Analytics disabled, dropping {len(events)} event(s)")
            return False

        access_token = await self.token_provider.get_token()
        envelope = {
            'sensor': settings.CALIPER_SENSOR,
            'sendTime': format_timestamp(datetime.now(timezone.utc)),
            'dataVersion': settings.CALIPER_DATA_VERSION,
            'data': events
        }
        sent = await self.collector.post_metric_record(envelope, access_token)
        if sent:
            logger.info(f"Sent {len(events)} Caliper event(s): {', '.join(e['type'] for e in events)}")
        return sent
