"""
Session Analytics Service - session state machine

One logical active session per user, found by recency on the userId index:

    NoActiveSession --transition--> Active --timeout--> Expired
          ^                                                |
          +------------- next transition ------------------+

A session stays active while endTime + SESSION_TIMEOUT_MINUTES is in the
future. Every transition rewrites the session under optimistic locking
(version check), retrying the whole read-modify-write on conflict. The
first reader to see an aged-out session finalizes it: final delta flush,
then a session-completed event.
"""
import asyncio
import uuid
import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List, Callable, Set

from session_service.config import get_settings
from session_service.dynamo import ConditionalStore, VersionConflictError, session_key
from session_service.logic.activities import ActivityType, activity_type_for_page
from session_service.logic.fact_coverage import (
    all_fact_ids,
    collect_stage_facts,
    empty_facts_covered,
    has_facts,
    merge_facts_covered,
    union_facts_by_stage,
)
from session_service.logic.time_breakdown import (
    calculate_activity_times,
    empty_time_breakdown,
    format_timestamp,
    parse_timestamp,
    sort_transitions,
    utc_now,
)
from session_service.schemas import FlushResult, PageTransitionResponse
from session_service.services.activity_metrics_service import ActivityMetricsService
from session_service.services.analytics_emitter import AnalyticsEmitter
from session_service.services.progress_lookup import ProgressLookup

settings = get_settings()
logger = logging.getLogger(__name__)


class SessionAnalyticsService:
    """Resolves, creates, updates and finalizes user sessions."""

    def __init__(
        self,
        store: ConditionalStore,
        metrics: ActivityMetricsService,
        emitter: AnalyticsEmitter,
        progress: ProgressLookup,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Any] = asyncio.sleep
    ):
        self.store = store
        self.metrics = metrics
        self.emitter = emitter
        self.progress = progress
        self.clock = clock
        self.sleep = sleep
        self.timeout = timedelta(minutes=settings.SESSION_TIMEOUT_MINUTES)
        self._background_tasks: Set[asyncio.Task] = set()

    # ============= PAGE TRANSITIONS =============

    async def record_page_transition(
        self,
        user_id: str,
        track_id: str,
        page: str,
        facts_by_stage: Optional[Dict[str, List[str]]] = None
    ) -> PageTransitionResponse:
        """
        Apply one page-transition beacon to the user's current session.

        Conflicting writes are retried up to SESSION_MAX_ATTEMPTS times with
        SESSION_RETRY_DELAY_SECONDS * attempt between tries.

        Returns:
            PageTransitionResponse (success=False once retries are exhausted
            or on any other store error)
        """
        attempts = 0
        while attempts < settings.SESSION_MAX_ATTEMPTS:
            try:
                return await self._apply_transition(user_id, track_id, page, facts_by_stage)
            except VersionConflictError:
                attempts += 1
                if attempts >= settings.SESSION_MAX_ATTEMPTS:
                    logger.error(f"Max retry attempts reached recording transition for user {user_id}")
                    return PageTransitionResponse(
                        success=False,
                        message="Failed to record page transition after multiple attempts"
                    )
                logger.warning(f"Version conflict for user {user_id}, retry {attempts}/{settings.SESSION_MAX_ATTEMPTS}")
                await self.sleep(settings.SESSION_RETRY_DELAY_SECONDS * attempts)
            except Exception as e:
                logger.error(f"Error recording page transition for user {user_id}: {str(e)}")
                return PageTransitionResponse(success=False, message="Failed to record page transition")

        return PageTransitionResponse(success=False, message="Failed to record page transition")

    async def _apply_transition(
        self,
        user_id: str,
        track_id: str,
        page: str,
        facts_by_stage: Optional[Dict[str, List[str]]]
    ) -> PageTransitionResponse:
        now = self.clock()
        timestamp = format_timestamp(now)
        transition: Dict[str, Any] = {'timestamp': timestamp, 'page': page, 'trackId': track_id}
        if has_facts(facts_by_stage):
            transition['factsByStage'] = facts_by_stage

        session = await self.get_active_session(user_id)
        if session is None:
            return await self._create_session(user_id, track_id, transition)

        session_id = session['sessionId']
        current_version = session.get('version') or 1
        transitions = list(session.get('pageTransitions') or [])
        last = transitions[-1] if transitions else None

        is_duplicate = (
            last is not None
            and last.get('page') == page
            and last.get('trackId') == track_id
            and (now - parse_timestamp(last['timestamp'])).total_seconds() < settings.DUPLICATE_TRANSITION_WINDOW_SECONDS
        )

        if is_duplicate:
            merged, added = union_facts_by_stage(last.get('factsByStage'), facts_by_stage)
            if not added:
                return PageTransitionResponse(success=True, sessionId=session_id)
            # timestamp stays put so the merge adds no time
            transitions[-1] = {**last, 'factsByStage': merged}
        else:
            transitions.append(transition)

        key = session_key(user_id, session_id)
        if len(transitions) < 2:
            await self.store.conditional_update(key, current_version, {
                'pageTransitions': transitions,
                'endTime': timestamp,
            })
            return PageTransitionResponse(success=True, sessionId=session_id)

        updates: Dict[str, Any] = {
            'pageTransitions': transitions,
            'endTime': timestamp,
        }
        updates.update(calculate_activity_times(transitions, settings.MAX_SEGMENT_SECONDS))

        ordered = sort_transitions(transitions)
        previous_facts = ordered[-2].get('factsByStage')
        if has_facts(facts_by_stage) or has_facts(previous_facts):
            updates['factsCovered'] = await self._update_facts_covered(
                user_id, track_id, session.get('factsCovered'), facts_by_stage, previous_facts
            )

        await self.store.conditional_update(key, current_version, updates)

        if not is_duplicate:
            await self._record_completed_segment(user_id, session_id, ordered[-2], ordered[-1])

        return PageTransitionResponse(success=True, sessionId=session_id)

    async def _create_session(self, user_id: str, track_id: str, transition: Dict[str, Any]) -> PageTransitionResponse:
        session_id = str(uuid.uuid4())

        await self.metrics.clear_deltas(user_id)

        pk, sk = session_key(user_id, session_id)
        item: Dict[str, Any] = {
            'PK': pk,
            'SK': sk,
            'userId': user_id,
            'sessionId': session_id,
            'trackId': track_id,
            'startTime': transition['timestamp'],
            'endTime': transition['timestamp'],
            'pageTransitions': [transition],
            'factsCovered': empty_facts_covered(),
            'totalActiveTime': 0,
            'totalWasteTime': 0,
            'totalXpEarned': 0,
            'totalQuestions': 0,
            'correctQuestions': 0,
            'version': 1,
        }
        item.update(empty_time_breakdown())

        await self.store.put_new(item)
        logger.info(f"Created session {session_id} for user {user_id}")
        return PageTransitionResponse(success=True, sessionId=session_id)

    async def _update_facts_covered(
        self,
        user_id: str,
        track_id: str,
        facts_covered: Optional[Dict[str, List[Dict]]],
        current_facts: Optional[Dict[str, List[str]]],
        previous_facts: Optional[Dict[str, List[str]]]
    ) -> Dict[str, List[Dict]]:
        stage_facts = collect_stage_facts(current_facts, previous_facts)
        fact_ids = all_fact_ids(stage_facts)
        if not fact_ids:
            return facts_covered or empty_facts_covered()
        statuses = await self.progress.get_fact_statuses(user_id, track_id, fact_ids)
        return merge_facts_covered(facts_covered, stage_facts, statuses)

    async def _record_completed_segment(
        self,
        user_id: str,
        session_id: str,
        previous: Dict[str, Any],
        current: Dict[str, Any]
    ) -> None:
        """
        Accumulate and flush the time of the segment that just ended.

        Runs only after the session write succeeded, so a retried transition
        never counts the same segment twice. Failures are logged only.
        """
        try:
            if previous.get('page') == current.get('page'):
                return
            duration = (parse_timestamp(current['timestamp']) - parse_timestamp(previous['timestamp'])).total_seconds()
            if duration <= 0:
                return

            await self.metrics.add_delta(user_id, {
                'timeSpent': duration,
                'activeTime': min(duration, settings.ACTIVE_TIME_CAP_SECONDS),
            })

            activity_type = activity_type_for_page(previous.get('page', 'other'))
            if activity_type is None:
                return

            result = await self.metrics.flush(user_id, session_id, activity_type)
            if result:
                await self._apply_flush_result(user_id, session_id, result)
        except Exception as e:
            logger.error(f"Error sending real-time activity metrics for session {session_id}: {str(e)}")

    async def _apply_flush_result(self, user_id: str, session_id: str, result: FlushResult) -> None:
        increments = result.session_increments()
        if not increments:
            return
        try:
            await self.store.atomic_increment(session_key(user_id, session_id), increments, create_if_absent=False)
        except Exception as e:
            logger.error(f"Failed to add flushed metrics to session {session_id}: {str(e)}")

    # ============= ACTIVE SESSION & EXPIRY =============

    def is_expired(self, session: Dict[str, Any], now: Optional[datetime] = None) -> bool:
        now = now or self.clock()
        return now - parse_timestamp(session['endTime']) > self.timeout

    async def get_active_session(self, user_id: str) -> Optional[Dict[str, Any]]:
        """
        Most recent session if it is still within the inactivity timeout.

        An aged-out session is finalized (at most once across readers) and
        None is returned.
        """
        latest = await self.store.get_latest_by_user_id(user_id)
        if not latest:
            return None
        if not self.is_expired(latest):
            return latest

        await self.finalize_expired_session(latest)
        return None

    async def finalize_expired_session(self, session: Dict[str, Any]) -> bool:
        """
        Final flush plus completion event for an expired session.

        Returns:
            False when another reader already claimed finalization
        """
        user_id = session['userId']
        session_id = session['sessionId']
        key = session_key(user_id, session_id)

        try:
            claimed = await self.store.claim_marker(key, 'finalizedAt', format_timestamp(self.clock()))
        except Exception as e:
            logger.warning(f"Could not claim finalization of session {session_id}, finalizing anyway: {str(e)}")
            claimed = True
        if not claimed:
            return False

        activity_type = self._last_activity_type(session)
        await self._flush_with_retry(user_id, session_id, activity_type)

        self._spawn(self.emitter.send_session_completed_event(user_id, session))
        logger.info(f"Finalized expired session {session_id} for user {user_id}")
        return True

    @staticmethod
    def _last_activity_type(session: Dict[str, Any]) -> ActivityType:
        transitions = sort_transitions(session.get('pageTransitions') or [])
        if not transitions:
            return ActivityType.DAILY_GOALS
        return activity_type_for_page(transitions[-1].get('page', 'other')) or ActivityType.DAILY_GOALS

    async def _flush_with_retry(self, user_id: str, session_id: str, activity_type: ActivityType) -> Optional[FlushResult]:
        max_attempts = settings.EXPIRY_FLUSH_MAX_ATTEMPTS
        for attempt in range(1, max_attempts + 1):
            try:
                result = await self.metrics.flush(user_id, session_id, activity_type, raise_on_error=True)
                if result:
                    await self._apply_flush_result(user_id, session_id, result)
                return result
            except Exception as e:
                if attempt >= max_attempts:
                    logger.error(f"Failed to flush deltas for expired session {session_id}: {str(e)}")
                    return None
                delay = min(
                    settings.EXPIRY_FLUSH_BACKOFF_BASE_SECONDS * (2 ** (attempt - 1)),
                    settings.EXPIRY_FLUSH_BACKOFF_MAX_SECONDS
                )
                logger.warning(f"Flush attempt {attempt} failed for session {session_id}, retrying in {delay}s")
                await self.sleep(delay)
        return None

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def wait_for_background_tasks(self) -> None:
        """Wait for fire-and-forget completion events (shutdown and tests)"""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)
