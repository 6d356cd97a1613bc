"""
Activity Metrics Service - rolling delta counters

Counters live on one item per user per UTC day (METRICS#<YYYY-MM-DD>) as
<metric>Delta attributes. add_delta increments them atomically; flush
snapshots and clears the present deltas in a single update, derives
active/waste time and XP, and reports them.
"""
import asyncio
import logging
from datetime import datetime
from typing import Optional, Dict, Any, Callable

from session_service.config import get_settings
from session_service.dynamo import ConditionalStore, metrics_key
from session_service.logic.activities import ActivityType
from session_service.logic.time_breakdown import utc_now, format_timestamp
from session_service.schemas import FlushResult
from session_service.services.analytics_emitter import AnalyticsEmitter

settings = get_settings()
logger = logging.getLogger(__name__)

METRICS = ['timeSpent', 'activeTime', 'xpEarned', 'totalQuestions', 'correctQuestions', 'masteredUnits']
REPORTED_COUNTS = ['totalQuestions', 'correctQuestions', 'masteredUnits']


def delta_field(metric: str) -> str:
    return f'{metric}Delta'


class ActivityMetricsService:
    """Delta accumulator with atomic flush-and-reset."""

    def __init__(
        self,
        store: ConditionalStore,
        emitter: AnalyticsEmitter,
        perfect_accuracy_multiplier: Optional[float] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.store = store
        self.emitter = emitter
        self.perfect_accuracy_multiplier = (
            settings.PERFECT_ACCURACY_MULTIPLIER if perfect_accuracy_multiplier is None else perfect_accuracy_multiplier
        )
        self.clock = clock
        self._flush_locks: Dict[str, asyncio.Lock] = {}

    @staticmethod
    def _accepts(metric: str, value: Any) -> bool:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False
        if value <= 0:
            return False
        # counts must be whole numbers
        return metric not in REPORTED_COUNTS or float(value).is_integer()

    def _today(self) -> str:
        return self.clock().strftime('%Y-%m-%d')

    async def add_delta(self, user_id: str, deltas: Dict[str, Any]) -> None:
        """
        Atomically increment today's counters. Zero, negative and
        non-numeric values are skipped, as are fractional counts; counters
        missing on the item start at 0.
        """
        amounts = {
            delta_field(metric): value
            for metric, value in (deltas or {}).items()
            if self._accepts(metric, value)
        }
        if not amounts:
            return

        try:
            await self.store.atomic_increment(
                metrics_key(user_id, self._today()),
                amounts,
                create_if_absent=True,
                stamp_field='lastIncrement',
                stamp_value=format_timestamp(self.clock())
            )
        except Exception as e:
            logger.error(f"Error adding metric deltas for user {user_id}: {str(e)}")

    async def clear_deltas(self, user_id: str) -> None:
        """Drop any leftover deltas for today (best effort)"""
        key = metrics_key(user_id, self._today())
        try:
            item = await self.store.get_item(key)
            if not item:
                return
            present = [delta_field(m) for m in METRICS if delta_field(m) in item]
            if present:
                await self.store.remove_attributes(key, present)
                logger.info(f"Cleared {len(present)} leftover metric deltas for user {user_id}")
        except Exception as e:
            logger.error(f"Error clearing metric deltas for user {user_id}: {str(e)}")

    async def flush(
        self,
        user_id: str,
        session_id: str,
        activity_type: ActivityType,
        raise_on_error: bool = False
    ) -> Optional[FlushResult]:
        """
        Snapshot and clear today's deltas, then report them.

        A flush already running for the same user and day makes this call
        return None right away.

        Args:
            user_id: User identifier
            session_id: Session the reported metrics are attributed to
            activity_type: Activity the time was spent on
            raise_on_error: Re-raise store errors instead of returning None

        Returns:
            FlushResult, or None when there was nothing to flush
        """
        flush_key = f"{user_id}-{self._today()}"
        lock = self._flush_locks.setdefault(flush_key, asyncio.Lock())
        if lock.locked():
            logger.info(f"Flush already in progress for {flush_key}, skipping")
            return None

        try:
            async with lock:
                return await self._flush(user_id, session_id, activity_type)
        except Exception as e:
            logger.error(f"Error flushing activity metrics for user {user_id}: {str(e)}")
            if raise_on_error:
                raise
            return None
        finally:
            if not lock.locked():
                self._flush_locks.pop(flush_key, None)

    async def _flush(self, user_id: str, session_id: str, activity_type: ActivityType) -> Optional[FlushResult]:
        key = metrics_key(user_id, self._today())
        item = await self.store.get_item(key)
        if not item:
            return None

        present = [delta_field(m) for m in METRICS if delta_field(m) in item]
        if not present:
            return None

        flushed = await self.store.snapshot_and_clear(
            key,
            present,
            stamp_field='lastFlush',
            stamp_value=format_timestamp(self.clock())
        )
        if not flushed:
            return None

        raw_seconds = flushed.get('timeSpentDelta', 0)
        active_seconds = min(flushed.get('activeTimeDelta', 0), raw_seconds)
        waste_seconds = max(raw_seconds - active_seconds, 0)
        xp_earned = active_seconds / 60

        total_questions = flushed.get('totalQuestionsDelta', 0)
        correct_questions = flushed.get('correctQuestionsDelta', 0)
        if total_questions > 0 and total_questions == correct_questions:
            xp_earned = xp_earned * self.perfect_accuracy_multiplier

        items: Dict[str, float] = {}
        if xp_earned > 0:
            items['xpEarned'] = xp_earned
        for metric in REPORTED_COUNTS:
            value = flushed.get(delta_field(metric))
            if isinstance(value, (int, float)):
                items[metric] = value

        now = format_timestamp(self.clock())
        if items:
            await self.emitter.send_metrics(user_id, session_id, items, event_time=now)
        if active_seconds > 0:
            await self.emitter.send_activity_time(
                user_id,
                session_id,
                activity_type,
                time_spent=active_seconds,
                waste_time=waste_seconds,
                event_time=now
            )

        logger.info(
            f"Flushed metrics for user {user_id}: active={active_seconds}s waste={waste_seconds}s xp={xp_earned:.2f}"
        )
        return FlushResult(
            active_time=active_seconds,
            waste_time=waste_seconds,
            xp_earned=xp_earned,
            total_questions=items.get('totalQuestions'),
            correct_questions=items.get('correctQuestions')
        )
