"""
Time breakdown calculations for sessions

Pure functions over lists of page transitions:
- calculate_activity_times: per-activity seconds for one session
- calculate_metrics_for_track: per-activity seconds across sessions, one track only
- count_facts_for_track: unique fact ids per stage across sessions, one track only

A segment is the gap between two consecutive transitions (sorted by
timestamp); it is attributed to the page of the earlier transition.
"""
import math
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional

from session_service.logic.activities import (
    FACT_STAGES,
    FLUENCY_STAGES,
    TIME_FIELDS,
    activity_for_page,
)

MAX_SEGMENT_SECONDS = 7200


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO 8601 timestamp (accepts trailing Z)"""
    parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime) -> str:
    """ISO 8601 UTC with millisecond precision and Z suffix"""
    value = value.astimezone(timezone.utc)
    return value.strftime('%Y-%m-%dT%H:%M:%S.') + f'{value.microsecond // 1000:03d}Z'


def round_half_up(seconds: float) -> int:
    return int(math.floor(seconds + 0.5))


def empty_time_breakdown() -> Dict[str, Any]:
    breakdown = {field: 0 for field in TIME_FIELDS}
    breakdown['totalDuration'] = 0
    return breakdown


def sort_transitions(transitions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(transitions, key=lambda t: parse_timestamp(t['timestamp']))


def fluency_stage_for(transition: Dict[str, Any]) -> Optional[str]:
    """
    First fluency tier with a non-empty fact list on the transition,
    checked 6s -> 3s -> 2s -> 1.5s -> 1s.
    """
    facts_by_stage = transition.get('factsByStage') or {}
    for stage in FLUENCY_STAGES:
        if facts_by_stage.get(stage):
            return stage
    return None


def time_field_for(transition: Dict[str, Any]) -> Optional[str]:
    """
    Session time field a segment starting at this transition counts toward.

    Onboarding counts as assessment time. A fluency segment without any
    tier facts has no field (it only counts toward the total).
    """
    activity = activity_for_page(transition.get('page', 'other'))
    if activity == 'fluencyPractice':
        stage = fluency_stage_for(transition)
        return f'{stage}Time' if stage else None
    if activity in ('assessment', 'onboarding'):
        return 'assessmentTime'
    if activity in ('learning', 'accuracyPractice'):
        return f'{activity}Time'
    return 'otherTime'


def calculate_activity_times(
    transitions: List[Dict[str, Any]],
    max_segment_seconds: int = MAX_SEGMENT_SECONDS
) -> Dict[str, int]:
    """
    Calculate time spent per activity for a session.

    Each segment duration is rounded to whole seconds (half rounds up).
    Segments that are negative or longer than max_segment_seconds are
    discarded.

    Args:
        transitions: Page transitions of the session, any order
        max_segment_seconds: Upper bound for a single segment

    Returns:
        Dict with totalDuration and one <activity>Time field per activity
    """
    breakdown = empty_time_breakdown()
    ordered = sort_transitions(transitions)

    for current, following in zip(ordered, ordered[1:]):
        elapsed = (parse_timestamp(following['timestamp']) - parse_timestamp(current['timestamp'])).total_seconds()
        duration = round_half_up(elapsed)
        if duration < 0 or duration > max_segment_seconds:
            continue

        breakdown['totalDuration'] += duration
        field = time_field_for(current)
        if field:
            breakdown[field] += duration

    return breakdown


def calculate_metrics_for_track(
    sessions: List[Dict[str, Any]],
    track_id: str,
    max_segment_seconds: int = MAX_SEGMENT_SECONDS
) -> Dict[str, Any]:
    """Unrounded per-activity seconds across sessions for segments on one track"""
    time_by_activity = {field: 0.0 for field in TIME_FIELDS}
    total = 0.0

    for session in sessions:
        ordered = sort_transitions(session.get('pageTransitions') or [])
        for current, following in zip(ordered, ordered[1:]):
            if current.get('trackId') != track_id:
                continue
            duration = (parse_timestamp(following['timestamp']) - parse_timestamp(current['timestamp'])).total_seconds()
            if duration < 0 or duration > max_segment_seconds:
                continue
            total += duration
            field = time_field_for(current)
            if field:
                time_by_activity[field] += duration

    return {'totalTimeSpent': total, 'timeByActivity': time_by_activity}


def count_facts_for_track(sessions: List[Dict[str, Any]], track_id: str) -> Dict[str, int]:
    unique: Dict[str, set] = {stage: set() for stage in FACT_STAGES}
    for session in sessions:
        for transition in session.get('pageTransitions') or []:
            if transition.get('trackId') != track_id:
                continue
            facts_by_stage = transition.get('factsByStage') or {}
            for stage in FACT_STAGES:
                unique[stage].update(facts_by_stage.get(stage) or [])
    return {stage: len(fact_ids) for stage, fact_ids in unique.items()}
