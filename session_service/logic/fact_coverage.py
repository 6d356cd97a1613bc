"""
Fact coverage bookkeeping for sessions

factsCovered maps each fact stage to a list of records:
    {"factId": str, "initialStatus": str, "statusChanged": bool}

initialStatus is the mastery status seen the first time the fact showed up
in that stage during the session. statusChanged flips to True once a later
lookup returns a different status and never flips back.
"""
from typing import Dict, List, Optional, Tuple

from session_service.logic.activities import FACT_STAGES

UNKNOWN_STATUS = 'unknown'


def empty_facts_covered() -> Dict[str, List[Dict]]:
    return {stage: [] for stage in FACT_STAGES}


def has_facts(facts_by_stage: Optional[Dict[str, List[str]]]) -> bool:
    return any(facts_by_stage.get(stage) for stage in FACT_STAGES) if facts_by_stage else False


def union_facts_by_stage(
    existing: Optional[Dict[str, List[str]]],
    incoming: Optional[Dict[str, List[str]]]
) -> Tuple[Dict[str, List[str]], bool]:
    """
    Union incoming fact ids into existing, per stage, keeping order and
    dropping duplicates.

    Returns:
        (merged facts by stage, whether anything new was added)
    """
    merged = {stage: list(ids) for stage, ids in (existing or {}).items()}
    added = False
    for stage, fact_ids in (incoming or {}).items():
        bucket = merged.setdefault(stage, [])
        for fact_id in fact_ids or []:
            if fact_id not in bucket:
                bucket.append(fact_id)
                added = True
    return merged, added


def collect_stage_facts(
    current: Optional[Dict[str, List[str]]],
    previous: Optional[Dict[str, List[str]]]
) -> Dict[str, List[str]]:
    """Per stage, unique fact ids from the current then the previous transition"""
    collected: Dict[str, List[str]] = {}
    for stage in FACT_STAGES:
        ids: List[str] = []
        for source in (current or {}, previous or {}):
            for fact_id in source.get(stage) or []:
                if isinstance(fact_id, str) and fact_id not in ids:
                    ids.append(fact_id)
        collected[stage] = ids
    return collected


def all_fact_ids(stage_facts: Dict[str, List[str]]) -> List[str]:
    seen: List[str] = []
    for ids in stage_facts.values():
        for fact_id in ids:
            if fact_id not in seen:
                seen.append(fact_id)
    return seen


def merge_facts_covered(
    facts_covered: Optional[Dict[str, List[Dict]]],
    stage_facts: Dict[str, List[str]],
    statuses: Dict[str, str]
) -> Dict[str, List[Dict]]:
    """
    Fold the facts touched by one segment into the session's coverage.

    Facts seen in this segment come first (in segment order), followed by
    earlier-covered facts that this segment did not touch.

    Args:
        facts_covered: Current session coverage (not mutated)
        stage_facts: Fact ids per stage touched by the segment
        statuses: Live mastery status per fact id; missing means unknown

    Returns:
        New coverage dict with every stage present
    """
    facts_covered = facts_covered or {}
    updated = empty_facts_covered()

    for stage in FACT_STAGES:
        existing = {record['factId']: dict(record) for record in facts_covered.get(stage) or []}
        result = []
        for fact_id in stage_facts.get(stage) or []:
            live_status = statuses.get(fact_id) or UNKNOWN_STATUS
            record = existing.pop(fact_id, None)
            if record is None:
                record = {'factId': fact_id, 'initialStatus': live_status, 'statusChanged': False}
            elif record.get('initialStatus') is None:
                record['initialStatus'] = live_status
                record['statusChanged'] = False
            elif not record.get('statusChanged') and live_status != record['initialStatus']:
                record['statusChanged'] = True
            result.append(record)
        result.extend(existing.values())
        updated[stage] = result

    return updated
