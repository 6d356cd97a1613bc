"""Progress Lookup - live mastery status of facts"""
from typing import Dict, List
import logging

from session_service.dynamo import ConditionalStore, progress_key
from session_service.logic.fact_coverage import UNKNOWN_STATUS

logger = logging.getLogger(__name__)


class ProgressLookup:
    """Reads fact status from the user's PROGRESS#<trackId> item."""

    def __init__(self, store: ConditionalStore):
        self.store = store

    async def get_fact_statuses(self, user_id: str, track_id: str, fact_ids: List[str]) -> Dict[str, str]:
        """
        Returns status per fact id. Facts missing from progress, or any
        lookup failure, map to "unknown".
        """
        if not fact_ids:
            return {}

        statuses = {fact_id: UNKNOWN_STATUS for fact_id in fact_ids}
        try:
            progress = await self.store.get_item(progress_key(user_id, track_id))
        except Exception as e:
            logger.error(f"Error getting fact statuses for user {user_id}, track {track_id}: {str(e)}")
            return statuses

        if not progress:
            return statuses

        facts = progress.get('facts') or {}
        for fact_id in fact_ids:
            statuses[fact_id] = (facts.get(fact_id) or {}).get('status') or UNKNOWN_STATUS
        return statuses
