"""
Client for the Caliper analytics collector

Posts metric records (Caliper envelopes) with a bearer token. The record is
opaque here: building it is the emitter's job.
"""
import httpx
import logging
from typing import Optional, Dict, Any

from session_service.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


class CaliperCollector:
    """HTTP sink for metric records"""

    def __init__(self, endpoint: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.endpoint = endpoint or settings.CALIPER_ENDPOINT
        self.transport = transport

    async def post_metric_record(self, record: Dict[str, Any], access_token: str) -> bool:
        """
        Send one record to the collector.

        Returns:
            True on a 2xx response, False on any HTTP or transport error
        """
        try:
            async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS, transport=self.transport) as client:
                response = await client.post(
                    self.endpoint,
                    json=record,
                    headers={
                        'Content-Type': 'application/json',
                        'Authorization': f'Bearer {access_token}'
                    }
                )
                response.raise_for_status()
                return True

        except httpx.HTTPStatusError as e:
            logger.error(f"Caliper collector rejected record: {e.response.status_code} {e.response.text[:200]}")
            return False
        except httpx.HTTPError as e:
            logger.error(f"Error posting record to Caliper collector: {str(e)}")
            return False
