"""
Analytics Cleanup Task
Deletes tracked analytics events older than the retention window
"""
import logging

from storeadmin.config import get_settings
from storeadmin.db import get_session
from storeadmin.services import analytics as analytics_service

logger = logging.getLogger(__name__)


async def cleanup_analytics():
    """
    Remove analytics events past analytics_retention_days
    Runs daily at 4:00 UTC
    """
    retention_days = get_settings().analytics_retention_days
    async for session in get_session():
        try:
            await analytics_service.cleanup(session, retention_days)
        except Exception as e:
            logger.error(f"Error cleaning up analytics events: {e}")
            await session.rollback()
