"""
Customer Segment Refresh Task
Re-evaluates customer segments so time-based segments (at risk, inactive) stay current
"""
import logging

from storeadmin.db import get_session
from storeadmin.services import customers as customers_service

logger = logging.getLogger(__name__)


async def refresh_customer_segments():
    """
    Recalculate every customer's segment
    Runs daily at 3:00 UTC
    """
    logger.info("👥 Refreshing customer segments...")
    async for session in get_session():
        try:
            changed = await customers_service.refresh_segments(session)
            logger.info(f"📊 Segment refresh complete. Changed: {changed}")
        except Exception as e:
            logger.error(f"Error refreshing customer segments: {e}")
            await session.rollback()
