"""
Scheduled Content Task
Publishes blog posts whose publish date has passed and sends due email campaigns
"""
import logging

from storeadmin.config import get_settings
from storeadmin.db import get_session
from storeadmin.services import email_campaigns as campaigns_service
from storeadmin.services import workflow as workflow_service
from storeadmin.services.email_providers import build_provider

logger = logging.getLogger(__name__)


async def publish_due_content():
    """
    Publish scheduled content and send scheduled campaigns that are due
    Runs every scheduled_content_interval_seconds
    """
    settings = get_settings()
    async for session in get_session():
        try:
            published = await workflow_service.process_scheduled_content(session)
            if published:
                logger.info(f"📰 Published {published} scheduled content item(s)")
        except Exception as e:
            logger.error(f"Error publishing scheduled content: {e}")
            await session.rollback()

        try:
            provider = build_provider(settings.email_provider, settings.email_sender)
            sent = await campaigns_service.send_due_campaigns(session, provider)
            if sent:
                logger.info(f"📧 Sent {sent} scheduled campaign(s)")
        except Exception as e:
            logger.error(f"Error sending scheduled campaigns: {e}")
            await session.rollback()
