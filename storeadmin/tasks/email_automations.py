"""
Email Automation Task
Starts scheduled automation workflows and sends automation steps that are due
"""
import logging

from storeadmin.config import get_settings
from storeadmin.db import get_session
from storeadmin.services import email_automation as automation_service
from storeadmin.services.email_providers import build_provider

logger = logging.getLogger(__name__)


async def process_email_automations():
    """
    Advance every automation run with a due step
    Runs every minute
    """
    settings = get_settings()
    async for session in get_session():
        try:
            provider = build_provider(settings.email_provider, settings.email_sender)
            result = await automation_service.process_automations(session, provider)
            if result["started"] or result["steps"]:
                logger.info(
                    f"✉️ Automations: started {result['started']} run(s), handled {result['steps']} step(s)"
                )
        except Exception as e:
            logger.error(f"Error processing email automations: {e}")
            await session.rollback()
