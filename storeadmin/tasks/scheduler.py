"""
Job scheduler configuration
Defines all scheduled tasks and their triggers
"""
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from storeadmin.config import Settings
from storeadmin.tasks import analytics_cleanup
from storeadmin.tasks import customer_segments
from storeadmin.tasks import email_automations
from storeadmin.tasks import scheduled_content

logger = logging.getLogger(__name__)

job_defaults = {
    'coalesce': True,  # Combine multiple pending executions into one
    'max_instances': 1,  # Only one instance of each job at a time
    'misfire_grace_time': 60  # Job can run up to 60s late
}


def create_scheduler() -> AsyncIOScheduler:
    return AsyncIOScheduler(job_defaults=job_defaults, timezone='UTC')


def setup_jobs(scheduler: AsyncIOScheduler, settings: Settings):
    """
    Register all scheduled jobs with the scheduler
    """
    interval = settings.scheduled_content_interval_seconds

    # Job 1: Scheduled content and campaigns
    scheduler.add_job(
        func=scheduled_content.publish_due_content,
        trigger='interval',
        seconds=interval,
        id='publish_scheduled_content',
        name='Publish Scheduled Content',
        replace_existing=True
    )
    logger.info(f"✅ Registered job: Publish Scheduled Content (every {interval} seconds)")

    # Job 2: Customer segments - Daily at 3:00
    scheduler.add_job(
        func=customer_segments.refresh_customer_segments,
        trigger='cron',
        hour=3,
        minute=0,
        id='refresh_customer_segments',
        name='Refresh Customer Segments',
        replace_existing=True
    )
    logger.info("✅ Registered job: Refresh Customer Segments (daily at 3:00)")

    # Job 3: Analytics retention - Daily at 4:00
    scheduler.add_job(
        func=analytics_cleanup.cleanup_analytics,
        trigger='cron',
        hour=4,
        minute=0,
        id='cleanup_analytics',
        name='Clean Up Analytics Events',
        replace_existing=True
    )
    logger.info("✅ Registered job: Clean Up Analytics Events (daily at 4:00)")

    # Job 4: Email automation steps - Every minute
    scheduler.add_job(
        func=email_automations.process_email_automations,
        trigger='interval',
        minutes=1,
        id='process_email_automations',
        name='Process Email Automations',
        replace_existing=True
    )
    logger.info("✅ Registered job: Process Email Automations (every minute)")


def describe_jobs(scheduler: AsyncIOScheduler) -> list[dict]:
    jobs = []
    for job in scheduler.get_jobs():
        # Pending jobs (scheduler not started) have no next_run_time yet
        next_run_time = getattr(job, "next_run_time", None)
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run_time": next_run_time.isoformat() if next_run_time else None,
            "trigger": str(job.trigger)
        })
    return jobs
