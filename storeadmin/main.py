from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request

from storeadmin.config import Settings, get_settings
from storeadmin.db import init_db
from storeadmin.routes import ab_tests as ab_tests_routes
from storeadmin.routes import affiliates as affiliates_routes
from storeadmin.routes import analytics as analytics_routes
from storeadmin.routes import catalog as catalog_routes
from storeadmin.routes import content as content_routes
from storeadmin.routes import customers as customers_routes
from storeadmin.routes import email as email_routes
from storeadmin.routes import orders as orders_routes
from storeadmin.routes import seo as seo_routes
from storeadmin.tasks.scheduler import create_scheduler, describe_jobs, setup_jobs
from storeadmin.utils.logger import setup_logger


def create_app(*, override_settings: Optional[Settings] = None, skip_db_init: bool = False) -> FastAPI:
    settings = override_settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.scheduler = None
        if not skip_db_init:
            await init_db()
            logger.info("✅ Database initialized")

            if settings.scheduler_enabled:
                scheduler = create_scheduler()
                setup_jobs(scheduler, settings)
                scheduler.start()
                app.state.scheduler = scheduler
                logger.info(f"📋 Active jobs: {[job.id for job in scheduler.get_jobs()]}")

        yield

        if app.state.scheduler is not None:
            app.state.scheduler.shutdown(wait=True)
            logger.info("✅ Scheduler stopped")

    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
    logger = setup_logger("storeadmin", level=settings.log_level)

    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
    app.state.scheduler = None

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        duration = (time.perf_counter() - start) * 1000
        logger.info(
            "%s %s -> %s (%.2f ms)",
            request.method,
            request.url.path,
            response.status_code,
            duration,
        )
        return response

    app.include_router(catalog_routes.router)
    app.include_router(catalog_routes.taxonomy_router)
    app.include_router(orders_routes.router)
    app.include_router(customers_routes.router)
    app.include_router(affiliates_routes.router)
    app.include_router(content_routes.router)
    app.include_router(content_routes.workflow_router)
    app.include_router(seo_routes.router)
    app.include_router(email_routes.router)
    app.include_router(ab_tests_routes.router)
    app.include_router(analytics_routes.router)

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/jobs", tags=["health"])
    async def list_jobs(request: Request) -> dict[str, Any]:
        """List all scheduled jobs"""
        scheduler = request.app.state.scheduler
        return {"jobs": describe_jobs(scheduler) if scheduler is not None else []}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "storeadmin.main:app",
        host=settings.app_host,
        port=settings.app_port,
        log_level=settings.log_level.lower(),
        reload=False,
    )
