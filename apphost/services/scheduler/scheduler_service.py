"""Periodic task scheduling"""
import os
from datetime import datetime, timezone

import psutil
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from apphost.core.config import settings as default_settings
from apphost.services.files import UploadCleanupService
from apphost.services.websockets import websocket_service

STATUS_CHANNEL = "system"


class SchedulerService:
    """Runs the housekeeping jobs on an APScheduler `AsyncIOScheduler`.

    A fresh scheduler is built on every `start()` so the service can be
    started again after `shutdown()`, possibly on a different event loop.
    """

    def __init__(self, settings=None, websocket=None):
        self.scheduler = None
        self.started_at = None
        self.configure(settings, websocket)

    def configure(self, settings=None, websocket=None):
        """Swap in new settings or a new WebSocket service. Only while stopped."""
        if self.running:
            raise RuntimeError("Cannot reconfigure a running scheduler")
        self.settings = settings or getattr(self, "settings", None) or default_settings
        self.websocket = websocket or getattr(self, "websocket", None) or websocket_service
        self.upload_cleanup = UploadCleanupService(
            self.settings.UPLOAD_TMP_DIR,
            max_age_hours=self.settings.UPLOAD_TMP_MAX_AGE_HOURS,
        )

    def _create_scheduler(self):
        return AsyncIOScheduler(
            timezone=self.settings.SCHEDULER_TIMEZONE,
            job_defaults={
                'coalesce': True,  # collapse missed runs into one
                'max_instances': 1,
                'misfire_grace_time': 30
            }
        )

    @property
    def running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    async def start(self):
        if self.running:
            logger.warning("Scheduler already running, ignoring start request")
            return

        try:
            self.scheduler = self._create_scheduler()
            self._register_jobs()
            self.scheduler.start()
            self.started_at = datetime.now(timezone.utc)
            logger.info(f"Scheduler started with {len(self.scheduler.get_jobs())} jobs")
        except Exception as e:
            logger.error(f"Failed to start scheduler: {e}")
            self.scheduler = None
            raise

    async def shutdown(self):
        if not self.running:
            return
        try:
            self.scheduler.shutdown(wait=True)
            logger.info("Scheduler stopped")
        except Exception as e:
            logger.error(f"Failed to stop scheduler: {e}")
        finally:
            self.scheduler = None
            self.started_at = None

    def _register_jobs(self):
        self.scheduler.add_job(
            func=self._cleanup_upload_tmp,
            trigger=CronTrigger(minute=0),
            id="upload_tmp_cleanup",
            name="Remove stale upload temp files",
            replace_existing=True
        )
        self.scheduler.add_job(
            func=self._cleanup_inactive_websockets,
            trigger=IntervalTrigger(minutes=5),
            id="websocket_inactive_cleanup",
            name="Close inactive WebSocket clients",
            replace_existing=True
        )
        self.scheduler.add_job(
            func=self._broadcast_status,
            trigger=IntervalTrigger(seconds=self.settings.STATUS_BROADCAST_INTERVAL),
            id="status_broadcast",
            name="Publish server status",
            replace_existing=True,
            misfire_grace_time=self.settings.STATUS_BROADCAST_INTERVAL
        )

    def get_jobs(self) -> list[dict]:
        if not self.running:
            return []
        return [
            {
                "id": job.id,
                "name": job.name,
                "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
            }
            for job in self.scheduler.get_jobs()
        ]

    async def _cleanup_upload_tmp(self):
        try:
            await self.upload_cleanup.cleanup_temp_files()
        except Exception as e:
            logger.error(f"Upload temp cleanup failed: {e}")

    async def _cleanup_inactive_websockets(self):
        try:
            await self.websocket.cleanup_inactive_connections()
        except Exception as e:
            logger.error(f"WebSocket cleanup failed: {e}")

    def build_status(self) -> dict:
        now = datetime.now(timezone.utc)
        uptime = (now - self.started_at).total_seconds() if self.started_at else 0.0
        return {
            "timestamp": now.isoformat(),
            "uptime_seconds": round(uptime, 2),
            "connections": self.websocket.connection_count(),
            "memory_rss_bytes": psutil.Process(os.getpid()).memory_info().rss,
        }

    async def _broadcast_status(self):
        try:
            delivered = await self.websocket.publish(STATUS_CHANNEL, self.build_status())
            if delivered:
                logger.debug("Status pushed to {} subscribers", delivered)
        except Exception as e:
            logger.error(f"Status broadcast failed: {e}")


scheduler_service = SchedulerService()


async def setup_scheduled_tasks(settings=None, websocket=None) -> SchedulerService:
    """Start the periodic jobs. Call once the listener is accepting connections."""
    if not scheduler_service.running:
        scheduler_service.configure(settings, websocket)
    if not scheduler_service.settings.SCHEDULER_ENABLED:
        logger.info("Scheduler disabled, no periodic jobs registered")
        return scheduler_service

    await scheduler_service.start()
    return scheduler_service


async def shutdown_scheduled_tasks() -> None:
    await scheduler_service.shutdown()
