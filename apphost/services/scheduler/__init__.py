"""Periodic task scheduling"""
from apphost.services.scheduler.scheduler_service import (
    SchedulerService,
    scheduler_service,
    setup_scheduled_tasks,
    shutdown_scheduled_tasks,
)

__all__ = [
    "SchedulerService",
    "scheduler_service",
    "setup_scheduled_tasks",
    "shutdown_scheduled_tasks",
]
