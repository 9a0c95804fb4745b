"""Background tasks for OmniSync."""

from app.tasks.sync_scheduler import scheduler, start_scheduler, stop_scheduler

__all__ = ["scheduler", "start_scheduler", "stop_scheduler"]
