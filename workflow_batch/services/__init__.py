"""workflow_batch.services -- Scheduler services."""

from workflow_batch.services.scheduler import DeadlineScheduler

__all__ = ["DeadlineScheduler"]
