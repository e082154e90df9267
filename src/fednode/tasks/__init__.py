"""Task registration and singleton accessors."""

from __future__ import annotations

from fednode.config import get_settings
from fednode.tasks.periodic import PeriodicScheduler
from fednode.tasks.runner import TaskRunner

PUBLISH_RECEIVED_EVENTS = "fednode.tasks.publication.publish_received_events"
PURGE_EXPIRED_EVENTS = "fednode.tasks.retention.purge_expired_events"

_task_runner: TaskRunner | None = None
_periodic_scheduler: PeriodicScheduler | None = None


def _register_tasks(runner: TaskRunner) -> None:
    from fednode.tasks import publication, retention

    runner.register(PUBLISH_RECEIVED_EVENTS, publication.publish_received_events)
    runner.register(PURGE_EXPIRED_EVENTS, retention.purge_expired_events)


def get_task_runner() -> TaskRunner:
    global _periodic_scheduler, _task_runner
    if _task_runner is None or _task_runner.is_shutting_down:
        settings = get_settings()
        _task_runner = TaskRunner(max_concurrent=int(settings.task_runner_max_concurrent))
        _register_tasks(_task_runner)
        _periodic_scheduler = None
    return _task_runner


def get_periodic_scheduler() -> PeriodicScheduler:
    global _periodic_scheduler
    if _periodic_scheduler is None:
        settings = get_settings()
        scheduler = PeriodicScheduler(get_task_runner())
        scheduler.add(
            PUBLISH_RECEIVED_EVENTS,
            float(settings.publication_interval_seconds),
            initial_delay_seconds=float(settings.publication_initial_delay_seconds),
        )
        if settings.retention_interval_seconds > 0:
            scheduler.add(
                PURGE_EXPIRED_EVENTS,
                float(settings.retention_interval_seconds),
                initial_delay_seconds=float(settings.retention_initial_delay_seconds),
            )
        _periodic_scheduler = scheduler
    return _periodic_scheduler


def reset_tasks() -> None:
    global _periodic_scheduler, _task_runner
    _task_runner = None
    _periodic_scheduler = None
