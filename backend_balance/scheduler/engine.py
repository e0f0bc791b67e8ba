"""
Periodic task scheduler for the balance engine, on APScheduler's BackgroundScheduler.

- interval tasks: fixed rate, first run at start()
- daily tasks: cron trigger at daily_at_hour:00 (SCHEDULER_TIMEZONE, else local time)
Each job runs with max_instances=1 and coalesced misfires, so a tick never overlaps
itself and an overrunning tick delays only its own next run. Tick exceptions are
logged and suppressed inside run_once; the job stays scheduled.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from backend_balance.balance_logging import get_logger
from backend_balance.config.settings import Settings

if TYPE_CHECKING:
    from backend_balance.service import BalanceService

logger = get_logger(__name__)

MIN_INTERVAL_SEC = 0.01


@dataclass
class PeriodicTask:
    """One scheduled job: exactly one of interval_sec or daily_at_hour is set."""

    name: str
    func: Callable[[], Any]
    interval_sec: float | None = None
    daily_at_hour: int | None = None
    timezone: str | None = None

    def __post_init__(self) -> None:
        if (self.interval_sec is None) == (self.daily_at_hour is None):
            raise ValueError(f"Task {self.name!r} needs exactly one of interval_sec or daily_at_hour")
        if self.interval_sec is not None:
            self.interval_sec = max(MIN_INTERVAL_SEC, float(self.interval_sec))
        if self.daily_at_hour is not None and not 0 <= self.daily_at_hour <= 23:
            raise ValueError(f"daily_at_hour must be in 0..23, got {self.daily_at_hour}")

    @property
    def is_daily(self) -> bool:
        return self.daily_at_hour is not None

    def build_trigger(self) -> BaseTrigger:
        if self.daily_at_hour is not None:
            return CronTrigger(hour=self.daily_at_hour, minute=0, timezone=self.timezone)
        return IntervalTrigger(seconds=self.interval_sec, timezone=self.timezone)

    def run_once(self) -> bool:
        """Run one tick. Returns False when the tick raised (already logged)."""
        start = time.monotonic()
        logger.info("scheduled_task_started", task=self.name)
        try:
            self.func()
        except Exception as e:
            logger.exception("scheduled_task_failed", task=self.name, error=str(e))
            return False
        logger.info(
            "scheduled_task_done",
            task=self.name,
            duration_sec=round(time.monotonic() - start, 3),
        )
        return True


class BalanceScheduler:
    """Registers every task as an APScheduler job; start() / stop() own the background scheduler."""

    def __init__(self, tasks: list[PeriodicTask], *, timezone: str | None = None) -> None:
        self.tasks = list(tasks)
        self._timezone = timezone
        self._scheduler: BackgroundScheduler | None = None

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        if self.is_running:
            return
        scheduler = BackgroundScheduler(timezone=self._timezone)
        for task in self.tasks:
            options: dict[str, Any] = {}
            if not task.is_daily:
                options["next_run_time"] = datetime.now().astimezone()
            scheduler.add_job(
                task.run_once,
                trigger=task.build_trigger(),
                id=task.name,
                name=task.name,
                max_instances=1,
                coalesce=True,
                misfire_grace_time=None,
                **options,
            )
        scheduler.start()
        self._scheduler = scheduler
        logger.info(
            "scheduler_started",
            tasks=[t.name for t in self.tasks],
            next_runs={name: str(at) for name, at in self.next_run_times().items()},
        )

    def next_run_times(self) -> dict[str, datetime | None]:
        if self._scheduler is None:
            return {}
        return {job.id: job.next_run_time for job in self._scheduler.get_jobs()}

    def stop(self, wait: bool = True) -> None:
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
        self._scheduler = None
        logger.info("scheduler_stopped")


def system_health_check(service: "BalanceService") -> None:
    balance = service.calculate_system_balance()
    logger.debug(
        "system_health_check",
        freedom_level=balance.freedom_level,
        security_level=balance.security_level,
        balance_score=round(balance.balance_score, 4),
        trend=balance.trend.value,
    )


def build_balance_tasks(service: "BalanceService", settings: Settings) -> list[PeriodicTask]:
    """Hourly rebalancing, 30-minute community metrics, daily rule sweep, 15-minute health check."""
    tz = settings.scheduler_timezone
    return [
        PeriodicTask(
            name="automatic_rebalancing",
            func=service.perform_automatic_rebalancing,
            interval_sec=settings.rebalance_interval_sec,
            timezone=tz,
        ),
        PeriodicTask(
            name="community_metrics",
            func=service.analyze_community_metrics,
            interval_sec=settings.metrics_interval_sec,
            timezone=tz,
        ),
        PeriodicTask(
            name="rule_effectiveness",
            func=service.evaluate_rule_effectiveness,
            daily_at_hour=settings.rule_sweep_hour,
            timezone=tz,
        ),
        PeriodicTask(
            name="system_health_check",
            func=lambda: system_health_check(service),
            interval_sec=settings.health_check_interval_sec,
            timezone=tz,
        ),
    ]


def create_scheduler(service: "BalanceService", settings: Settings) -> BalanceScheduler:
    return BalanceScheduler(build_balance_tasks(service, settings), timezone=settings.scheduler_timezone)
