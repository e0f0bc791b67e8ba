# Periodic balance tasks: rebalancing, community metrics, rule sweep, health check.
# APScheduler jobs; failures are logged and the next tick still runs.

from backend_balance.scheduler.engine import (
    BalanceScheduler,
    PeriodicTask,
    build_balance_tasks,
    create_scheduler,
)

__all__ = [
    "BalanceScheduler",
    "PeriodicTask",
    "build_balance_tasks",
    "create_scheduler",
]
