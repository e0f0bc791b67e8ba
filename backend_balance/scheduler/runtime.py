"""
Standalone scheduler process: runs the balance engine's periodic tasks without the API.

Blocks until SIGINT/SIGTERM, then shuts the background scheduler down.

Usage: python -m backend_balance.scheduler.runtime
"""

from __future__ import annotations

import signal
import sys
import threading
from typing import Any

from backend_balance.balance_logging import get_logger
from backend_balance.config.env import mask_database_url
from backend_balance.config.settings import get_settings
from backend_balance.scheduler.engine import create_scheduler

logger = get_logger(__name__)


def run_scheduler(shutdown: threading.Event) -> None:
    """Start every periodic task and block until shutdown is set."""
    from backend_balance.service import BalanceService

    settings = get_settings()
    service = BalanceService.from_settings(settings)
    scheduler = create_scheduler(service, settings)
    logger.info("scheduler_runtime_started", database_url=mask_database_url(settings.database_url))
    scheduler.start()
    try:
        while not shutdown.wait(timeout=1.0):
            pass
    finally:
        scheduler.stop()
        service.close()
    logger.info("scheduler_runtime_stopped")


def main() -> int:
    """CLI entrypoint."""
    shutdown = threading.Event()

    def request_shutdown(*args: Any) -> None:
        shutdown.set()

    try:
        signal.signal(signal.SIGTERM, request_shutdown)
    except (AttributeError, ValueError):
        # Not on the main thread, or unsupported platform.
        pass

    try:
        run_scheduler(shutdown)
        return 0
    except KeyboardInterrupt:
        logger.info("scheduler_runtime_shutdown_signal")
        return 0
    except Exception as e:
        logger.exception("scheduler_runtime_fatal", error=str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
