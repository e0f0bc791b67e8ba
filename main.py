"""
Main entrypoint: FastAPI server in the main thread, periodic balance tasks in background threads.

The scheduler is started by the API lifespan when SCHEDULER_ENABLED is true (default),
so the process runs hourly rebalancing, community metrics, the daily rule sweep and
the health check alongside the API. On SIGINT/SIGTERM the server shuts down and the
lifespan stops the task threads.

Env: BALANCE_DB_URL / DATABASE_URL, API_HOST, API_PORT, SCHEDULER_ENABLED, LOG_LEVEL, etc.

Scheduler only (no API): python -m backend_balance.scheduler.runtime
API only: SCHEDULER_ENABLED=false uvicorn backend_balance.api_server.app:app --host 0.0.0.0 --port 8000
"""

import os

# Configure structured JSON logging before other imports that may log
from backend_balance.balance_logging import get_logger

logger = get_logger("main")


def main() -> None:
    """Run the FastAPI server (and, through its lifespan, the scheduler) in the main thread."""
    from backend_balance.config.env import mask_database_url
    from backend_balance.config.settings import get_settings

    settings = get_settings()

    from backend_balance.api_server.app import app
    import uvicorn

    logger.info(
        "main_server_starting",
        host=settings.api_host,
        port=settings.api_port,
        scheduler_enabled=settings.scheduler_enabled,
        database_url=mask_database_url(settings.database_url),
    )
    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )


if __name__ == "__main__":
    main()
