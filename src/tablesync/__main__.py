"""
Main entrypoint: starts the APScheduler sync loop, or the API.

Usage:
    python -m tablesync setup         # one-time credentials setup
    python -m tablesync               # starts the scheduler
    python -m tablesync api           # starts the control/status API on :8000
    uvicorn tablesync.api.main:create_app --factory --host 0.0.0.0 --port 8000
"""
import asyncio
import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


def _run_setup() -> None:
    from tablesync.scripts.setup import run_setup
    run_setup()


def _run_api() -> None:
    import uvicorn

    uvicorn.run("tablesync.api.main:create_app", factory=True, host="0.0.0.0", port=8000)


async def _run_scheduler() -> None:
    from sqlmodel import Session

    from tablesync.config import get_settings
    from tablesync.db.engine import get_engine
    from tablesync.errors import CredentialsNotFoundError
    from tablesync.remote.auth import get_token_cache
    from tablesync.scheduler.jobs import build_scheduler
    from tablesync.sync.configs import init_default_configs

    settings = get_settings()
    engine = get_engine()

    # Check credentials before starting; the token cache is shared by every run
    try:
        get_token_cache(settings)
    except CredentialsNotFoundError as exc:
        logger.error("%s", exc)
        sys.exit(1)

    with Session(engine) as s:
        init_default_configs(s)

    scheduler = build_scheduler(engine)
    scheduler.start()
    logger.info(
        "Scheduler started (table sync every %d minutes)",
        settings.scheduler_interval_minutes,
    )

    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutting down...")
    finally:
        scheduler.shutdown()
        logger.info("Goodbye.")


if __name__ == "__main__":
    # Dispatch on first argument: `python -m tablesync setup|api` or just `python -m tablesync`
    command = sys.argv[1] if len(sys.argv) > 1 else None
    if command == "setup":
        _run_setup()
    elif command == "api":
        _run_api()
    else:
        asyncio.run(_run_scheduler())
