#!/usr/bin/env python3
"""
Run the SLA deadline scheduler as a foreground process.

Loads the active workflow configuration, connects to the database and
sweeps for lapsed step deadlines every ``sweep_interval_seconds`` until
SIGINT or SIGTERM.

Usage:
    python3 scripts/run_deadline_scheduler.py
    python3 scripts/run_deadline_scheduler.py --create-tables --seed-templates
    python3 scripts/run_deadline_scheduler.py --database-url postgresql://... --interval 30
    python3 scripts/run_deadline_scheduler.py --once   # single sweep, then exit
"""

import argparse
import signal
import sys
from pathlib import Path

# ---------------------------------------------------------------------------
# Project root on sys.path
# ---------------------------------------------------------------------------
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the SLA deadline scheduler.")
    parser.add_argument(
        "--config-dir",
        type=Path,
        default=None,
        help="Directory holding configuration sets (default: workflow_config/sets)",
    )
    parser.add_argument(
        "--config-set",
        default="default",
        help="Configuration set name (default: %(default)s)",
    )
    parser.add_argument("--database-url", default=None, help="Override the database URL")
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Override the sweep interval in seconds",
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create workflow tables before starting",
    )
    parser.add_argument(
        "--seed-templates",
        action="store_true",
        help="Install configured templates that are not in the store yet",
    )
    parser.add_argument("--once", action="store_true", help="Run a single sweep and exit")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = _parse_args(argv)

    from workflow_batch.services.scheduler import DeadlineScheduler
    from workflow_config import get_active_config
    from workflow_config.bootstrap import install_templates
    from workflow_kernel.db.engine import (
        create_tables,
        get_session_factory,
        init_engine_from_url,
        session_scope,
    )
    from workflow_kernel.domain.clock import SystemClock
    from workflow_kernel.exceptions import ConfigurationError
    from workflow_kernel.logging_config import configure_logging, get_logger
    from workflow_kernel.services.progression_service import RequestProgressionService

    try:
        config = get_active_config(args.config_set, config_dir=args.config_dir)
    except ConfigurationError as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 2

    configure_logging(level=config.logging.level)
    logger = get_logger("scripts.deadline_scheduler")

    engine_settings = config.engine
    interval = args.interval or engine_settings.sweep_interval_seconds
    database_url = args.database_url or config.database.url

    init_engine_from_url(
        database_url,
        echo=config.database.echo,
        pool_size=config.database.pool_size,
        max_overflow=config.database.max_overflow,
    )
    if args.create_tables:
        create_tables()

    clock = SystemClock()
    if args.seed_templates:
        with session_scope() as session:
            install_templates(session, config.templates, clock=clock)

    def service_factory(session):
        return RequestProgressionService(
            session,
            clock=clock,
            admin_roles=engine_settings.admin_roles,
            override_roles=engine_settings.override_roles,
        )

    scheduler = DeadlineScheduler(
        session_factory=get_session_factory(),
        service_factory=service_factory,
        clock=clock,
        interval_seconds=interval,
        max_workers=engine_settings.max_workers,
        record_budget_seconds=engine_settings.record_budget_seconds,
        batch_limit=engine_settings.sweep_batch_limit,
    )

    if args.once:
        result = scheduler.tick()
        return 0 if result.failed == 0 and result.timed_out == 0 else 1

    def _shutdown(signum, frame):
        logger.info("shutdown_requested", extra={"signal": signum})
        scheduler.stop(timeout=0)

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    scheduler.run_forever()
    return 0


if __name__ == "__main__":
    sys.exit(main())
