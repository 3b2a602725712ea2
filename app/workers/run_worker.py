"""Worker entry point.

``python -m app.workers.run_worker`` starts the arq worker with the payout cron.
``--run-payouts`` and ``--report START END`` run a single job inline and exit,
which is how operators trigger a payout run by hand outside the schedule.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging

from arq.worker import run_worker

from app.core.logging import configure_logging
from app.workers.arq_worker import (
    WorkerSettings,
    generate_payout_report_job,
    run_scheduled_payouts_job,
)

logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="tutor-credits-worker")
    parser.add_argument("--run-payouts", action="store_true", help="run one payout pass and exit")
    parser.add_argument("--force", action="store_true", help="ignore the payout-day check")
    parser.add_argument("--dry-run", action="store_true", help="report what would be created without writing")
    parser.add_argument("--report", nargs=2, metavar=("START", "END"), help="generate a payout report and exit")
    return parser.parse_args(argv)


async def _run_once(args: argparse.Namespace) -> dict:
    if args.report:
        start, end = args.report
        return await generate_payout_report_job({}, start, end, generated_by="cli")
    return await run_scheduled_payouts_job({}, force=args.force, dry_run=args.dry_run)


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    configure_logging()

    if args.run_payouts or args.report:
        result = asyncio.run(_run_once(args))
        logger.info("one-off job finished: %s", json.dumps(result, default=str))
        return

    # arq looks the loop up with asyncio.get_event_loop(), which no longer creates one on 3.14.
    asyncio.set_event_loop(asyncio.new_event_loop())
    run_worker(WorkerSettings)


if __name__ == "__main__":
    main()
