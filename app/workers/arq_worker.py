from __future__ import annotations

import logging
from datetime import date

from arq.connections import RedisSettings
from arq.cron import cron

from app.core.config import settings
from app.core.logging import configure_logging
from app.db.session import SessionLocal
from app.services.payout_reports import generate_payout_report
from app.services.withdrawals import run_scheduled_payouts

logger = logging.getLogger(__name__)


async def startup(ctx) -> None:
    configure_logging()


async def run_scheduled_payouts_job(ctx, force: bool = False, dry_run: bool = False) -> dict:
    # Fires daily; run_scheduled_payouts itself skips days other than the 15th and month end.
    async with SessionLocal() as db:
        summary = await run_scheduled_payouts(db, force=force, dry_run=dry_run)
    return summary.as_dict()


async def generate_payout_report_job(
    ctx,
    start_date: str,
    end_date: str,
    generated_by: str | None = None,
    notes: str | None = None,
) -> dict:
    async with SessionLocal() as db:
        report = await generate_payout_report(
            db,
            date.fromisoformat(start_date),
            date.fromisoformat(end_date),
            generated_by=generated_by or "worker",
            notes=notes,
        )
    return {"report_id": report.id, "total_payouts": report.total_payouts}


class WorkerSettings:
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    on_startup = startup
    functions = [run_scheduled_payouts_job, generate_payout_report_job]
    cron_jobs = [cron(run_scheduled_payouts_job, hour=0, minute=5)]
