from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.models.payouts import TutorWithdrawal
from app.models.people import Tutor
from app.services.payments import (
    create_stripe_account_link,
    create_stripe_connect_account,
    create_stripe_login_link,
    retrieve_stripe_account,
)
from app.services.withdrawals import OPEN_STATUSES

logger = logging.getLogger(__name__)


async def get_tutor_by_user_id(db: AsyncSession, user_id: str) -> Tutor:
    tutor = (
        await db.execute(
            select(Tutor).where(Tutor.user_id == str(user_id)).execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if tutor is None:
        raise NotFoundError("Tutor not found")
    return tutor


async def connect_stripe_account(db: AsyncSession, tutor: Tutor) -> dict[str, Any]:
    """Create the tutor's Express account if needed and return an onboarding link."""
    account_id = tutor.stripe_account_id
    if not account_id:
        created = await create_stripe_connect_account(
            secret_key=settings.stripe_secret_key,
            email=tutor.email,
            country=settings.stripe_connect_country,
            metadata={"tutor_id": str(tutor.id), "user_id": tutor.user_id},
        )
        account_id = created["account_id"]
        await db.execute(
            update(Tutor)
            .where(Tutor.id == tutor.id)
            .values(stripe_account_id=account_id, stripe_onboarding_complete=False, payment_method="stripe")
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        logger.info("Created Stripe account %s for tutor_id=%s", account_id, tutor.id)

    link = await create_stripe_account_link(
        secret_key=settings.stripe_secret_key,
        account_id=account_id,
        refresh_url=settings.stripe_refresh_url,
        return_url=settings.stripe_return_url,
    )
    return {"account_id": account_id, "url": link["url"]}


async def refresh_stripe_status(db: AsyncSession, tutor: Tutor) -> dict[str, Any]:
    if not tutor.stripe_account_id:
        return {"connected": False, "is_onboarded": False, "account_id": None}

    account = await retrieve_stripe_account(secret_key=settings.stripe_secret_key, account_id=tutor.stripe_account_id)
    if bool(tutor.stripe_onboarding_complete) != account["is_onboarded"]:
        await db.execute(
            update(Tutor)
            .where(Tutor.id == tutor.id)
            .values(stripe_onboarding_complete=account["is_onboarded"])
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    return {"connected": True, **account}


async def stripe_login_link(db: AsyncSession, tutor: Tutor) -> dict[str, Any]:
    if not tutor.stripe_account_id:
        raise ValidationError("No Stripe account connected")
    status = await refresh_stripe_status(db, tutor)
    if not status["is_onboarded"]:
        raise ValidationError("Complete Stripe onboarding first")
    return await create_stripe_login_link(secret_key=settings.stripe_secret_key, account_id=tutor.stripe_account_id)


async def disconnect_stripe_account(db: AsyncSession, tutor: Tutor) -> None:
    """Forget the tutor's Stripe account. Refused while a Stripe withdrawal is still open."""
    open_payouts = (
        await db.execute(
            select(func.count(TutorWithdrawal.id)).where(
                TutorWithdrawal.tutor_id == tutor.id,
                TutorWithdrawal.payment_method == "stripe",
                TutorWithdrawal.status.in_(OPEN_STATUSES),
            )
        )
    ).scalar_one()
    if open_payouts:
        raise ConflictError("Settle open Stripe withdrawals before disconnecting")

    await db.execute(
        update(Tutor)
        .where(Tutor.id == tutor.id)
        .values(stripe_account_id=None, stripe_onboarding_complete=False)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    logger.info("Disconnected Stripe account %s from tutor_id=%s", tutor.stripe_account_id, tutor.id)
