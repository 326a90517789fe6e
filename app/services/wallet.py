from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.db import insert_ignore
from app.core.errors import BusinessRuleError, NotFoundError, ValidationError
from app.core.time_utils import utcnow
from app.models.user import User
from app.models.wallet import TX_TYPES, Wallet, WalletTransaction

logger = logging.getLogger(__name__)


class InvalidAmount(ValidationError):
    reason = "InvalidAmount"


class InsufficientFunds(BusinessRuleError):
    reason = "InsufficientFunds"


class WalletUserNotFound(NotFoundError):
    pass


class CurrencyMismatch(BusinessRuleError):
    reason = "CurrencyMismatch"


async def _ensure_wallet(db: AsyncSession, user_id: int) -> None:
    # make sure user exists first (prevents FK crash)
    res = await db.execute(select(User.id).where(User.id == user_id))
    if res.scalar_one_or_none() is None:
        raise WalletUserNotFound(f"User {user_id} not found.")

    # Concurrent first-use of the same wallet must not fail on the unique user_id
    stmt = (
        insert_ignore(db, Wallet)
        .values(user_id=user_id, balance_cents=0, currency=settings.DEFAULT_CURRENCY)
        .on_conflict_do_nothing(index_elements=["user_id"])
    )
    await db.execute(stmt)


async def _post(
    db: AsyncSession,
    *,
    user_id: int,
    delta_cents: int,
    tx_type: str,
    reference_id: Optional[str],
    description: str,
    currency: Optional[str] = None,
) -> WalletTransaction:
    """
    Move the cached balance and append the ledger row in the caller's transaction.

    The balance change is a single conditional UPDATE (balance = balance + delta,
    guarded by balance >= amount for debits), so concurrent writers on one wallet
    serialize on the row and a debit can never be checked against a stale balance.
    """
    if tx_type not in TX_TYPES:
        raise ValidationError(f"Unknown transaction type '{tx_type}'.")

    await _ensure_wallet(db, user_id)

    if currency is not None:
        wallet_currency = await db.scalar(select(Wallet.currency).where(Wallet.user_id == user_id))
        if wallet_currency != currency.upper():
            raise CurrencyMismatch(
                f"Wallet of user {user_id} holds {wallet_currency}, not {currency.upper()}."
            )

    stmt = (
        update(Wallet)
        .where(Wallet.user_id == user_id)
        .values(balance_cents=Wallet.balance_cents + delta_cents, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if delta_cents < 0:
        stmt = stmt.where(Wallet.balance_cents >= -delta_cents)

    res = await db.execute(stmt)
    if res.rowcount != 1:
        raise InsufficientFunds("Insufficient funds.")

    res = await db.execute(
        select(Wallet).where(Wallet.user_id == user_id).execution_options(populate_existing=True)
    )
    wallet = res.scalar_one()

    entry = WalletTransaction(
        wallet_id=wallet.id,
        amount_cents=delta_cents,
        balance_after_cents=wallet.balance_cents,
        type=tx_type,
        reference_id=reference_id,
        description=description,
    )
    db.add(entry)
    await db.flush()

    logger.info(
        "wallet %s user=%s %s %+d -> balance %d (ref=%s)",
        wallet.id, user_id, tx_type, delta_cents, wallet.balance_cents, reference_id,
    )
    return entry


async def credit_wallet(
    db: AsyncSession,
    *,
    user_id: int,
    amount_cents: int,
    tx_type: str,
    reference_id: Optional[str] = None,
    description: str = "",
    currency: Optional[str] = None,
    commit: bool = True,
) -> WalletTransaction:
    """
    Credit a user's wallet, creating it on first use.
    Atomic: balance update + ledger insert. With commit=False the caller owns the transaction.
    A given currency must be the wallet's own, otherwise CurrencyMismatch.
    """
    if amount_cents <= 0:
        raise InvalidAmount("Amount must be positive.")

    if not commit:
        return await _post(
            db,
            user_id=user_id,
            delta_cents=int(amount_cents),
            tx_type=tx_type,
            reference_id=reference_id,
            description=description,
            currency=currency,
        )

    try:
        entry = await _post(
            db,
            user_id=user_id,
            delta_cents=int(amount_cents),
            tx_type=tx_type,
            reference_id=reference_id,
            description=description,
            currency=currency,
        )
        await db.commit()
        return entry
    except Exception:
        await db.rollback()
        raise


async def debit_wallet(
    db: AsyncSession,
    *,
    user_id: int,
    amount_cents: int,
    tx_type: str,
    reference_id: Optional[str] = None,
    description: str = "",
    currency: Optional[str] = None,
    commit: bool = True,
) -> WalletTransaction:
    """
    Debit a user's wallet. Fails with InsufficientFunds when amount > balance at the
    moment of the update; the ledger row carries the negated amount.
    """
    if amount_cents <= 0:
        raise InvalidAmount("Amount must be positive.")

    if not commit:
        return await _post(
            db,
            user_id=user_id,
            delta_cents=-int(amount_cents),
            tx_type=tx_type,
            reference_id=reference_id,
            description=description,
            currency=currency,
        )

    try:
        entry = await _post(
            db,
            user_id=user_id,
            delta_cents=-int(amount_cents),
            tx_type=tx_type,
            reference_id=reference_id,
            description=description,
            currency=currency,
        )
        await db.commit()
        return entry
    except Exception:
        await db.rollback()
        raise


async def get_balance(db: AsyncSession, user_id: int) -> Wallet:
    try:
        await _ensure_wallet(db, user_id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    res = await db.execute(
        select(Wallet).where(Wallet.user_id == user_id).execution_options(populate_existing=True)
    )
    return res.scalar_one()


async def list_transactions(
    db: AsyncSession,
    user_id: int,
    *,
    limit: int = 50,
    offset: int = 0,
) -> list[WalletTransaction]:
    wallet = await get_balance(db, user_id)
    res = await db.execute(
        select(WalletTransaction)
        .where(WalletTransaction.wallet_id == wallet.id)
        .order_by(WalletTransaction.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(res.scalars().all())


async def ledger_sum(db: AsyncSession, user_id: int) -> int:
    """Sum of the wallet's ledger; equals Wallet.balance_cents when the ledger is consistent."""
    res = await db.execute(
        select(func.coalesce(func.sum(WalletTransaction.amount_cents), 0))
        .join(Wallet, Wallet.id == WalletTransaction.wallet_id)
        .where(Wallet.user_id == user_id)
    )
    return int(res.scalar_one())
