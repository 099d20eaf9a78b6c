"""Credit ledger: the only code path allowed to change a user's balance.

Every mutation locks the user row, adjusts the cached
``User.credits_balance`` and appends exactly one ``CreditTransaction`` inside
a single transaction.  Pass ``commit=False`` to join a caller's transaction
(the reconciler writes the job transition and the ledger row together).

Refunds are idempotent per job: the refundable amount is whatever is still
outstanding for that job according to the ledger rows themselves, so a
webhook and a poll both refunding the same failed job credit it once.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from vibephoto.errors import InsufficientCredits, LedgerError
from vibephoto.models.credit_transaction import (
    TRANSACTION_REFUNDED,
    TRANSACTION_SPENT,
    CreditTransaction,
)
from vibephoto.models.user import User

logger = logging.getLogger(__name__)


@dataclass
class LedgerResult:
    ok: bool
    new_balance: int
    amount: int = 0
    transaction_id: Optional[int] = None


class CreditLedger:
    # ----- Read -----

    def balance(self, db: Session, user_id: int) -> int:
        user = db.get(User, user_id)
        if user is None:
            raise LedgerError(f"User {user_id} does not exist")
        return user.credits_balance

    def outstanding_for_job(self, db: Session, job_id: str) -> int:
        """Credits debited for ``job_id`` and not yet refunded."""
        total = db.scalar(
            select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(
                CreditTransaction.reference_job_id == job_id
            )
        )
        return max(0, -int(total or 0))

    def history(
        self, db: Session, user_id: int, *, limit: int = 50, offset: int = 0
    ) -> list[CreditTransaction]:
        stmt = (
            select(CreditTransaction)
            .where(CreditTransaction.user_id == user_id)
            .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(db.scalars(stmt))

    # ----- Write -----

    def debit(
        self,
        db: Session,
        user_id: int,
        amount: int,
        job_id: str,
        *,
        description: str = "",
        commit: bool = True,
    ) -> LedgerResult:
        """Charge ``amount`` credits against ``job_id``.

        Raises:
            InsufficientCredits: balance is lower than ``amount``; nothing is written.
            LedgerError: the user does not exist.
        """
        if amount <= 0:
            raise ValueError(f"Debit amount must be positive, got {amount}")

        user = self._lock_user(db, user_id)
        if user.credits_balance < amount:
            raise InsufficientCredits(required=amount, available=user.credits_balance)

        user.credits_balance -= amount
        txn = CreditTransaction(
            user_id=user_id,
            type=TRANSACTION_SPENT,
            amount=-amount,
            reference_job_id=job_id,
            balance_after=user.credits_balance,
            description=description,
        )
        db.add(txn)
        db.flush()
        if commit:
            db.commit()

        logger.info(
            "Debited %d credits for job %s",
            amount,
            job_id,
            extra={"user_id": user_id, "balance_after": user.credits_balance},
        )
        return LedgerResult(
            ok=True, new_balance=user.credits_balance, amount=amount, transaction_id=txn.id
        )

    def refund(
        self,
        db: Session,
        user_id: int,
        amount: int,
        job_id: str,
        reason: str,
        *,
        commit: bool = True,
    ) -> LedgerResult:
        """Return up to ``amount`` credits for ``job_id``.

        The refund is capped at what is still outstanding for the job, so
        repeated calls converge on a single refund.  A capped amount of zero
        writes nothing and still reports ``ok``.

        Raises:
            LedgerError: the user row is missing; callers must treat this as fatal.
        """
        user = self._lock_user(db, user_id)
        refundable = min(amount, self.outstanding_for_job(db, job_id))
        if refundable <= 0:
            logger.info(
                "Refund for job %s skipped: nothing outstanding",
                job_id,
                extra={"user_id": user_id, "requested": amount},
            )
            return LedgerResult(ok=True, new_balance=user.credits_balance, amount=0)

        user.credits_balance += refundable
        txn = CreditTransaction(
            user_id=user_id,
            type=TRANSACTION_REFUNDED,
            amount=refundable,
            reference_job_id=job_id,
            balance_after=user.credits_balance,
            description=reason[:500],
        )
        db.add(txn)
        db.flush()
        if commit:
            db.commit()

        logger.info(
            "Refunded %d credits for job %s",
            refundable,
            job_id,
            extra={"user_id": user_id, "balance_after": user.credits_balance, "reason": reason},
        )
        return LedgerResult(
            ok=True, new_balance=user.credits_balance, amount=refundable, transaction_id=txn.id
        )

    # ----- Internal -----

    def _lock_user(self, db: Session, user_id: int) -> User:
        user = db.scalars(
            select(User).where(User.id == user_id).with_for_update()
        ).first()
        if user is None:
            raise LedgerError(f"User {user_id} does not exist")
        return user
