from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from vibephoto.models import Base, utcnow

TRANSACTION_SPENT = "SPENT"
TRANSACTION_REFUNDED = "REFUNDED"


class CreditTransaction(Base):
    """Append-only ledger row. Never updated or deleted."""

    __tablename__ = "credit_transactions"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    type: Mapped[str] = mapped_column(String(20))
    # Signed: debits are negative, refunds positive.
    amount: Mapped[int] = mapped_column(Integer)
    reference_job_id: Mapped[str | None] = mapped_column(
        String(32), index=True, default=None
    )
    balance_after: Mapped[int] = mapped_column(Integer)
    description: Mapped[str] = mapped_column(String(500), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
