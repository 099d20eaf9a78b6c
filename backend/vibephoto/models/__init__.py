from datetime import datetime, timezone

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Import all models so that Base.metadata.create_all picks them up.
from vibephoto.models.user import User  # noqa: E402, F401
from vibephoto.models.job import ImageJob, VideoJob  # noqa: E402, F401
from vibephoto.models.credit_transaction import CreditTransaction  # noqa: E402, F401
