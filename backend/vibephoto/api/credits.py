"""Credits API: balance and ledger history for the current user."""

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from vibephoto.deps import get_current_user, get_services
from vibephoto.models.user import User
from vibephoto.wiring import Services

router = APIRouter(prefix="/api/credits", tags=["credits"])


class TransactionResponse(BaseModel):
    id: int
    type: str
    amount: int
    reference_job_id: str | None
    balance_after: int
    description: str
    created_at: datetime

    model_config = {"from_attributes": True}


class CreditsResponse(BaseModel):
    balance: int
    transactions: list[TransactionResponse]


@router.get("", response_model=CreditsResponse)
def get_credits(
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> CreditsResponse:
    db = services.session_factory()
    try:
        balance = services.ledger.balance(db, current_user.id)
        history = services.ledger.history(db, current_user.id, limit=limit, offset=offset)
        transactions = [TransactionResponse.model_validate(t) for t in history]
    finally:
        db.close()
    return CreditsResponse(balance=balance, transactions=transactions)
