"""Operator / scheduler endpoints. Not exposed to users."""

from fastapi import APIRouter, Depends

from vibephoto.deps import get_services, require_internal_key
from vibephoto.wiring import Services

router = APIRouter(
    prefix="/api/internal",
    tags=["internal"],
    dependencies=[Depends(require_internal_key)],
)


@router.post("/sweep")
async def run_sweep(services: Services = Depends(get_services)) -> dict:
    """Run one polling sweep and return its summary."""
    summary = await services.sweeper.run()
    return summary.as_dict()
