"""Usage API Routes - read-only view of an owner's ledger counters"""

from fastapi import APIRouter, Depends

from subscription.usage_ledger import UsageLedger
from web_ui.api.dependencies import get_ledger
from web_ui.api.middleware.auth import require_api_token

router = APIRouter()


@router.get("/{owner_id}", dependencies=[Depends(require_api_token)])
async def get_usage(owner_id: str, ledger: UsageLedger = Depends(get_ledger)):
    """
    Get photo and video usage for an owner.

    Owners without counters report FREE-plan defaults.
    """
    return ledger.get_usage_summary(owner_id)
