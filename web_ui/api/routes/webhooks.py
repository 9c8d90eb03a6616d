"""
Subscription Webhook API Routes

Receives billing provider lifecycle events and hands them to the
reconciler. Response contract:
- 200 {success, canonical_id, event_type} when processed or ignored
- 400 {error} when the body is not a valid event
- 401 when the shared secret does not match
- 500 {error} when reconciliation fails; the provider retries
"""

import json
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from subscription.models import InvalidEventError
from subscription.reconciler import (
    ReconciliationError,
    SubscriptionEventReconciler,
    UnauthorizedError,
)
from utils.logger import logger
from web_ui.api.dependencies import get_reconciler

router = APIRouter()

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}


def _json(content: dict, status_code: int) -> JSONResponse:
    return JSONResponse(content=content, status_code=status_code, headers=CORS_HEADERS)


@router.options("/subscription")
async def subscription_webhook_preflight():
    """CORS preflight"""
    return PlainTextResponse("ok", headers=CORS_HEADERS)


@router.post("/subscription")
async def subscription_webhook(
    request: Request,
    authorization: Optional[str] = Header(None),
    reconciler: SubscriptionEventReconciler = Depends(get_reconciler),
):
    """Handle a billing provider webhook"""
    try:
        reconciler.verify_authorization(authorization)
    except UnauthorizedError:
        return PlainTextResponse("Unauthorized", status_code=401, headers=CORS_HEADERS)

    body = await request.body()
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.error(f"Failed to parse webhook payload: {e}")
        return _json({"error": "Invalid JSON payload", "details": str(e)}, 400)

    try:
        result = await reconciler.handle(payload, authorization)
    except UnauthorizedError:
        return PlainTextResponse("Unauthorized", status_code=401, headers=CORS_HEADERS)
    except InvalidEventError as e:
        logger.error(f"Rejected webhook payload: {e}")
        return _json({"error": "Invalid webhook payload", "details": str(e)}, 400)
    except ReconciliationError as e:
        logger.error(f"Webhook reconciliation failed: {e}")
        return _json({"error": str(e)}, 500)
    except Exception as e:
        logger.error(f"Webhook processing error: {e}")
        return _json({"error": str(e)}, 500)

    return _json(result.to_dict(), 200)
