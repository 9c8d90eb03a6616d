"""
Subscription Event Reconciler

Handles billing provider webhooks. Event bodies are only a trigger: every
decision is made from subscriber state fetched from the billing provider,
so handling an event twice, or two events in either order, converges on
the same ledger state.

Event classes:
- Active (purchase, renewal, plan change, uncancellation): write plan,
  limits and billing cycle for every job kind
- Inactive (expiration, cancellation, billing issue): mark counters
  inactive, keeping usage
- Transfer: merge each transferred-from alias into the canonical owner
- Test: acknowledged without processing
"""

import hmac
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional, Any, Iterable, List

from models.job_record import JobKind
from subscription.billing_client import BillingProviderError, RevenueCatClient
from subscription.billing_cycle import compute_cycle, plan_from_product_id
from subscription.models import (
    Entitlement,
    InvalidEventError,
    SubscriberInfo,
    SubscriptionEvent,
    SubscriptionEventType,
)
from subscription.usage_ledger import UsageLedger
from utils.logger import logger
from utils.time_utils import utc_now


class UnauthorizedError(Exception):
    """Webhook shared secret missing or wrong"""
    pass


class ReconciliationError(Exception):
    """Reconciliation could not complete; the provider should retry"""
    pass


@dataclass
class ReconciliationResult:
    """Outcome returned to the webhook caller"""
    canonical_id: Optional[str]
    event_type: str
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "success": True,
            "canonical_id": self.canonical_id,
            "event_type": self.event_type,
        }
        if self.message:
            data["message"] = self.message
        return data


class SubscriptionEventReconciler:
    """Stateless per-event handler over the usage ledger"""

    def __init__(
        self,
        ledger: UsageLedger,
        billing_client: RevenueCatClient,
        webhook_secret: Optional[str] = None,
        entitlement_id: str = "pro",
        clock: Optional[Callable[[], datetime]] = None,
        kinds: Iterable[JobKind] = tuple(JobKind),
    ):
        self._ledger = ledger
        self._billing = billing_client
        self._webhook_secret = webhook_secret
        self._entitlement_id = entitlement_id
        self._clock = clock or utc_now
        self._kinds = tuple(kinds)

    def verify_authorization(self, authorization: Optional[str]) -> None:
        """Compare the Authorization header against `Bearer {secret}` when a secret is set"""
        if not self._webhook_secret:
            return
        expected = f"Bearer {self._webhook_secret}"
        if not authorization or not hmac.compare_digest(authorization, expected):
            logger.warning("Rejected webhook with invalid secret")
            raise UnauthorizedError("Invalid webhook secret")

    async def handle(self, payload: Dict[str, Any], authorization: Optional[str] = None) -> ReconciliationResult:
        """
        Reconcile one webhook event.

        Raises:
            UnauthorizedError: Shared secret mismatch
            InvalidEventError: Payload is not a recognizable event
            ReconciliationError: Subscriber state could not be fetched or parsed
        """
        self.verify_authorization(authorization)
        event = SubscriptionEvent.from_payload(payload)

        logger.info(
            f"Processing subscription webhook: type={event.raw_type} "
            f"app_user_id={event.subject_id} product={event.product_id} id={event.event_id}"
        )

        if event.event_type == SubscriptionEventType.TEST:
            logger.info("TEST webhook received")
            return ReconciliationResult(
                canonical_id=None,
                event_type=event.raw_type,
                message="TEST webhook received successfully",
            )

        if event.event_type is None:
            logger.info(f"Ignoring unhandled webhook type: {event.raw_type}")
            return ReconciliationResult(
                canonical_id=event.subject_id,
                event_type=event.raw_type,
                message="Event type not handled",
            )

        lookup_id = event.lookup_id
        if not lookup_id:
            raise InvalidEventError("Webhook event has no app_user_id")

        try:
            subscriber = await self._billing.get_subscriber(lookup_id)
        except BillingProviderError as e:
            raise ReconciliationError(f"Could not fetch subscriber {lookup_id}: {e}") from e

        canonical_id = subscriber.canonical_id(lookup_id)
        now = self._clock()
        entitlement = subscriber.active_entitlement(self._entitlement_id, now)

        if event.event_type.is_active_class:
            if entitlement:
                self._apply_plan(canonical_id, subscriber, entitlement, now)
            else:
                logger.info(f"{event.raw_type} for {canonical_id} without an active entitlement, nothing to apply")

        elif event.event_type.is_inactive_class:
            for kind in self._kinds:
                self._ledger.mark_inactive(canonical_id, kind)
            logger.info(f"Marked {canonical_id} inactive after {event.raw_type}")

        elif event.event_type == SubscriptionEventType.TRANSFER:
            merged = self._merge_aliases(canonical_id, event.transferred_from)
            if entitlement:
                self._apply_plan(canonical_id, subscriber, entitlement, now, keep_usage=True)
            logger.info(f"Transfer into {canonical_id} merged {len(merged)} alias(es)")

        return ReconciliationResult(canonical_id=canonical_id, event_type=event.raw_type)

    def _apply_plan(
        self,
        canonical_id: str,
        subscriber: SubscriberInfo,
        entitlement: Entitlement,
        now: datetime,
        keep_usage: bool = False,
    ) -> None:
        plan_type = plan_from_product_id(entitlement.product_identifier)
        anchor = subscriber.anchor_date(entitlement) or now
        cycle = compute_cycle(anchor, plan_type, now)

        for kind in self._kinds:
            self._ledger.upsert_plan(
                canonical_id,
                kind,
                plan_type,
                cycle,
                anchor_date=anchor,
                expires_at=entitlement.expires_date,
                keep_usage=keep_usage,
            )

    def _merge_aliases(self, canonical_id: str, aliases: List[str]) -> List[str]:
        merged = []
        for alias in aliases:
            if not alias or alias == canonical_id:
                continue
            for kind in self._kinds:
                self._ledger.merge_into(canonical_id, alias, kind)
            merged.append(alias)
        return merged
