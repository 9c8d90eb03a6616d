"""
Subscription Data Models

Defines the data structures shared by the usage ledger and the
subscription event reconciler:
- Plan types and the quota limits attached to each
- Usage counters (one per owner and job kind)
- Reservation results (allowed, or denied with a reason)
- Subscription events parsed from the billing provider's webhook
- Subscriber info fetched from the billing provider's REST API
"""

from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any
from datetime import datetime

from models.job_record import JobKind
from utils.time_utils import parse_timestamp, to_iso

UNLIMITED = -1


class InvalidEventError(ValueError):
    """Webhook body is not a recognizable subscription event"""
    pass


class PlanType(str, Enum):
    """Subscription plans a counter can be on"""
    FREE = "free"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class DenialReason(str, Enum):
    """Why a reservation was refused"""
    QUOTA_EXCEEDED = "quota_exceeded"
    DAILY_LIMIT_REACHED = "daily_limit_reached"


@dataclass
class UsageLimits:
    """
    Quota limits for one plan.

    -1 means unlimited. `video_daily` caps videos per calendar day (UTC)
    on top of the per-cycle limit; None means no daily cap.
    """
    photos: int
    videos: int
    video_daily: Optional[int] = None

    @classmethod
    def for_plan(cls, plan: PlanType, settings=None) -> "UsageLimits":
        """Get limits for a plan, read from settings"""
        if settings is None:
            from config import settings

        if plan == PlanType.WEEKLY:
            return cls(
                photos=settings.WEEKLY_PHOTO_LIMIT,
                videos=settings.WEEKLY_VIDEO_LIMIT,
                video_daily=settings.WEEKLY_VIDEO_DAILY_LIMIT,
            )
        elif plan == PlanType.MONTHLY:
            return cls(
                photos=settings.MONTHLY_PHOTO_LIMIT,
                videos=settings.MONTHLY_VIDEO_LIMIT,
            )
        return cls(
            photos=settings.FREE_PHOTO_LIMIT,
            videos=settings.FREE_VIDEO_LIMIT,
        )

    def limit_for(self, kind: JobKind) -> int:
        return self.photos if kind == JobKind.PHOTO else self.videos

    def daily_limit_for(self, kind: JobKind) -> Optional[int]:
        return self.video_daily if kind == JobKind.VIDEO else None


@dataclass
class UsageCounter:
    """
    Metered usage for one (owner, kind) within the current billing cycle.

    Created lazily on first reservation as a FREE counter. Plan fields are
    written by the reconciler; `used` is moved by reserve/rollback.
    """
    owner_id: str
    kind: JobKind
    plan_type: PlanType
    used: int
    limit: int
    cycle_start: datetime
    cycle_end: datetime
    last_reset_at: datetime
    anchor_date: datetime
    is_active: bool = True
    expires_at: Optional[datetime] = None
    daily_limit: Optional[int] = None
    used_today: int = 0
    usage_day: Optional[str] = None
    updated_at: Optional[datetime] = None

    @property
    def is_unlimited(self) -> bool:
        return self.limit == UNLIMITED

    @property
    def remaining(self) -> int:
        if self.is_unlimited:
            return UNLIMITED
        return max(0, self.limit - self.used)

    def is_stale(self, now: datetime) -> bool:
        """True when `now` falls outside the stored cycle"""
        return not (self.cycle_start <= now < self.cycle_end)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        return {
            "owner_id": self.owner_id,
            "kind": self.kind.value,
            "plan_type": self.plan_type.value,
            "used": self.used,
            "limit": self.limit,
            "cycle_start": to_iso(self.cycle_start),
            "cycle_end": to_iso(self.cycle_end),
            "last_reset_at": to_iso(self.last_reset_at),
            "anchor_date": to_iso(self.anchor_date),
            "is_active": self.is_active,
            "expires_at": to_iso(self.expires_at),
            "daily_limit": self.daily_limit,
            "used_today": self.used_today,
            "usage_day": self.usage_day,
            "updated_at": to_iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsageCounter":
        """Create from dictionary"""
        return cls(
            owner_id=data["owner_id"],
            kind=JobKind(data["kind"]),
            plan_type=PlanType(data.get("plan_type", PlanType.FREE.value)),
            used=int(data.get("used", 0)),
            limit=int(data.get("limit", 0)),
            cycle_start=parse_timestamp(data["cycle_start"]),
            cycle_end=parse_timestamp(data["cycle_end"]),
            last_reset_at=parse_timestamp(data.get("last_reset_at") or data["cycle_start"]),
            anchor_date=parse_timestamp(data.get("anchor_date") or data["cycle_start"]),
            is_active=data.get("is_active", True),
            expires_at=parse_timestamp(data.get("expires_at")),
            daily_limit=data.get("daily_limit"),
            used_today=int(data.get("used_today", 0)),
            usage_day=data.get("usage_day"),
            updated_at=parse_timestamp(data.get("updated_at")),
        )


@dataclass
class Reservation:
    """
    Result of a quota reservation.

    Denial is a value, not an exception: callers branch on `allowed`.
    `counter` is a snapshot taken after the reservation was applied.
    """
    allowed: bool
    counter: UsageCounter
    reason: Optional[DenialReason] = None

    @classmethod
    def allow(cls, counter: UsageCounter) -> "Reservation":
        return cls(allowed=True, counter=counter)

    @classmethod
    def deny(cls, reason: DenialReason, counter: UsageCounter) -> "Reservation":
        return cls(allowed=False, counter=counter, reason=reason)

    def __bool__(self) -> bool:
        return self.allowed


class SubscriptionEventType(str, Enum):
    """Billing provider events the reconciler understands"""
    PURCHASE = "INITIAL_PURCHASE"
    RENEWAL = "RENEWAL"
    PLAN_CHANGE = "PRODUCT_CHANGE"
    UNCANCELLATION = "UNCANCELLATION"
    EXPIRATION = "EXPIRATION"
    CANCELLATION = "CANCELLATION"
    BILLING_ISSUE = "BILLING_ISSUE"
    TRANSFER = "TRANSFER"
    TEST = "TEST"

    @classmethod
    def from_wire(cls, value: Optional[str]) -> Optional["SubscriptionEventType"]:
        """Map a wire name to an event type; unknown names give None"""
        if not value:
            return None
        try:
            return cls(str(value).upper())
        except ValueError:
            return None

    @property
    def is_active_class(self) -> bool:
        return self in ACTIVE_EVENTS

    @property
    def is_inactive_class(self) -> bool:
        return self in INACTIVE_EVENTS


ACTIVE_EVENTS = frozenset({
    SubscriptionEventType.PURCHASE,
    SubscriptionEventType.RENEWAL,
    SubscriptionEventType.PLAN_CHANGE,
    SubscriptionEventType.UNCANCELLATION,
})

INACTIVE_EVENTS = frozenset({
    SubscriptionEventType.EXPIRATION,
    SubscriptionEventType.CANCELLATION,
    SubscriptionEventType.BILLING_ISSUE,
})


@dataclass
class SubscriptionEvent:
    """
    A webhook event from the billing provider.

    `event_type` is None for types this service does not handle; such
    events are acknowledged without processing. Never persisted.
    """
    raw_type: str
    event_type: Optional[SubscriptionEventType]
    subject_id: Optional[str]
    original_subject_id: Optional[str] = None
    occurred_at: Optional[datetime] = None
    product_id: Optional[str] = None
    transferred_from: List[str] = field(default_factory=list)
    transferred_to: List[str] = field(default_factory=list)
    event_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "SubscriptionEvent":
        """
        Parse a webhook body.

        The provider wraps the event in an `event` object; a bare event
        dict is accepted too. Raises InvalidEventError when the body is not an
        object or has no event type.
        """
        if not isinstance(payload, dict):
            raise InvalidEventError("Webhook body must be a JSON object")

        event = payload.get("event", payload)
        if not isinstance(event, dict):
            raise InvalidEventError("Webhook 'event' must be a JSON object")

        raw_type = event.get("type")
        if not raw_type:
            raise InvalidEventError("Webhook event has no type")

        try:
            occurred_at = parse_timestamp(event.get("event_timestamp_ms"))
        except (ValueError, TypeError, OverflowError) as e:
            raise InvalidEventError(f"Invalid event_timestamp_ms: {e}") from e

        return cls(
            raw_type=str(raw_type),
            event_type=SubscriptionEventType.from_wire(raw_type),
            subject_id=event.get("app_user_id"),
            original_subject_id=event.get("original_app_user_id"),
            occurred_at=occurred_at,
            product_id=event.get("product_id"),
            transferred_from=list(event.get("transferred_from") or []),
            transferred_to=list(event.get("transferred_to") or []),
            event_id=event.get("id"),
            payload=payload,
        )

    @property
    def lookup_id(self) -> Optional[str]:
        """Id to query the billing provider with"""
        if self.event_type == SubscriptionEventType.TRANSFER and self.transferred_to:
            return self.transferred_to[0]
        return self.subject_id or self.original_subject_id


@dataclass
class Entitlement:
    """One entitlement from the billing provider's subscriber record"""
    identifier: str
    product_identifier: Optional[str] = None
    expires_date: Optional[datetime] = None
    purchase_date: Optional[datetime] = None
    original_purchase_date: Optional[datetime] = None

    def is_active(self, now: datetime) -> bool:
        """Active while the expiry is in the future"""
        return self.expires_date is not None and self.expires_date > now

    @classmethod
    def from_dict(cls, identifier: str, data: Dict[str, Any]) -> "Entitlement":
        return cls(
            identifier=identifier,
            product_identifier=data.get("product_identifier"),
            expires_date=parse_timestamp(data.get("expires_date")),
            purchase_date=parse_timestamp(data.get("purchase_date")),
            original_purchase_date=parse_timestamp(data.get("original_purchase_date")),
        )


@dataclass
class SubscriberInfo:
    """Canonical subscriber state as reported by the billing provider"""
    original_app_user_id: Optional[str]
    entitlements: Dict[str, Entitlement] = field(default_factory=dict)
    original_purchase_date: Optional[datetime] = None
    first_seen: Optional[datetime] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    def canonical_id(self, fallback: str) -> str:
        return self.original_app_user_id or fallback

    def active_entitlement(self, entitlement_id: str, now: datetime) -> Optional[Entitlement]:
        entitlement = self.entitlements.get(entitlement_id)
        if entitlement and entitlement.is_active(now):
            return entitlement
        return None

    def anchor_date(self, entitlement: Optional[Entitlement] = None) -> Optional[datetime]:
        """Billing anchor: the entitlement's original purchase, then fallbacks"""
        if entitlement and entitlement.original_purchase_date:
            return entitlement.original_purchase_date
        if self.original_purchase_date:
            return self.original_purchase_date
        if entitlement and entitlement.purchase_date:
            return entitlement.purchase_date
        return self.first_seen

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> "SubscriberInfo":
        """Parse `{"subscriber": {...}}` from the billing provider"""
        subscriber = data.get("subscriber", data) or {}
        entitlements = {
            name: Entitlement.from_dict(name, info or {})
            for name, info in (subscriber.get("entitlements") or {}).items()
        }
        return cls(
            original_app_user_id=subscriber.get("original_app_user_id"),
            entitlements=entitlements,
            original_purchase_date=parse_timestamp(subscriber.get("original_purchase_date")),
            first_seen=parse_timestamp(subscriber.get("first_seen")),
            raw=subscriber,
        )
