"""
Billing synchronization: payment-provider events → plan and limits.

Events are decoded into typed records at the boundary. Each provider event
id is recorded in ``billing_events`` in the same transaction as the account
update, so a re-delivered event is a no-op. Accounts remember the creation
time of the last applied event, and older events are skipped so the latest
plan wins when deliveries arrive out of order.
"""

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ValidationError
from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.clients.mailer import Mailer
from backend.clients.payments import PaymentGateway
from backend.errors import ConfigurationError, InvalidArgumentError
from backend.models_db import Account, BillingEvent
from backend.services.accounts import find_by_customer_id, get_account, plan_columns, utcnow
from backend.services.notifications import deliver
from forge.plans import PAID_PLANS, PlanKey, PriceCatalog, get_plan, parse_plan_key

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"


# --- Raw provider payloads (only the fields we read) ---

class _Price(BaseModel):
    id: str


class _LineItem(BaseModel):
    price: Optional[_Price] = None


class _ItemList(BaseModel):
    data: list[_LineItem] = []


class _CheckoutSession(BaseModel):
    id: str
    customer: Optional[str] = None
    subscription: Optional[str] = None
    metadata: dict[str, str] = {}
    line_items: Optional[_ItemList] = None


class _Subscription(BaseModel):
    id: str
    customer: str
    status: str
    items: _ItemList = _ItemList()


class _EventData(BaseModel):
    object: dict


class _Envelope(BaseModel):
    id: str
    type: str
    created: int
    data: _EventData


def _first_price(items: Optional[_ItemList]) -> Optional[str]:
    if items and items.data and items.data[0].price:
        return items.data[0].price.id
    return None


# --- Decoded events ---

class CheckoutCompleted(BaseModel):
    event_id: str
    created: datetime
    account_id: str
    plan: PlanKey
    price_id: Optional[str] = None
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None


class SubscriptionUpdated(BaseModel):
    event_id: str
    created: datetime
    customer_id: str
    subscription_id: str
    status: str
    price_id: Optional[str] = None


class SubscriptionDeleted(BaseModel):
    event_id: str
    created: datetime
    customer_id: str
    subscription_id: str


class UnhandledEvent(BaseModel):
    event_id: str
    event_type: str


BillingEventRecord = Union[CheckoutCompleted, SubscriptionUpdated, SubscriptionDeleted, UnhandledEvent]


def decode_event(payload: dict) -> BillingEventRecord:
    """Validate a verified provider event and convert it to a typed record.

    Raises:
        InvalidArgumentError: If required fields are missing or malformed.
    """
    try:
        envelope = _Envelope.model_validate(payload)
    except ValidationError as e:
        raise InvalidArgumentError(f"Malformed billing event: {e.error_count()} invalid field(s)")

    created = datetime.fromtimestamp(envelope.created, tz=timezone.utc)
    try:
        if envelope.type == CHECKOUT_COMPLETED:
            session = _CheckoutSession.model_validate(envelope.data.object)
            account_id = session.metadata.get("account_id")
            plan = session.metadata.get("plan")
            if not account_id or not plan:
                raise InvalidArgumentError("Missing account_id or plan in checkout session metadata")
            try:
                plan_key = parse_plan_key(plan)
            except ValueError as e:
                raise InvalidArgumentError(str(e))
            return CheckoutCompleted(
                event_id=envelope.id,
                created=created,
                account_id=account_id,
                plan=plan_key,
                price_id=_first_price(session.line_items) or session.metadata.get("price_id"),
                customer_id=session.customer,
                subscription_id=session.subscription,
            )
        if envelope.type == SUBSCRIPTION_UPDATED:
            sub = _Subscription.model_validate(envelope.data.object)
            return SubscriptionUpdated(
                event_id=envelope.id,
                created=created,
                customer_id=sub.customer,
                subscription_id=sub.id,
                status=sub.status,
                price_id=_first_price(sub.items),
            )
        if envelope.type == SUBSCRIPTION_DELETED:
            sub = _Subscription.model_validate(envelope.data.object)
            return SubscriptionDeleted(
                event_id=envelope.id,
                created=created,
                customer_id=sub.customer,
                subscription_id=sub.id,
            )
    except ValidationError as e:
        raise InvalidArgumentError(f"Malformed {envelope.type} event: {e.error_count()} invalid field(s)")
    return UnhandledEvent(event_id=envelope.id, event_type=envelope.type)


# --- Synchronizer ---

class SyncOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    STALE = "stale"
    IGNORED = "ignored"


@dataclass(frozen=True)
class SubscriptionNotice:
    email: str
    plan_name: str
    status: str


@dataclass(frozen=True)
class SyncResult:
    event_id: str
    outcome: SyncOutcome
    account_id: Optional[str] = None
    plan: Optional[PlanKey] = None
    notice: Optional[SubscriptionNotice] = None


class BillingSynchronizer:
    def __init__(self, prices: PriceCatalog):
        self.prices = prices

    def _plan_for_price(self, price_id: Optional[str]) -> PlanKey:
        if not self.prices.is_known(price_id):
            logger.warning("Unrecognized price id %r; falling back to the free plan", price_id)
        return self.prices.plan_for_price(price_id)

    def _write(self, db: Session, account: Account, event_created: datetime, values: dict) -> bool:
        """Write ``values`` in one statement unless a newer event was already applied."""
        result = db.execute(
            update(Account)
            .where(
                Account.id == account.id,
                or_(Account.billing_synced_at.is_(None), Account.billing_synced_at <= event_created),
            )
            .values(billing_synced_at=event_created, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _checkout_completed(self, db: Session, event: CheckoutCompleted):
        account = get_account(db, event.account_id)
        plan_key = self._plan_for_price(event.price_id)
        if plan_key != event.plan:
            logger.warning(
                "Checkout %s for account %s requested plan '%s' but price %r resolves to '%s'",
                event.event_id, account.id, event.plan.value, event.price_id, plan_key.value,
            )
        plan = get_plan(plan_key)
        values = plan_columns(plan)
        values["subscription_status"] = "active"
        if event.customer_id:
            values["stripe_customer_id"] = event.customer_id
        if event.subscription_id:
            values["subscription_id"] = event.subscription_id
        if not self._write(db, account, event.created, values):
            return SyncOutcome.STALE, account, plan_key, None
        return SyncOutcome.APPLIED, account, plan_key, SubscriptionNotice(account.email, plan.name, "active")

    @staticmethod
    def _superseded(account: Account, subscription_id: str) -> bool:
        """True if the account has moved on to a different subscription."""
        if account.subscription_id and account.subscription_id != subscription_id:
            logger.info(
                "Ignoring event for subscription %s; account %s is on %s",
                subscription_id, account.id, account.subscription_id,
            )
            return True
        return False

    def _subscription_updated(self, db: Session, event: SubscriptionUpdated):
        account = find_by_customer_id(db, event.customer_id)
        if self._superseded(account, event.subscription_id):
            return SyncOutcome.IGNORED, account, PlanKey(account.plan), None
        plan_key = self._plan_for_price(event.price_id)
        values = plan_columns(get_plan(plan_key))
        values.update(subscription_id=event.subscription_id, subscription_status=event.status)
        if not self._write(db, account, event.created, values):
            return SyncOutcome.STALE, account, plan_key, None
        return SyncOutcome.APPLIED, account, plan_key, None

    def _subscription_deleted(self, db: Session, event: SubscriptionDeleted):
        account = find_by_customer_id(db, event.customer_id)
        if self._superseded(account, event.subscription_id):
            return SyncOutcome.IGNORED, account, PlanKey(account.plan), None
        if account.subscription_id is None and account.subscription_status == "canceled":
            logger.info("Account %s already canceled; deletion of %s ignored", account.id, event.subscription_id)
            return SyncOutcome.IGNORED, account, PlanKey(account.plan), None
        plan = get_plan(PlanKey.FREE)
        values = plan_columns(plan)
        values.update(subscription_id=None, subscription_status="canceled")
        if not self._write(db, account, event.created, values):
            return SyncOutcome.STALE, account, PlanKey.FREE, None
        return SyncOutcome.APPLIED, account, PlanKey.FREE, SubscriptionNotice(account.email, plan.name, "canceled")

    def apply(self, db: Session, event: BillingEventRecord, payload: bytes = b"") -> SyncResult:
        """Apply one decoded event. Commits.

        Raises:
            NotFoundError: The target account cannot be resolved.
            ConflictError: The customer id matches more than one account.
        """
        if isinstance(event, UnhandledEvent):
            logger.info("Unhandled billing event type: %s", event.event_type)
            return SyncResult(event.event_id, SyncOutcome.IGNORED)

        if db.get(BillingEvent, event.event_id) is not None:
            logger.info("Billing event %s already processed", event.event_id)
            return SyncResult(event.event_id, SyncOutcome.DUPLICATE)

        handlers = {
            CheckoutCompleted: (CHECKOUT_COMPLETED, self._checkout_completed),
            SubscriptionUpdated: (SUBSCRIPTION_UPDATED, self._subscription_updated),
            SubscriptionDeleted: (SUBSCRIPTION_DELETED, self._subscription_deleted),
        }
        event_type, handler = handlers[type(event)]
        try:
            outcome, account, plan_key, notice = handler(db, event)
            db.add(BillingEvent(
                id=event.event_id,
                event_type=event_type,
                account_id=account.id,
                outcome=outcome.value,
                payload_hash=hashlib.sha256(payload).hexdigest(),
                received_at=utcnow(),
            ))
            db.commit()
        except IntegrityError:
            # Another delivery of the same event committed first
            db.rollback()
            return SyncResult(event.event_id, SyncOutcome.DUPLICATE)
        except Exception:
            db.rollback()
            raise

        logger.info("Billing event %s (%s) %s for account %s", event.event_id, event_type, outcome.value, account.id)
        return SyncResult(event.event_id, outcome, account.id, plan_key, notice)


async def notify_subscription_change(mailer: Mailer, result: SyncResult) -> bool:
    if result.notice is None:
        return False
    note = result.notice
    return await deliver("subscription-update", mailer.send_subscription_update, note.email, note.plan_name, note.status)


async def start_checkout(
    payments: PaymentGateway,
    prices: PriceCatalog,
    account: Account,
    plan_value: str,
    frontend_url: str,
) -> tuple[str, Optional[str]]:
    """Create a checkout session for upgrading ``account`` to a paid plan.

    Raises:
        InvalidArgumentError: Unknown or non-purchasable plan.
        ConfigurationError: No price id configured for the plan.
        UpstreamError: The payment provider failed.
    """
    try:
        plan_key = parse_plan_key(plan_value)
    except ValueError as e:
        raise InvalidArgumentError(str(e))
    if plan_key not in PAID_PLANS:
        raise InvalidArgumentError(f"Invalid plan specified. Received: {plan_value}")

    price_id = prices.price_for_plan(plan_key)
    if not price_id:
        logger.error("Stripe price id not configured for plan '%s'", plan_key.value)
        raise ConfigurationError("Server configuration error for pricing.")

    return await payments.create_checkout_session(
        price_id=price_id,
        success_url=f"{frontend_url}/#/dashboard?success=true",
        cancel_url=f"{frontend_url}/#/pricing?canceled=true",
        metadata={"account_id": account.id, "plan": plan_key.value, "price_id": price_id},
        customer_email=account.email,
        customer_id=account.stripe_customer_id,
    )
