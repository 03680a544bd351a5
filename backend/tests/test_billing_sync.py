"""
Tests for the Billing Synchronizer and checkout.

Validates:
1. Provider events are validated into typed records at the boundary
2. Plan and limits always change together, resolved from the price id
3. Re-delivered events are no-ops; older events never overwrite newer ones
4. Cancellations only downgrade when they name the current subscription
5. Webhook signatures are verified against the raw payload
6. Checkout rejects free/unknown plans and missing price configuration
"""

import asyncio

import pytest
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(__file__))))

from backend.errors import (
    ConfigurationError,
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
    SignatureInvalidError,
)
from backend.models_db import BillingEvent
from backend.services.accounts import get_account
from backend.services.billing_sync import (
    CHECKOUT_COMPLETED,
    SUBSCRIPTION_DELETED,
    SUBSCRIPTION_UPDATED,
    CheckoutCompleted,
    SubscriptionDeleted,
    SubscriptionUpdated,
    SyncOutcome,
    UnhandledEvent,
    decode_event,
    notify_subscription_change,
    start_checkout,
)
from forge.plans import FOUNDER_LIMITS, FREE_LIMITS, TEAM_LIMITS, PlanKey, PriceCatalog

from conftest import (
    FakeMailer,
    FakePayments,
    checkout_event,
    encode,
    sign_payload,
    stripe_event,
    subscription_event,
)


def _apply(db, services, event):
    return services.synchronizer.apply(db, decode_event(event), encode(event))


def _limits(account):
    return {name: getattr(account, name) for name in FREE_LIMITS.as_dict()}


class TestDecodeEvent:
    """Boundary validation of provider payloads."""

    def test_checkout(self):
        record = decode_event(checkout_event("evt_1", "acct-1", plan="team", price_id="price_team"))
        assert isinstance(record, CheckoutCompleted)
        assert record.account_id == "acct-1"
        assert record.plan == PlanKey.TEAM
        assert record.price_id == "price_team"
        assert record.customer_id == "cus_1"

    def test_checkout_price_from_line_items(self):
        event = checkout_event("evt_1", "acct-1")
        event["data"]["object"]["line_items"] = {"data": [{"price": {"id": "price_enterprise"}}]}
        assert decode_event(event).price_id == "price_enterprise"

    @pytest.mark.parametrize("missing", ["account_id", "plan"])
    def test_checkout_requires_metadata(self, missing):
        event = checkout_event("evt_1", "acct-1")
        del event["data"]["object"]["metadata"][missing]
        with pytest.raises(InvalidArgumentError):
            decode_event(event)

    def test_checkout_unknown_plan(self):
        with pytest.raises(InvalidArgumentError):
            decode_event(checkout_event("evt_1", "acct-1", plan="platinum"))

    def test_subscription_events(self):
        updated = decode_event(subscription_event("evt_2", SUBSCRIPTION_UPDATED, status="past_due"))
        assert isinstance(updated, SubscriptionUpdated)
        assert updated.status == "past_due"
        assert updated.price_id == "price_team"
        deleted = decode_event(subscription_event("evt_3", SUBSCRIPTION_DELETED))
        assert isinstance(deleted, SubscriptionDeleted)
        assert deleted.subscription_id == "sub_1"

    def test_unhandled_type(self):
        record = decode_event(stripe_event("evt_4", "invoice.paid", {"id": "in_1"}))
        assert isinstance(record, UnhandledEvent)

    @pytest.mark.parametrize("payload", [
        {},
        {"id": "evt_5", "type": CHECKOUT_COMPLETED},
        stripe_event("evt_6", SUBSCRIPTION_UPDATED, {"id": "sub_1"}),
    ])
    def test_malformed(self, payload):
        with pytest.raises(InvalidArgumentError):
            decode_event(payload)


class TestCheckoutCompleted:
    """checkout.session.completed upgrades the purchaser."""

    def test_upgrades_plan_and_limits_together(self, db, services, make_account):
        account = make_account()
        result = _apply(db, services, checkout_event("evt_1", account.id))
        assert result.outcome == SyncOutcome.APPLIED
        assert result.plan == PlanKey.FOUNDER
        assert result.notice.status == "active"

        stored = get_account(db, account.id)
        assert stored.plan == "founder"
        assert _limits(stored) == FOUNDER_LIMITS.as_dict()
        assert stored.stripe_customer_id == "cus_1"
        assert stored.subscription_id == "sub_1"
        assert stored.subscription_status == "active"

    def test_price_wins_over_metadata_plan(self, db, services, make_account):
        account = make_account()
        _apply(db, services, checkout_event("evt_1", account.id, plan="enterprise", price_id="price_founder"))
        assert get_account(db, account.id).plan == "founder"

    def test_unknown_price_fails_closed(self, db, services, make_account):
        account = make_account()
        result = _apply(db, services, checkout_event("evt_1", account.id, price_id="price_bogus"))
        assert result.plan == PlanKey.FREE
        stored = get_account(db, account.id)
        assert stored.plan == "free"
        assert _limits(stored) == FREE_LIMITS.as_dict()

    def test_usage_untouched(self, db, services, make_account):
        account = make_account(ideas_generated=5, builds_started=2)
        _apply(db, services, checkout_event("evt_1", account.id))
        stored = get_account(db, account.id)
        assert stored.ideas_generated == 5
        assert stored.builds_started == 2

    def test_unknown_account(self, db, services):
        with pytest.raises(NotFoundError):
            _apply(db, services, checkout_event("evt_1", "missing"))
        assert db.get(BillingEvent, "evt_1") is None


class TestIdempotencyAndOrdering:
    """Duplicate and out-of-order deliveries."""

    def test_redelivery_is_noop(self, db, services, make_account):
        account = make_account()
        event = checkout_event("evt_1", account.id)
        assert _apply(db, services, event).outcome == SyncOutcome.APPLIED
        # A later event moves the account on; replaying evt_1 must not undo it
        _apply(db, services, subscription_event("evt_2", SUBSCRIPTION_UPDATED, created=1_773_600_000))
        assert _apply(db, services, event).outcome == SyncOutcome.DUPLICATE
        assert get_account(db, account.id).plan == "team"

    def test_records_event(self, db, services, make_account):
        account = make_account()
        _apply(db, services, checkout_event("evt_1", account.id))
        recorded = db.get(BillingEvent, "evt_1")
        assert recorded.event_type == CHECKOUT_COMPLETED
        assert recorded.account_id == account.id
        assert recorded.outcome == "applied"

    def test_older_event_is_stale(self, db, services, make_account):
        account = make_account()
        _apply(db, services, checkout_event("evt_1", account.id, created=1_773_500_000))
        _apply(db, services, subscription_event("evt_3", SUBSCRIPTION_UPDATED, price_id="price_team", created=1_773_700_000))
        result = _apply(db, services, subscription_event(
            "evt_2", SUBSCRIPTION_UPDATED, price_id="price_enterprise", created=1_773_600_000,
        ))
        assert result.outcome == SyncOutcome.STALE
        assert result.notice is None
        stored = get_account(db, account.id)
        assert stored.plan == "team"
        assert _limits(stored) == TEAM_LIMITS.as_dict()

    def test_unhandled_event_ignored(self, db, services):
        result = _apply(db, services, stripe_event("evt_9", "invoice.paid", {"id": "in_1"}))
        assert result.outcome == SyncOutcome.IGNORED
        assert db.get(BillingEvent, "evt_9") is None


class TestSubscriptionChanges:
    """customer.subscription.updated / deleted."""

    def test_update_sets_status(self, db, services, make_account):
        account = make_account(stripe_customer_id="cus_1")
        _apply(db, services, subscription_event("evt_1", SUBSCRIPTION_UPDATED, status="past_due"))
        stored = get_account(db, account.id)
        assert stored.plan == "team"
        assert stored.subscription_status == "past_due"

    def test_update_unknown_customer(self, db, services):
        with pytest.raises(NotFoundError):
            _apply(db, services, subscription_event("evt_1", SUBSCRIPTION_UPDATED, customer="cus_nobody"))

    def test_update_ambiguous_customer(self, db, services, make_account):
        make_account(stripe_customer_id="cus_1")
        make_account(stripe_customer_id="cus_1")
        with pytest.raises(ConflictError):
            _apply(db, services, subscription_event("evt_1", SUBSCRIPTION_UPDATED))

    def test_delete_downgrades_to_free(self, db, services, make_account):
        account = make_account()
        _apply(db, services, checkout_event("evt_1", account.id, created=1_773_500_000))
        result = _apply(db, services, subscription_event("evt_2", SUBSCRIPTION_DELETED, created=1_773_600_000))
        assert result.outcome == SyncOutcome.APPLIED
        assert result.notice.status == "canceled"

        stored = get_account(db, account.id)
        assert stored.plan == "free"
        assert _limits(stored) == FREE_LIMITS.as_dict()
        assert stored.subscription_id is None
        assert stored.subscription_status == "canceled"

    def test_delete_of_replaced_subscription_ignored(self, db, services, make_account):
        account = make_account()
        _apply(db, services, checkout_event("evt_1", account.id, subscription="sub_new"))
        result = _apply(db, services, subscription_event(
            "evt_2", SUBSCRIPTION_DELETED, subscription="sub_old", created=1_773_600_000,
        ))
        assert result.outcome == SyncOutcome.IGNORED
        assert get_account(db, account.id).plan == "founder"

    def test_update_of_replaced_subscription_ignored(self, db, services, make_account):
        account = make_account()
        _apply(db, services, checkout_event(
            "evt_1", account.id, plan="team", price_id="price_team", subscription="sub_new",
        ))
        updated = _apply(db, services, subscription_event(
            "evt_2", SUBSCRIPTION_UPDATED, subscription="sub_old", price_id="price_founder",
            status="canceled", created=1_773_600_000,
        ))
        assert updated.outcome == SyncOutcome.IGNORED
        deleted = _apply(db, services, subscription_event(
            "evt_3", SUBSCRIPTION_DELETED, subscription="sub_old", created=1_773_700_000,
        ))
        assert deleted.outcome == SyncOutcome.IGNORED

        stored = get_account(db, account.id)
        assert stored.plan == "team"
        assert _limits(stored) == TEAM_LIMITS.as_dict()
        assert stored.subscription_id == "sub_new"
        assert stored.subscription_status == "active"

    def test_second_deletion_sends_nothing(self, db, services, make_account):
        account = make_account()
        _apply(db, services, checkout_event("evt_1", account.id))
        first = _apply(db, services, subscription_event("evt_2", SUBSCRIPTION_DELETED, created=1_773_600_000))
        second = _apply(db, services, subscription_event("evt_3", SUBSCRIPTION_DELETED, created=1_773_700_000))
        assert first.outcome == SyncOutcome.APPLIED
        assert second.outcome == SyncOutcome.IGNORED
        assert second.notice is None
        assert get_account(db, account.id).plan == "free"

    def test_delete_unknown_customer(self, db, services):
        with pytest.raises(NotFoundError):
            _apply(db, services, subscription_event("evt_1", SUBSCRIPTION_DELETED, customer="cus_nobody"))


class TestSignatureVerification:
    """construct_event checks the Stripe-Signature header."""

    def test_valid_signature(self):
        payload = encode(stripe_event("evt_1", "invoice.paid", {"id": "in_1"}))
        event = FakePayments().construct_event(payload, sign_payload(payload))
        assert event["id"] == "evt_1"

    def test_wrong_secret(self):
        payload = encode(stripe_event("evt_1", "invoice.paid", {"id": "in_1"}))
        with pytest.raises(SignatureInvalidError):
            FakePayments().construct_event(payload, sign_payload(payload, secret="whsec_other"))

    def test_tampered_payload(self):
        payload = encode(stripe_event("evt_1", "invoice.paid", {"id": "in_1"}))
        header = sign_payload(payload)
        with pytest.raises(SignatureInvalidError):
            FakePayments().construct_event(payload.replace(b"evt_1", b"evt_2"), header)

    def test_missing_signature(self):
        with pytest.raises(SignatureInvalidError):
            FakePayments().construct_event(b"{}", None)


class TestNotifications:
    """Subscription emails go out only for applied changes."""

    def test_sends_for_applied(self, db, services, make_account):
        account = make_account()
        result = _apply(db, services, checkout_event("evt_1", account.id))
        mailer = FakeMailer()
        assert asyncio.run(notify_subscription_change(mailer, result)) is True
        assert mailer.sent == [("subscription-update", account.email, "Founder", "active")]

    def test_failure_swallowed(self, db, services, make_account):
        account = make_account()
        result = _apply(db, services, checkout_event("evt_1", account.id))
        mailer = FakeMailer()
        mailer.fail = True
        assert asyncio.run(notify_subscription_change(mailer, result)) is False


class TestStartCheckout:
    """Checkout session creation."""

    def test_creates_session_with_metadata(self, services, make_account):
        account = make_account()
        payments = FakePayments()
        session_id, url = asyncio.run(start_checkout(
            payments, services.prices, account, "team", "https://app.example",
        ))
        assert session_id == "cs_test_1"
        assert url.startswith("https://")
        session = payments.sessions[0]
        assert session["price_id"] == "price_team"
        assert session["metadata"] == {"account_id": account.id, "plan": "team", "price_id": "price_team"}
        assert session["success_url"] == "https://app.example/#/dashboard?success=true"
        assert session["cancel_url"] == "https://app.example/#/pricing?canceled=true"

    @pytest.mark.parametrize("plan", ["free", "platinum", ""])
    def test_rejects_non_purchasable(self, services, make_account, plan):
        account = make_account()
        with pytest.raises(InvalidArgumentError):
            asyncio.run(start_checkout(FakePayments(), services.prices, account, plan, "https://app.example"))

    def test_missing_price_configuration(self, make_account):
        account = make_account()
        prices = PriceCatalog({PlanKey.FOUNDER: "price_founder"})
        with pytest.raises(ConfigurationError):
            asyncio.run(start_checkout(FakePayments(), prices, account, "team", "https://app.example"))
