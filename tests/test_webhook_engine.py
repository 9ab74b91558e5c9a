from datetime import timedelta
from unittest.mock import Mock

import pytest

from payrecon.billing.rate_limits import WebhookRateLimiter
from payrecon.errors import PayloadError, SecurityRejection
from payrecon.extensions import db
from payrecon.models import (
    AdminAlert,
    CheckoutStatus,
    PaymentNotification,
    PaymentStatus,
    Transaction,
    TransactionStatus,
    WebhookEvent,
    WebhookEventStatus,
)
from payrecon.utils import add_months, utcnow
from payrecon.webhooks.engine import AcknowledgementDispatcher, WebhookIngestionEngine, _start_daemon
from payrecon.webhooks.payload import GrowWebhookPayload
from tests.helpers import encode, fake, grow_response, run_inline, sign

pytestmark = [pytest.mark.payment, pytest.mark.db]


@pytest.fixture()
def paying_user(make_user, pro_plan, make_checkout_session):
    user = make_user()
    session = make_checkout_session(user, pro_plan, amount=99, process_id="P-100")
    return user, session


def _payload(body):
    return GrowWebhookPayload.from_dict(body)


def _ack_ok(http_session):
    http_session.post.return_value = grow_response({"status": "1", "data": {}})


# ---------- activation ----------

def test_paid_webhook_activates_subscription(engine, paying_user, pro_plan, webhook_body, http_session):
    user, session = paying_user
    _ack_ok(http_session)
    body = webhook_body(user.id, "T-1", "P-100", custom_fields={
        "cField1": user.id, "cField2": pro_plan.id, "cField3": "monthly", "cField4": "1", "cField5": "0",
    })

    result = engine.handle(_payload(body))

    assert result.subscription_activated is True
    db.session.refresh(user)
    assert user.payment_status == PaymentStatus.ACTIVE
    assert user.plan_id == pro_plan.id
    assert user.billing_period == "monthly"
    assert user.processor_subscription_id == "T-1"
    assert user.last_payment_method == "credit_card"
    assert user.last_card_suffix == "4242"
    assert user.pending_plan_id is None
    assert user.subscription_end.date() == add_months(user.subscription_start, 1).date()

    db.session.refresh(session)
    assert session.status == CheckoutStatus.COMPLETED
    assert session.completed_at is not None

    transaction = Transaction.query.filter_by(transaction_id="T-1").one()
    assert transaction.status == TransactionStatus.COMPLETED
    assert transaction.process_id == "P-100"

    event = WebhookEvent.query.filter_by(idempotency_key="T-1").one()
    assert event.status == WebhookEventStatus.COMPLETED
    assert event.result == {"subscriptionActivated": True}

    assert PaymentNotification.query.filter_by(user_id=user.id, notification_type="payment_success").count() == 1

    # Acknowledgement went out after the commit
    ack_call = http_session.post.call_args
    assert ack_call.args[0].endswith("/approveTransaction")
    assert ack_call.kwargs["data"]["processId"] == "P-100"
    assert ack_call.kwargs["data"]["sum"] == "99"


def test_yearly_activation_with_credit_days(engine, make_user, pro_plan, make_checkout_session, webhook_body, http_session):
    """Upgrade from a paid plan carries the remaining days into the new term"""
    user = make_user()
    make_checkout_session(user, pro_plan, amount=990, billing_period="yearly", process_id="P-Y", credit_days=10)
    _ack_ok(http_session)
    body = webhook_body(user.id, "T-Y", "P-Y", amount="990", custom_fields={
        "cField1": user.id, "cField2": pro_plan.id, "cField3": "yearly", "cField4": "1", "cField5": "10",
    })

    result = engine.handle(_payload(body))

    assert result.subscription_activated
    db.session.refresh(user)
    expected_end = add_months(user.subscription_start, 12) + timedelta(days=10)
    assert user.subscription_end == expected_end
    assert user.billing_period == "yearly"


def test_activation_falls_back_to_session_fields(engine, paying_user, pro_plan, webhook_body, http_session):
    user, _ = paying_user
    _ack_ok(http_session)
    body = webhook_body(user.id, "T-2", "P-100")  # only cField1

    engine.handle(_payload(body))

    db.session.refresh(user)
    assert user.plan_id == pro_plan.id
    assert user.billing_period == "monthly"


@pytest.mark.parametrize(
    "payment_type,method",
    [("2", "credit_card"), ("6", "bit"), ("13", "apple_pay"), ("14", "google_pay"), ("15", "bank_transfer"), ("99", "credit_card")],
)
def test_payment_method_mapping(engine, paying_user, webhook_body, http_session, payment_type, method):
    user, _ = paying_user
    _ack_ok(http_session)

    engine.handle(_payload(webhook_body(user.id, "T-PM", "P-100", paymentType=payment_type)))

    db.session.refresh(user)
    assert user.last_payment_method == method


def test_description_is_escaped(engine, paying_user, webhook_body, http_session):
    user, _ = paying_user
    _ack_ok(http_session)

    engine.handle(_payload(webhook_body(user.id, "T-XSS", "P-100", description="<script>alert(1)</script>")))

    stored = Transaction.query.filter_by(transaction_id="T-XSS").one().description
    assert "<script>" not in stored
    assert "&lt;script&gt;" in stored


# ---------- idempotency ----------

def test_duplicate_delivery_is_processed_once(engine, paying_user, webhook_body, http_session):
    user, _ = paying_user
    _ack_ok(http_session)
    body = webhook_body(user.id, "T-DUP", "P-100")

    first = engine.handle(_payload(body))
    second = engine.handle(_payload(body))

    assert first.subscription_activated is True
    assert second.subscription_activated is False
    assert second.processed is False
    assert second.reason == "Already processed"
    assert Transaction.query.filter_by(transaction_id="T-DUP").count() == 1
    assert WebhookEvent.query.filter_by(idempotency_key="T-DUP").count() == 1


def test_in_flight_delivery_is_duplicate(engine, paying_user, webhook_body):
    """A row left in processing by another worker blocks the second delivery"""
    user, _ = paying_user
    db.session.add(WebhookEvent(idempotency_key="T-RACE", status=WebhookEventStatus.PROCESSING))
    db.session.commit()

    result = engine.handle(_payload(webhook_body(user.id, "T-RACE", "P-100")))

    assert result.reason == "Already processed"
    db.session.refresh(user)
    assert user.payment_status == PaymentStatus.NONE
    assert Transaction.query.count() == 0


def test_concurrent_insert_loses_on_unique_key(engine, paying_user, webhook_body, monkeypatch):
    """The insert itself fails when a racing delivery committed between lookup and insert"""
    user, _ = paying_user
    db.session.add(WebhookEvent(idempotency_key="T-CONC", status=WebhookEventStatus.PROCESSING))
    db.session.commit()
    # Lookup ran before the competing commit became visible
    monkeypatch.setattr("payrecon.webhooks.idempotency._find_event", lambda key: None)

    result = engine.handle(_payload(webhook_body(user.id, "T-CONC", "P-100")))

    assert result.reason == "Already processed"
    monkeypatch.undo()
    assert WebhookEvent.query.filter_by(idempotency_key="T-CONC").count() == 1
    assert Transaction.query.count() == 0


def test_failed_rejection_is_permanent_duplicate(engine, make_user, pro_plan, make_checkout_session, webhook_body):
    user = make_user()
    make_checkout_session(user, pro_plan, amount=99, process_id="P-MM")
    body = webhook_body(user.id, "T-MM", "P-MM", amount="1")

    first = engine.handle(_payload(body))
    second = engine.handle(_payload(body))

    assert first.rejected and first.reason == "Amount mismatch"
    assert second.reason == "Already processed"


def test_uncaught_error_marks_event_retryable_and_is_reclaimed(engine, paying_user, webhook_body, http_session, monkeypatch):
    user, _ = paying_user
    body = webhook_body(user.id, "T-CRASH", "P-100")
    boom = Mock(side_effect=RuntimeError("database went away"))
    monkeypatch.setattr(engine.state_machine, "activate", boom)

    with pytest.raises(RuntimeError):
        engine.handle(_payload(body))

    event = WebhookEvent.query.filter_by(idempotency_key="T-CRASH").one()
    assert event.status == WebhookEventStatus.FAILED
    assert event.retryable is True
    assert event.result["retryable"] is True
    db.session.refresh(user)
    assert user.payment_status == PaymentStatus.NONE

    # Redelivery after the fault is fixed
    monkeypatch.undo()
    _ack_ok(http_session)
    result = engine.handle(_payload(body))

    assert result.subscription_activated is True
    db.session.refresh(event)
    assert event.status == WebhookEventStatus.COMPLETED
    assert event.retryable is False


def test_webhook_without_transaction_id_skips_ledger(engine, paying_user, webhook_body, http_session):
    user, _ = paying_user
    _ack_ok(http_session)
    body = webhook_body(user.id, process_id="P-100", status_code="1")
    body["data"].pop("transactionId")

    result = engine.handle(_payload(body))

    assert result.action == "awaiting_final_status"
    assert WebhookEvent.query.count() == 0


# ---------- validation ----------

def test_missing_user_identification_alerts(engine, webhook_body):
    body = webhook_body(None, "T-ANON")

    result = engine.handle(_payload(body))

    assert result.requires_manual_review is True
    assert result.subscription_activated is False
    alert = AdminAlert.query.filter_by(alert_type="missing_user_identification").one()
    assert alert.data["transaction_id"] == "T-ANON"
    assert WebhookEvent.query.count() == 0


def test_invalid_user_id_rejected(engine, webhook_body):
    result = engine.handle(_payload(webhook_body("1; DROP TABLE users", "T-SQL")))

    assert result.rejected is True
    assert result.reason == "Invalid user ID format"
    assert WebhookEvent.query.count() == 0


def test_expired_session_rejected(engine, make_user, pro_plan, make_checkout_session, webhook_body):
    user = make_user()
    make_checkout_session(user, pro_plan, process_id="P-OLD", expires_in=timedelta(minutes=-5))

    result = engine.handle(_payload(webhook_body(user.id, "T-OLD", "P-OLD")))

    assert result.rejected is True
    assert result.reason == "Checkout session expired"
    event = WebhookEvent.query.filter_by(idempotency_key="T-OLD").one()
    assert event.status == WebhookEventStatus.FAILED
    assert event.retryable is False
    db.session.refresh(user)
    assert user.payment_status == PaymentStatus.NONE


def test_amount_mismatch_rejected_with_alert(engine, make_user, pro_plan, make_checkout_session, webhook_body):
    user = make_user()
    make_checkout_session(user, pro_plan, amount=99, process_id="P-LOW")

    result = engine.handle(_payload(webhook_body(user.id, "T-LOW", "P-LOW", amount="1")))

    assert result.rejected and result.reason == "Amount mismatch"
    alert = AdminAlert.query.filter_by(alert_type="amount_mismatch").one()
    assert alert.severity == "high"
    assert alert.data["expected"] == "99"
    assert alert.data["received"] == "1"
    assert Transaction.query.count() == 0


def test_decimal_sum_matches_whole_amount(engine, paying_user, webhook_body, http_session):
    user, _ = paying_user
    _ack_ok(http_session)

    result = engine.handle(_payload(webhook_body(user.id, "T-DEC", "P-100", amount="99.00")))

    assert result.subscription_activated is True


def test_missing_session_still_processed(engine, make_user, webhook_body, http_session):
    user = make_user()
    _ack_ok(http_session)

    result = engine.handle(_payload(webhook_body(user.id, "T-NOSESSION", "P-UNKNOWN")))

    assert result.subscription_activated is True


def test_unknown_user_marks_event_failed(engine, webhook_body):
    result = engine.handle(_payload(webhook_body(fake.uuid4(), "T-GHOST", "P-NONE")))

    assert result.processed is False
    assert result.reason == "User not found"
    event = WebhookEvent.query.filter_by(idempotency_key="T-GHOST").one()
    assert event.status == WebhookEventStatus.FAILED


# ---------- status routing ----------

def test_pending_status_awaits_final(engine, paying_user, webhook_body):
    user, _ = paying_user

    result = engine.handle(_payload(webhook_body(user.id, "T-PEND", "P-100", status_code="1")))

    assert result.action == "awaiting_final_status"
    assert WebhookEvent.query.filter_by(idempotency_key="T-PEND").one().status == WebhookEventStatus.COMPLETED
    db.session.refresh(user)
    assert user.payment_status == PaymentStatus.NONE


@pytest.mark.parametrize("status_code", ["3", "4"])
def test_failed_or_canceled_enters_grace_period(engine, paying_user, webhook_body, status_code):
    user, _ = paying_user

    result = engine.handle(_payload(webhook_body(user.id, f"T-F{status_code}", "P-100", status_code=status_code, status="Card declined")))

    assert result.notification_sent is True
    db.session.refresh(user)
    assert user.payment_status == PaymentStatus.GRACE_PERIOD
    assert user.grace_period_end - user.grace_period_start == timedelta(days=7)
    assert user.payment_failure_reason == "Card declined"
    notification = PaymentNotification.query.filter_by(user_id=user.id).one()
    assert notification.notification_type == "payment_failed"


def test_unknown_status_code_requires_review(engine, paying_user, webhook_body):
    user, _ = paying_user

    result = engine.handle(_payload(webhook_body(user.id, "T-WEIRD", "P-100", status_code="9")))

    assert result.requires_manual_review is True
    assert AdminAlert.query.filter_by(alert_type="unknown_status_code").count() == 1
    assert WebhookEvent.query.filter_by(idempotency_key="T-WEIRD").one().status == WebhookEventStatus.COMPLETED


def test_double_payment_held_for_review(engine, paying_user, pro_plan, make_checkout_session, webhook_body, http_session):
    user, _ = paying_user
    _ack_ok(http_session)
    engine.handle(_payload(webhook_body(user.id, "T-FIRST", "P-100")))
    make_checkout_session(user, pro_plan, process_id="P-200")
    calls_before = http_session.post.call_count

    result = engine.handle(_payload(webhook_body(user.id, "T-SECOND", "P-200")))

    assert result.requires_manual_review is True
    assert result.subscription_activated is False
    held = Transaction.query.filter_by(transaction_id="T-SECOND").one()
    assert held.status == TransactionStatus.PENDING_REVIEW
    alert = AdminAlert.query.filter_by(alert_type="potential_double_payment").one()
    assert alert.severity == "high"
    event = WebhookEvent.query.filter_by(idempotency_key="T-SECOND").one()
    assert event.result == {"requiresManualReview": True}
    # No acknowledgement for a held payment
    assert http_session.post.call_count == calls_before


@pytest.mark.parametrize(
    "session_status", [CheckoutStatus.SUPERSEDED, CheckoutStatus.ABANDONED, CheckoutStatus.COMPLETED]
)
def test_payment_for_non_pending_session_is_rejected(
    engine, make_user, pro_plan, make_checkout_session, webhook_body, http_session, session_status
):
    """A closed checkout keeps its terminal status and never activates"""
    user = make_user()
    old = make_checkout_session(user, pro_plan, process_id="P-OLD", status=session_status)
    current = make_checkout_session(user, pro_plan, process_id="P-NEW")
    _ack_ok(http_session)

    result = engine.handle(_payload(webhook_body(user.id, "T-OLD", "P-OLD")))

    assert result.subscription_activated is False
    assert result.rejected is True
    assert result.requires_manual_review is True
    db.session.refresh(old)
    db.session.refresh(current)
    db.session.refresh(user)
    assert old.status == session_status
    assert current.status == CheckoutStatus.PENDING
    assert user.payment_status != PaymentStatus.ACTIVE
    assert Transaction.query.filter_by(transaction_id="T-OLD").count() == 0
    alert = AdminAlert.query.filter_by(alert_type="stale_checkout_session").one()
    assert alert.severity == "high"
    assert alert.data["session_status"] == session_status
    event = WebhookEvent.query.filter_by(idempotency_key="T-OLD").one()
    assert event.status == WebhookEventStatus.FAILED
    assert http_session.post.call_count == 0


def test_old_payment_outside_window_is_not_double(engine, paying_user, webhook_body, http_session):
    user, _ = paying_user
    db.session.add(Transaction(
        user_id=user.id, transaction_id="T-LAST-MONTH", amount=99,
        status=TransactionStatus.COMPLETED, created_at=utcnow() - timedelta(days=30),
    ))
    db.session.commit()
    _ack_ok(http_session)

    result = engine.handle(_payload(webhook_body(user.id, "T-NEW", "P-100")))

    assert result.subscription_activated is True


# ---------- acknowledgement ----------

def test_acknowledgement_failure_alerts_but_keeps_activation(engine, paying_user, webhook_body, http_session):
    user, _ = paying_user
    http_session.post.return_value = grow_response({"status": "0", "err": "Process not found"})

    result = engine.handle(_payload(webhook_body(user.id, "T-NOACK", "P-100")))

    assert result.subscription_activated is True
    db.session.refresh(user)
    assert user.payment_status == PaymentStatus.ACTIVE
    alert = AdminAlert.query.filter_by(alert_type="approve_transaction_failed").one()
    assert alert.severity == "high"
    assert alert.data["process_id"] == "P-100"


def test_dispatcher_hands_work_to_runner(app, gateway):
    runner_calls = []
    dispatcher = AcknowledgementDispatcher(app, gateway)
    assert dispatcher.runner is _start_daemon

    def fake_start(target, *args):
        runner_calls.append(args)

    dispatcher.runner = fake_start
    dispatcher.dispatch("u", "t", "p", "tok", "99")

    assert runner_calls == [("u", "t", "p", "tok", "99")]


# ---------- ingest / authentication ----------

@pytest.fixture()
def production_engine(app, gateway):
    config = dict(app.config)
    config.update(ENVIRONMENT="production", GROW_WEBHOOK_SECRET="whsec")
    app_double = Mock(config=config)
    return WebhookIngestionEngine(
        app=app_double,
        gateway=gateway,
        dispatcher=AcknowledgementDispatcher(app, gateway, runner=run_inline),
    )


def test_production_accepts_valid_signature(production_engine, webhook_body):
    raw = encode(webhook_body(fake.uuid4(), "T-SIG"))

    payload = production_engine.ingest(raw, sign(raw, "whsec"))

    assert payload.data.transaction_id == "T-SIG"


@pytest.mark.parametrize("signature", [None, "", "deadbeef"])
def test_production_rejects_bad_signature(production_engine, webhook_body, signature):
    raw = encode(webhook_body(fake.uuid4(), "T-SIG"))

    with pytest.raises(SecurityRejection):
        production_engine.ingest(raw, signature)

    assert WebhookEvent.query.count() == 0


def test_production_rejects_when_secret_missing(production_engine, webhook_body):
    production_engine.config["GROW_WEBHOOK_SECRET"] = None
    raw = encode(webhook_body(fake.uuid4(), "T-SIG"))

    with pytest.raises(SecurityRejection):
        production_engine.ingest(raw, "anything")


def test_signature_over_modified_body_fails(production_engine, webhook_body):
    raw = encode(webhook_body(fake.uuid4(), "T-SIG", amount="99"))
    signature = sign(raw, "whsec")
    tampered = raw.replace(b'"99"', b'"1"')

    with pytest.raises(SecurityRejection):
        production_engine.ingest(tampered, signature)


def test_development_without_secret_accepts_unsigned(engine, webhook_body):
    raw = encode(webhook_body(fake.uuid4(), "T-DEV"))

    assert engine.ingest(raw, None).data.transaction_id == "T-DEV"


def test_development_with_secret_requires_signature(engine, webhook_body, monkeypatch):
    monkeypatch.setitem(engine.config, "GROW_WEBHOOK_SECRET", "whsec")
    raw = encode(webhook_body(fake.uuid4(), "T-DEV"))

    with pytest.raises(SecurityRejection):
        engine.ingest(raw, None)
    assert engine.ingest(raw, sign(raw, "whsec")).data.transaction_id == "T-DEV"


@pytest.mark.parametrize("raw", [b"not json", b"[]", b'{"status": "1"}', b'{"data": {"customFields": "x"}}'])
def test_malformed_payload(engine, raw):
    with pytest.raises(PayloadError):
        engine.ingest(raw, None)


def test_rate_limited_before_authentication(engine, webhook_body):
    engine.rate_limiter = WebhookRateLimiter(max_per_minute=2)
    raw = encode(webhook_body(None, "T-RL"))

    engine.rate_limiter.allow()
    engine.rate_limiter.allow()
    result = engine.process(raw, "garbage")

    assert result.rate_limited is True
    assert AdminAlert.query.count() == 0
