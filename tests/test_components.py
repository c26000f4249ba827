import json
import logging
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import sessionmaker

from molle_payments.classifier import ClassifiedEvent, UnrecognizedEvent, classify
from molle_payments.database import Base, create_db_engine
from molle_payments.entitlements import add_months, subscription_end_date
from molle_payments.gateways import (
    CASHFREE,
    CASHFREE_SUBSCRIPTIONS,
    RAZORPAY,
    GatewayEvent,
    Outcome,
)
from molle_payments.models import (
    Booking,
    Payment,
    RecordKind,
    SwipePurchase,
    User,
    UserPreference,
    utcnow,
)
from molle_payments.reconciler import Reconciler, booking_confirm_attempts
from molle_payments.repository import PaymentRepository
from molle_payments.signature import sign, verify

SQLALCHEMY_DATABASE_URL = "sqlite:///./test_components.db"
engine = create_db_engine(SQLALCHEMY_DATABASE_URL)
TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


def test_verify_accepts_signature_over_exact_bytes():
    body = b'{"event": "payment.captured",  "payload": {}}'
    signature = sign(body, "secret")

    assert verify(body, signature, "secret")
    assert verify(body, signature.upper(), "secret")
    # Re-serialising changes whitespace and breaks the signature.
    assert not verify(json.dumps(json.loads(body)).encode(), signature, "secret")


@pytest.mark.parametrize("signature, secret", [
    (None, "secret"),
    ("", "secret"),
    ("deadbeef", "secret"),
    ("deadbeef", None),
    ("ünïcode", "secret"),
])
def test_verify_returns_false_instead_of_raising(signature, secret):
    assert verify(b"{}", signature, secret) is False


def test_cashfree_adapter_parses_entity_envelope():
    body = json.dumps({"event": "payment.expired",
                       "payload": {"payment": {"entity": {"order_id": "ord_1"}}}})

    assert CASHFREE.parse(body.encode()) == GatewayEvent(
        outcome=Outcome.EXPIRED, event_type="payment.expired", order_id="ord_1")


def test_razorpay_adapter_knows_only_captured_and_failed():
    body = json.dumps({"event": "payment.cancelled",
                       "payload": {"payment": {"entity": {"order_id": "ord_1"}}}})

    assert RAZORPAY.parse(body.encode()) is None


def test_subscription_adapter_requires_payment_id_on_success():
    body = json.dumps({"data": {"order": {"order_id": "sub_1"},
                                "payment": {"payment_status": "SUCCESS"}}})

    assert CASHFREE_SUBSCRIPTIONS.parse(body.encode()) is None


def test_subscription_adapter_tolerates_missing_payment_block():
    body = json.dumps({"data": {"order": {"order_id": "sub_1"}}})

    assert CASHFREE_SUBSCRIPTIONS.parse(body.encode()) is None


def test_adapter_rejects_non_utf8_body():
    assert CASHFREE.parse(b"\xff\xfe\x00") is None


def test_add_months_clamps_to_month_end():
    assert add_months(datetime(2026, 1, 31), 1) == datetime(2026, 2, 28)
    assert add_months(datetime(2026, 11, 15), 3) == datetime(2027, 2, 15)


@pytest.mark.parametrize("duration, expected", [
    ("MONTHLY", datetime(2026, 11, 16)),
    ("QUARTERLY", datetime(2027, 1, 16)),
    ("YEARLY", datetime(2027, 10, 16)),
    ("LIFETIME", datetime(2126, 10, 16)),
    ("WEEKLY", datetime(2026, 11, 16)),
])
def test_subscription_end_date(duration, expected):
    assert subscription_end_date(duration, datetime(2026, 10, 16)) == expected


def test_classify_unrecognized_when_nothing_parsed(mocker):
    repository = mocker.Mock()

    result = classify(None, repository)

    assert isinstance(result, UnrecognizedEvent)
    repository.find_any.assert_not_called()


def test_classify_uses_first_matching_kind():
    db = TestingSessionLocal()
    db.add(SwipePurchase(id="sp_1", user_id="u1", order_id="ord_1", swipe_count=2,
                         amount=10, status="COMPLETED"))
    db.commit()

    event = GatewayEvent(outcome=Outcome.CAPTURED, event_type="payment.captured",
                         order_id="ord_1", payment_id="pay_1")
    result = classify(event, PaymentRepository(db))
    db.close()

    assert result == ClassifiedEvent(
        outcome=Outcome.CAPTURED,
        kind=RecordKind.SWIPE_PURCHASE,
        order_id="ord_1",
        payment_id="pay_1",
        current_status="COMPLETED",
    )


def test_update_if_status_only_touches_pending_rows():
    db = TestingSessionLocal()
    db.add(SwipePurchase(id="sp_1", user_id="u1", order_id="ord_1", swipe_count=2,
                         amount=10, status="PENDING"))
    db.commit()
    repository = PaymentRepository(db)

    first = repository.update_if_status(RecordKind.SWIPE_PURCHASE, "ord_1", "PENDING", {"status": "FAILED"})
    second = repository.update_if_status(RecordKind.SWIPE_PURCHASE, "ord_1", "PENDING", {"status": "COMPLETED"})
    repository.commit()

    assert (first, second) == (1, 0)
    assert db.get(SwipePurchase, "sp_1").status == "FAILED"
    db.close()


def test_racing_deliveries_grant_swipes_once():
    db = TestingSessionLocal()
    db.add_all([
        User(id="u1"),
        UserPreference(user_id="u1", daily_swipe_limit=3),
        SwipePurchase(id="sp_1", user_id="u1", order_id="ord_1", swipe_count=5,
                      amount=10, status="PENDING"),
    ])
    db.commit()
    db.close()

    # Both deliveries were classified while the record was still PENDING.
    event = ClassifiedEvent(outcome=Outcome.CAPTURED, kind=RecordKind.SWIPE_PURCHASE,
                            order_id="ord_1", payment_id="pay_1", current_status="PENDING")
    first_db, second_db = TestingSessionLocal(), TestingSessionLocal()
    first = Reconciler(PaymentRepository(first_db)).execute(event)
    second = Reconciler(PaymentRepository(second_db)).execute(event)
    first_db.close()
    second_db.close()

    assert first.applied is True
    assert second.applied is False
    db = TestingSessionLocal()
    assert db.query(UserPreference).filter_by(user_id="u1").one().daily_swipe_limit == 8
    db.close()


def test_adapter_ignores_deeply_nested_body():
    assert CASHFREE.parse(b"[" * 100000 + b"]" * 100000) is None


def test_engine_rolls_back_to_savepoint():
    db = TestingSessionLocal()
    db.add(Booking(id="bk_kept", status="PENDING"))
    db.flush()
    try:
        with db.begin_nested():
            db.add(Booking(id="bk_dropped", status="PENDING"))
            db.flush()
            raise RuntimeError("abandon inner write")
    except RuntimeError:
        pass
    db.commit()

    assert db.get(Booking, "bk_kept") is not None
    assert db.query(Booking).filter_by(id="bk_dropped").first() is None
    db.close()


def test_find_and_find_any():
    db = TestingSessionLocal()
    db.add_all([
        Booking(id="bk_1", status="PENDING"),
        Payment(id="p_1", booking_id="bk_1", order_id="ord_b", amount=100, status="FAILED"),
    ])
    db.commit()
    repository = PaymentRepository(db)

    assert repository.find(RecordKind.SWIPE_PURCHASE, "ord_b") is None
    assert repository.find(RecordKind.BOOKING_PAYMENT, "ord_b").id == "p_1"
    kind, record = repository.find_any("ord_b")
    assert (kind, record.id) == (RecordKind.BOOKING_PAYMENT, "p_1")
    assert repository.find_any("ord_b", kinds=(RecordKind.SUBSCRIPTION_PAYMENT,)) == (None, None)
    assert repository.find_booking_payment("bk_1").order_id == "ord_b"
    db.close()


def test_utcnow_is_naive_utc():
    now = utcnow()

    assert now.tzinfo is None
    assert abs(now - datetime.now(timezone.utc).replace(tzinfo=None)) < timedelta(seconds=5)


def test_update_if_status_stamps_updated_at():
    db = TestingSessionLocal()
    db.add(SwipePurchase(id="sp_1", user_id="u1", order_id="ord_1", swipe_count=2, amount=10,
                         status="PENDING", updated_at=datetime(2020, 1, 1)))
    db.commit()

    PaymentRepository(db).update_if_status(RecordKind.SWIPE_PURCHASE, "ord_1", "PENDING", {"status": "FAILED"})
    db.commit()

    assert db.get(SwipePurchase, "sp_1").updated_at > datetime(2025, 1, 1)
    db.close()


@pytest.mark.parametrize("raw, expected", [
    (None, 3),
    ("5", 5),
    ("0", 1),
])
def test_booking_confirm_attempts_from_env(monkeypatch, raw, expected):
    if raw is None:
        monkeypatch.delenv("BOOKING_CONFIRM_ATTEMPTS", raising=False)
    else:
        monkeypatch.setenv("BOOKING_CONFIRM_ATTEMPTS", raw)

    assert booking_confirm_attempts() == expected


def test_booking_confirm_attempts_falls_back_on_garbage(monkeypatch, caplog):
    monkeypatch.setenv("BOOKING_CONFIRM_ATTEMPTS", "three")

    with caplog.at_level(logging.WARNING, logger="molle_payments.reconciler"):
        assert booking_confirm_attempts() == 3

    assert "not an integer" in caplog.text
