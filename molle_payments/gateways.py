"""Per-gateway webhook conventions.

Every gateway signs the raw body with HMAC and posts JSON, but each one names its
header, secret and event fields differently. An adapter captures those differences
so the reconciliation code never branches on the gateway.
"""
import hashlib
import json
import os
from dataclasses import dataclass
from typing import Callable, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from molle_payments.models import RecordKind


class Outcome:
    CAPTURED = "CAPTURED"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


@dataclass(frozen=True)
class GatewayEvent:
    outcome: str
    event_type: str
    order_id: str
    payment_id: Optional[str] = None


# payload.payment.entity envelope (Razorpay, Cashfree general webhook)

class _Entity(BaseModel):
    order_id: str
    id: Optional[Union[int, str]] = None


class _EntityHolder(BaseModel):
    entity: _Entity


class _EntityPayload(BaseModel):
    payment: _EntityHolder


class EntityEnvelope(BaseModel):
    event: str
    payload: _EntityPayload


# data.order / data.payment envelope (Cashfree order webhooks)

class _Order(BaseModel):
    order_id: str


class _OrderPayment(BaseModel):
    payment_id: Optional[Union[int, str]] = None
    cf_payment_id: Optional[Union[int, str]] = None
    payment_status: Optional[str] = None


class _OrderData(BaseModel):
    order: _Order
    payment: _OrderPayment = Field(default_factory=_OrderPayment)


class OrderEnvelope(BaseModel):
    type: Optional[str] = None
    data: _OrderData


ENTITY_EVENTS = {
    "payment.captured": Outcome.CAPTURED,
    "payment.failed": Outcome.FAILED,
    "payment.expired": Outcome.EXPIRED,
    "payment.cancelled": Outcome.CANCELLED,
}

CASHFREE_PAYMENT_EVENTS = {
    "PAYMENT_SUCCESS_WEBHOOK": Outcome.CAPTURED,
    "PAYMENT_FAILED_WEBHOOK": Outcome.FAILED,
    "PAYMENT_USER_DROPPED_WEBHOOK": Outcome.CANCELLED,
}

CASHFREE_PAYMENT_STATUSES = {
    "SUCCESS": Outcome.CAPTURED,
    "FAILED": Outcome.FAILED,
    "EXPIRED": Outcome.EXPIRED,
    "CANCELLED": Outcome.CANCELLED,
    "USER_DROPPED": Outcome.CANCELLED,
}


def _build_event(outcome, event_type, order_id, payment_id):
    if outcome is None or not order_id:
        return None
    payment_id = str(payment_id) if payment_id not in (None, "") else None
    # A capture we cannot attach a payment id to is not usable.
    if outcome == Outcome.CAPTURED and payment_id is None:
        return None
    return GatewayEvent(outcome=outcome, event_type=event_type, order_id=order_id, payment_id=payment_id)


def entity_parser(events: dict) -> Callable[[dict], Optional[GatewayEvent]]:
    def parse(data: dict) -> Optional[GatewayEvent]:
        envelope = EntityEnvelope.model_validate(data)
        entity = envelope.payload.payment.entity
        return _build_event(events.get(envelope.event), envelope.event, entity.order_id, entity.id)
    return parse


def parse_cashfree_payment(data: dict) -> Optional[GatewayEvent]:
    envelope = OrderEnvelope.model_validate(data)
    payment = envelope.data.payment
    return _build_event(
        CASHFREE_PAYMENT_EVENTS.get(envelope.type),
        envelope.type,
        envelope.data.order.order_id,
        payment.cf_payment_id if payment.cf_payment_id is not None else payment.payment_id,
    )


def parse_cashfree_subscription(data: dict) -> Optional[GatewayEvent]:
    envelope = OrderEnvelope.model_validate(data)
    payment = envelope.data.payment
    return _build_event(
        CASHFREE_PAYMENT_STATUSES.get(payment.payment_status),
        payment.payment_status,
        envelope.data.order.order_id,
        payment.payment_id,
    )


@dataclass(frozen=True)
class GatewayAdapter:
    name: str
    signature_header: str
    secret_env: str
    parser: Callable[[dict], Optional[GatewayEvent]]
    record_kinds: tuple
    digestmod: Callable = hashlib.sha256

    @property
    def secret(self):
        # Read per call so a rotated secret applies without a restart.
        return os.getenv(self.secret_env)

    def parse(self, raw_body: bytes) -> Optional[GatewayEvent]:
        """Turn a verified body into a GatewayEvent, or None if it is not one we act on."""
        try:
            data = json.loads(raw_body)
        except (ValueError, RecursionError):
            return None
        if not isinstance(data, dict):
            return None
        try:
            return self.parser(data)
        except ValidationError:
            return None


CASHFREE = GatewayAdapter(
    name="cashfree",
    signature_header="x-webhook-signature",
    secret_env="CASHFREE_WEBHOOK_SECRET",
    parser=entity_parser(ENTITY_EVENTS),
    record_kinds=(RecordKind.SWIPE_PURCHASE, RecordKind.BOOKING_PAYMENT),
)

CASHFREE_PAYMENTS = GatewayAdapter(
    name="cashfree-payments",
    signature_header="x-webhook-signature",
    secret_env="CASHFREE_WEBHOOK_SECRET",
    parser=parse_cashfree_payment,
    record_kinds=(
        RecordKind.SWIPE_PURCHASE,
        RecordKind.BOOKING_PAYMENT,
        RecordKind.SUBSCRIPTION_PAYMENT,
    ),
)

CASHFREE_SUBSCRIPTIONS = GatewayAdapter(
    name="cashfree-subscriptions",
    signature_header="x-webhook-signature",
    secret_env="CASHFREE_WEBHOOK_SECRET",
    parser=parse_cashfree_subscription,
    record_kinds=(RecordKind.SWIPE_PURCHASE, RecordKind.SUBSCRIPTION_PAYMENT),
)

RAZORPAY = GatewayAdapter(
    name="razorpay",
    signature_header="x-razorpay-signature",
    secret_env="RAZORPAY_WEBHOOK_SECRET",
    parser=entity_parser({
        "payment.captured": Outcome.CAPTURED,
        "payment.failed": Outcome.FAILED,
    }),
    record_kinds=(RecordKind.SWIPE_PURCHASE, RecordKind.BOOKING_PAYMENT),
)
