from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session

from molle_payments.models import (
    ALL_KINDS,
    Booking,
    Package,
    PaymentStatus,
    RecordKind,
    User,
)
from molle_payments.repository import PaymentRepository


class _View(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class BookingSummary(_View):
    id: str
    status: str
    booking_number: Optional[str] = None
    event_title: Optional[str] = None
    ticket_count: int


class PackageSummary(_View):
    id: str
    name: str
    duration: str
    daily_swipe_limit: int
    price: float


class UserSummary(_View):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    active_package_id: Optional[str] = None
    subscription_end_date: Optional[datetime] = None
    daily_swipe_remaining: Optional[int] = None


class OrderStatusView(_View):
    id: str
    kind: str
    status: str
    order_id: str
    payment_id: Optional[str] = None
    amount: float
    currency: str
    booking: Optional[BookingSummary] = None
    package: Optional[PackageSummary] = None
    user: Optional[UserSummary] = None
    swipe_count: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class BookingStatusView(_View):
    id: str
    status: str
    booking_number: Optional[str] = None
    total_amount: Optional[float] = None
    ticket_count: int
    payment_status: str
    order_id: Optional[str] = None
    event_title: Optional[str] = None
    created_at: Optional[datetime] = None


class OrderStatusService:
    """Read-only view of where an order stands, for clients polling after checkout."""

    def __init__(self, session: Session):
        self.session = session
        self.repository = PaymentRepository(session)

    def get_status(self, order_id: str, kinds=ALL_KINDS) -> Optional[OrderStatusView]:
        kind, record = self.repository.find_any(order_id, kinds)
        if record is None:
            return None

        view = OrderStatusView(
            id=record.id,
            kind=kind,
            status=record.status,
            order_id=record.order_id,
            payment_id=record.payment_id,
            amount=record.amount,
            currency=record.currency,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
        if kind == RecordKind.BOOKING_PAYMENT:
            booking = self.session.get(Booking, record.booking_id)
            if booking is not None:
                view.booking = BookingSummary.model_validate(booking)
        elif kind == RecordKind.SUBSCRIPTION_PAYMENT:
            package = self.session.get(Package, record.package_id)
            user = self.session.get(User, record.user_id)
            if package is not None:
                view.package = PackageSummary.model_validate(package)
            if user is not None:
                view.user = UserSummary.model_validate(user)
        else:
            view.swipe_count = record.swipe_count
        return view

    def get_booking_status(self, booking_id: str) -> Optional[BookingStatusView]:
        booking = self.session.get(Booking, booking_id)
        if booking is None:
            return None
        payment = self.repository.find_booking_payment(booking_id)
        return BookingStatusView(
            id=booking.id,
            status=booking.status,
            booking_number=booking.booking_number,
            total_amount=booking.total_amount,
            ticket_count=booking.ticket_count,
            payment_status=payment.status if payment else PaymentStatus.PENDING,
            order_id=payment.order_id if payment else None,
            event_title=booking.event_title,
            created_at=payment.created_at if payment else booking.created_at,
        )
