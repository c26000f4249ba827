from datetime import datetime, timezone

from sqlalchemy import Column, String, Integer, Numeric, DateTime, ForeignKey
from molle_payments.database import Base


class PaymentStatus:
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class BookingStatus:
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class PackageDuration:
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    YEARLY = "YEARLY"
    LIFETIME = "LIFETIME"


DEFAULT_DAILY_SWIPE_LIMIT = 3
FREE_SWIPES_PER_PACKAGE = 3


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the form stored in DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    name = Column(String)
    email = Column(String, unique=True, index=True)
    active_package_id = Column(String, ForeignKey("packages.id"), nullable=True)
    subscription_end_date = Column(DateTime, nullable=True)
    daily_swipe_remaining = Column(Integer, default=0)
    free_swipes_remaining = Column(Integer, default=FREE_SWIPES_PER_PACKAGE)
    last_swipe_reset = Column(DateTime, nullable=True)


class UserPreference(Base):
    __tablename__ = "user_preferences"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, ForeignKey("users.id"), unique=True, index=True, nullable=False)
    daily_swipe_limit = Column(Integer, nullable=False, default=DEFAULT_DAILY_SWIPE_LIMIT)


class Package(Base):
    __tablename__ = "packages"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    duration = Column(String, nullable=False, default=PackageDuration.MONTHLY)
    daily_swipe_limit = Column(Integer, nullable=False, default=DEFAULT_DAILY_SWIPE_LIMIT)
    price = Column(Numeric(10, 2), nullable=False)


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=True, index=True)
    booking_number = Column(String, unique=True, nullable=True)
    event_title = Column(String, nullable=True)
    ticket_count = Column(Integer, nullable=False, default=1)
    total_amount = Column(Numeric(10, 2), nullable=True)
    status = Column(String, nullable=False, default=BookingStatus.PENDING)  # PENDING | CONFIRMED | CANCELLED | COMPLETED
    created_at = Column(DateTime, default=utcnow, nullable=False)


class Payment(Base):
    """Payment attempt for a ticket booking."""
    __tablename__ = "payments"

    id = Column(String, primary_key=True)
    booking_id = Column(String, ForeignKey("bookings.id"), unique=True, nullable=False)
    order_id = Column(String, unique=True, index=True, nullable=False)   # gateway order id
    payment_id = Column(String, nullable=True)                           # set on capture
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String, nullable=False, default="INR")
    status = Column(String, nullable=False, default=PaymentStatus.PENDING)  # PENDING | COMPLETED | FAILED
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)


class SubscriptionPayment(Base):
    __tablename__ = "subscription_payments"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    package_id = Column(String, ForeignKey("packages.id"), nullable=False)
    order_id = Column(String, unique=True, index=True, nullable=False)
    payment_id = Column(String, nullable=True)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String, nullable=False, default="INR")
    status = Column(String, nullable=False, default=PaymentStatus.PENDING)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)


class SwipePurchase(Base):
    __tablename__ = "swipe_purchases"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    order_id = Column(String, unique=True, index=True, nullable=False)
    payment_id = Column(String, nullable=True)
    swipe_count = Column(Integer, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String, nullable=False, default="INR")
    status = Column(String, nullable=False, default=PaymentStatus.PENDING)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)


class RecordKind:
    SWIPE_PURCHASE = "SWIPE_PURCHASE"
    BOOKING_PAYMENT = "BOOKING_PAYMENT"
    SUBSCRIPTION_PAYMENT = "SUBSCRIPTION_PAYMENT"


MODEL_BY_KIND = {
    RecordKind.SWIPE_PURCHASE: SwipePurchase,
    RecordKind.BOOKING_PAYMENT: Payment,
    RecordKind.SUBSCRIPTION_PAYMENT: SubscriptionPayment,
}

# Swipe purchases are matched before the other two kinds.
ALL_KINDS = (
    RecordKind.SWIPE_PURCHASE,
    RecordKind.BOOKING_PAYMENT,
    RecordKind.SUBSCRIPTION_PAYMENT,
)
