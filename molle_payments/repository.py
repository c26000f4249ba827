from sqlalchemy import select, update
from sqlalchemy.orm import Session

from molle_payments.models import (
    ALL_KINDS,
    DEFAULT_DAILY_SWIPE_LIMIT,
    MODEL_BY_KIND,
    Booking,
    Payment,
    BookingStatus,
    UserPreference,
    utcnow,
)


class PaymentRepository:
    """Point lookups and conditional writes over the three payment record kinds.

    Nothing here commits on its own; the caller owns the transaction.
    """

    def __init__(self, session: Session):
        self.session = session

    def find(self, kind: str, order_id: str):
        model = MODEL_BY_KIND[kind]
        return self.session.execute(
            select(model).where(model.order_id == order_id)
        ).scalar_one_or_none()

    def find_any(self, order_id: str, kinds=ALL_KINDS):
        """Return ``(kind, record)`` for the first kind holding ``order_id``, or ``(None, None)``."""
        for kind in kinds:
            record = self.find(kind, order_id)
            if record is not None:
                return kind, record
        return None, None

    def update_if_status(self, kind: str, order_id: str, expected_status: str, values: dict) -> int:
        model = MODEL_BY_KIND[kind]
        values = dict(values)
        values.setdefault("updated_at", utcnow())
        result = self.session.execute(
            update(model)
            .where(model.order_id == order_id, model.status == expected_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def confirm_booking(self, booking_id: str) -> int:
        result = self.session.execute(
            update(Booking)
            .where(Booking.id == booking_id)
            .values(status=BookingStatus.CONFIRMED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def add_swipe_allowance(self, user_id: str, quantity: int) -> None:
        result = self.session.execute(
            update(UserPreference)
            .where(UserPreference.user_id == user_id)
            .values(daily_swipe_limit=UserPreference.daily_swipe_limit + quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.session.add(UserPreference(
                user_id=user_id,
                daily_swipe_limit=DEFAULT_DAILY_SWIPE_LIMIT + quantity,
            ))
            self.session.flush()

    def commit(self):
        self.session.commit()

    def rollback(self):
        self.session.rollback()

    def savepoint(self):
        return self.session.begin_nested()

    def find_booking_payment(self, booking_id: str):
        return self.session.execute(
            select(Payment).where(Payment.booking_id == booking_id)
        ).scalar_one_or_none()
