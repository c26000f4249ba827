import calendar
import logging
from datetime import datetime

from sqlalchemy.orm import Session

from molle_payments.models import (
    FREE_SWIPES_PER_PACKAGE,
    Package,
    PackageDuration,
    SubscriptionPayment,
    User,
    utcnow,
)

logger = logging.getLogger(__name__)

MONTHS_BY_DURATION = {
    PackageDuration.MONTHLY: 1,
    PackageDuration.QUARTERLY: 3,
    PackageDuration.YEARLY: 12,
    PackageDuration.LIFETIME: 12 * 100,
}


def add_months(moment: datetime, months: int) -> datetime:
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def subscription_end_date(duration: str, start: datetime) -> datetime:
    # Unknown durations get a month, same as MONTHLY.
    return add_months(start, MONTHS_BY_DURATION.get(duration, 1))


class PackageEntitlements:
    """Applies a purchased package to the buyer's account."""

    def __init__(self, clock=utcnow):
        self.clock = clock

    def grant(self, session: Session, subscription_payment: SubscriptionPayment) -> None:
        package = session.get(Package, subscription_payment.package_id)
        user = session.get(User, subscription_payment.user_id)
        if package is None or user is None:
            raise LookupError(
                f"package {subscription_payment.package_id} or user "
                f"{subscription_payment.user_id} not found"
            )

        now = self.clock()
        user.active_package_id = package.id
        user.subscription_end_date = subscription_end_date(package.duration, now)
        user.daily_swipe_remaining = package.daily_swipe_limit
        user.free_swipes_remaining = FREE_SWIPES_PER_PACKAGE
        user.last_swipe_reset = now
        session.commit()

        logger.info(
            "Granted package %s to user %s until %s",
            package.id, user.id, user.subscription_end_date.isoformat(),
        )
