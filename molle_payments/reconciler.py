import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv
from sqlalchemy.exc import SQLAlchemyError

from molle_payments.classifier import ClassifiedEvent
from molle_payments.entitlements import PackageEntitlements
from molle_payments.errors import FatalInconsistency, TransientPersistenceFailure
from molle_payments.gateways import Outcome
from molle_payments.models import PaymentStatus, RecordKind
from molle_payments.repository import PaymentRepository

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")

logger = logging.getLogger(__name__)


DEFAULT_CONFIRM_ATTEMPTS = 3


def booking_confirm_attempts() -> int:
    raw = os.getenv("BOOKING_CONFIRM_ATTEMPTS")
    if raw is None:
        return DEFAULT_CONFIRM_ATTEMPTS
    try:
        return max(1, int(raw))
    except ValueError:
        logger.warning(
            "BOOKING_CONFIRM_ATTEMPTS=%r is not an integer, using %d", raw, DEFAULT_CONFIRM_ATTEMPTS,
        )
        return DEFAULT_CONFIRM_ATTEMPTS


BOOKING_CONFIRM_ATTEMPTS = booking_confirm_attempts()


@dataclass(frozen=True)
class ExecutionResult:
    applied: bool
    kind: str
    outcome: str
    order_id: str
    status: str


class Reconciler:
    """Moves a PENDING payment record to its terminal status, at most once.

    Every status write is conditional on the row still being PENDING, and the
    dependent side effects only run when that write actually changed a row. Two
    concurrent deliveries of the same event therefore apply it once.
    """

    def __init__(self, repository: PaymentRepository, granter=None, confirm_attempts=None):
        self.repository = repository
        self.granter = granter or PackageEntitlements()
        self.confirm_attempts = confirm_attempts or BOOKING_CONFIRM_ATTEMPTS

    def execute(self, event: ClassifiedEvent) -> ExecutionResult:
        try:
            if event.outcome == Outcome.CAPTURED:
                applied = self._capture(event)
            else:
                applied = self._fail(event)
        except SQLAlchemyError as exc:
            self.repository.rollback()
            logger.error("Persistence failure reconciling order %s: %s", event.order_id, exc)
            raise TransientPersistenceFailure(str(exc), order_id=event.order_id) from exc

        if not applied:
            logger.info(
                "Order %s already reconciled (%s), ignoring %s",
                event.order_id, event.current_status, event.outcome,
            )
            return ExecutionResult(False, event.kind, event.outcome, event.order_id, event.current_status)

        status = PaymentStatus.COMPLETED if event.outcome == Outcome.CAPTURED else PaymentStatus.FAILED
        logger.info("Order %s (%s) marked %s", event.order_id, event.kind, status)
        return ExecutionResult(True, event.kind, event.outcome, event.order_id, status)

    def _capture(self, event: ClassifiedEvent) -> bool:
        repo = self.repository
        changed = repo.update_if_status(
            event.kind,
            event.order_id,
            PaymentStatus.PENDING,
            {"status": PaymentStatus.COMPLETED, "payment_id": event.payment_id},
        )
        if not changed:
            repo.rollback()
            return False

        if event.kind == RecordKind.BOOKING_PAYMENT:
            self._confirm_booking(event)
        elif event.kind == RecordKind.SWIPE_PURCHASE:
            purchase = repo.find(event.kind, event.order_id)
            repo.add_swipe_allowance(purchase.user_id, purchase.swipe_count)
        repo.commit()

        if event.kind == RecordKind.SUBSCRIPTION_PAYMENT:
            self._grant_entitlements(event)
        return True

    def _confirm_booking(self, event: ClassifiedEvent) -> None:
        repo = self.repository
        booking_id = repo.find(event.kind, event.order_id).booking_id

        for attempt in range(1, self.confirm_attempts + 1):
            try:
                with repo.savepoint():
                    confirmed = repo.confirm_booking(booking_id)
            except SQLAlchemyError as exc:
                logger.warning(
                    "Confirming booking %s failed (attempt %d/%d): %s",
                    booking_id, attempt, self.confirm_attempts, exc,
                )
                continue
            if confirmed:
                return
            # The booking row is gone; retrying will not bring it back.
            break

        repo.rollback()
        logger.critical(
            "Payment for order %s captured (payment %s) but booking %s could not be confirmed; "
            "payment left PENDING, operator action required",
            event.order_id, event.payment_id, booking_id,
        )
        raise FatalInconsistency(
            f"booking {booking_id} could not be confirmed for order {event.order_id}",
            order_id=event.order_id,
        )

    def _grant_entitlements(self, event: ClassifiedEvent) -> None:
        repo = self.repository
        try:
            subscription_payment = repo.find(event.kind, event.order_id)
            self.granter.grant(repo.session, subscription_payment)
        except Exception as exc:
            repo.rollback()
            logger.critical(
                "Subscription order %s is COMPLETED but entitlements were not granted: %s",
                event.order_id, exc,
            )
            raise FatalInconsistency(
                f"entitlements not granted for order {event.order_id}",
                order_id=event.order_id,
            ) from exc

    def _fail(self, event: ClassifiedEvent) -> bool:
        changed = self.repository.update_if_status(
            event.kind,
            event.order_id,
            PaymentStatus.PENDING,
            {"status": PaymentStatus.FAILED},
        )
        self.repository.commit()
        return bool(changed)
