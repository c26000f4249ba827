import logging
from dataclasses import dataclass
from typing import Optional, Union

from molle_payments.gateways import GatewayEvent
from molle_payments.models import ALL_KINDS
from molle_payments.repository import PaymentRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassifiedEvent:
    outcome: str
    kind: str
    order_id: str
    payment_id: Optional[str]
    current_status: str


@dataclass(frozen=True)
class UnrecognizedEvent:
    reason: str
    order_id: Optional[str] = None


def classify(
    event: Optional[GatewayEvent],
    repository: PaymentRepository,
    kinds=ALL_KINDS,
) -> Union[ClassifiedEvent, UnrecognizedEvent]:
    """Attach a parsed gateway event to the record kind that owns its order id.

    Kinds are tried in order and the first table holding the order id wins. The
    record's current status is carried along but not checked here: a record that
    already left PENDING is still a match, the executor turns it into a no-op.
    """
    if event is None:
        return UnrecognizedEvent(reason="unsupported or malformed payload")

    kind, record = repository.find_any(event.order_id, kinds)
    if record is None:
        return UnrecognizedEvent(reason="no record for order id", order_id=event.order_id)

    logger.debug("Order %s classified as %s %s", event.order_id, kind, event.outcome)
    return ClassifiedEvent(
        outcome=event.outcome,
        kind=kind,
        order_id=event.order_id,
        payment_id=event.payment_id,
        current_status=record.status,
    )
