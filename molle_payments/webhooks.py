import logging
from typing import Mapping, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from molle_payments.classifier import UnrecognizedEvent, classify
from molle_payments.errors import ReconciliationError
from molle_payments.gateways import GatewayAdapter
from molle_payments.reconciler import Reconciler
from molle_payments.repository import PaymentRepository
from molle_payments.signature import verify

logger = logging.getLogger(__name__)

RECEIVED = {"received": True}
PROCESSING_FAILED = {"detail": "Webhook processing failed"}


def handle_webhook(
    adapter: GatewayAdapter,
    raw_body: bytes,
    headers: Mapping[str, str],
    session: Session,
    granter=None,
) -> Tuple[int, dict]:
    """Verify, classify and apply one gateway delivery.

    Returns ``(status_code, json_body)``. 400 means the signature gate refused the
    request and nothing was touched. 500 asks the gateway to redeliver. Everything
    else, including events we ignore, is a 200 so the gateway stops retrying.
    """
    headers = {key.lower(): value for key, value in headers.items()}
    signature = headers.get(adapter.signature_header)
    if not signature:
        logger.error("Rejected %s webhook: missing %s header", adapter.name, adapter.signature_header)
        return 400, {"detail": "Missing signature"}

    secret = adapter.secret
    if not secret:
        logger.error("%s is not set, cannot verify %s webhooks", adapter.secret_env, adapter.name)
    if not verify(raw_body, signature, secret, adapter.digestmod):
        logger.error("Rejected %s webhook: invalid signature", adapter.name)
        return 400, {"detail": "Invalid signature"}

    repository = PaymentRepository(session)
    try:
        event = classify(adapter.parse(raw_body), repository, adapter.record_kinds)
    except SQLAlchemyError as exc:
        repository.rollback()
        logger.error("Persistence failure classifying %s webhook: %s", adapter.name, exc)
        return 500, PROCESSING_FAILED

    if isinstance(event, UnrecognizedEvent):
        logger.info("Ignoring %s webhook: %s (order %s)", adapter.name, event.reason, event.order_id)
        return 200, RECEIVED

    try:
        Reconciler(repository, granter).execute(event)
    except ReconciliationError:
        return 500, PROCESSING_FAILED
    return 200, RECEIVED
