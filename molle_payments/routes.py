from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from molle_payments.auth import verify_token
from molle_payments.database import SessionLocal
from molle_payments.gateways import CASHFREE, CASHFREE_PAYMENTS, CASHFREE_SUBSCRIPTIONS, RAZORPAY
from molle_payments.models import RecordKind
from molle_payments.status import BookingStatusView, OrderStatusService, OrderStatusView
from molle_payments.webhooks import handle_webhook

router = APIRouter()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def webhook_endpoint(adapter):
    async def receive(request: Request, db: Session = Depends(get_db)):
        payload = await request.body()
        status_code, body = await run_in_threadpool(handle_webhook, adapter, payload, request.headers, db)
        return JSONResponse(status_code=status_code, content=body)

    receive.__name__ = f"{adapter.name.replace('-', '_')}_webhook"
    return receive


router.add_api_route("/cashfree/webhook", webhook_endpoint(CASHFREE), methods=["POST"])
router.add_api_route("/cashfree/payment-webhook", webhook_endpoint(CASHFREE_PAYMENTS), methods=["POST"])
router.add_api_route("/cashfree/subscription-webhook", webhook_endpoint(CASHFREE_SUBSCRIPTIONS), methods=["POST"])
router.add_api_route("/razorpay/webhook", webhook_endpoint(RAZORPAY), methods=["POST"])


@router.get("/orders/{order_id}/status", response_model=OrderStatusView)
def order_status(order_id: str, auth=Depends(verify_token), db: Session = Depends(get_db)):
    view = OrderStatusService(db).get_status(order_id)
    if view is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return view


@router.get("/subscription-payments/{order_id}/status", response_model=OrderStatusView)
def subscription_payment_status(order_id: str, auth=Depends(verify_token), db: Session = Depends(get_db)):
    view = OrderStatusService(db).get_status(order_id, kinds=(RecordKind.SUBSCRIPTION_PAYMENT,))
    if view is None:
        raise HTTPException(status_code=404, detail="Subscription payment not found")
    return view


@router.get("/bookings/{booking_id}/status", response_model=BookingStatusView)
def booking_status(booking_id: str, auth=Depends(verify_token), db: Session = Depends(get_db)):
    view = OrderStatusService(db).get_booking_status(booking_id)
    if view is None:
        raise HTTPException(status_code=404, detail="Booking not found")
    return view
