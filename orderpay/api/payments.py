from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from typing import Optional
from sqlalchemy.orm import Session
import structlog
from orderpay.api.deps import (
    get_db, get_identity_dep, require_admin, get_orchestrator, get_order_manager, get_trusted_webhook_gateways,
)
from orderpay.errors import UnsupportedGatewayError
from orderpay.schemas import InitiatePayment, InitiateResponse, PaymentRead, PaymentOptionsRead, RefundRequest
from orderpay.services.orders import OrderManager
from orderpay.services.payments import PaymentOrchestrator

router = APIRouter()
logger = structlog.get_logger(__name__)

async def _body_params(request: Request) -> dict:
    ctype = request.headers.get("content-type", "")
    if ctype.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
        form = await request.form()
        return {k: v for k, v in form.items() if isinstance(v, str)}
    if not await request.body():
        return {}
    try:
        data = await request.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}

async def callback_params(request: Request) -> dict:
    """Query string first, then whatever the provider posted."""
    params = dict(request.query_params)
    if request.method == "POST":
        for k, v in (await _body_params(request)).items():
            params.setdefault(k, v)
    return params

@router.post("/v1/payments/initiate", response_model=InitiateResponse)
def initiate(payload: InitiatePayment, identity: dict = Depends(get_identity_dep), db: Session = Depends(get_db),
             orders: OrderManager = Depends(get_order_manager),
             orchestrator: PaymentOrchestrator = Depends(get_orchestrator)):
    order = orders.get_order(db, payload.order_id, user_email=identity["sub"])
    result = orchestrator.initiate(db, order)
    return InitiateResponse(payment_url=result.payment_url, order_number=order.order_number,
                            payment_id=result.payment.payment_id)

@router.api_route("/v1/payments/callback/{gateway}", methods=["GET", "POST"])
def callback(gateway: str, params: dict = Depends(callback_params), db: Session = Depends(get_db),
             orchestrator: PaymentOrchestrator = Depends(get_orchestrator)):
    logger.info("payment_callback_received", gateway=gateway, params=params)
    payment = orchestrator.handle_callback(db, gateway, params)
    order = payment.order
    body = {
        "status": payment.status.value,
        "order_number": order.order_number,
        "order_status": order.order_status.value,
        "payment_status": order.payment_status.value,
        "payment_id": payment.payment_id,
    }
    if not payment.is_paid:
        return JSONResponse(status_code=400, content={**body, "message": "Payment failed or pending"})
    return body

@router.post("/v1/payments/webhook/{gateway}")
def webhook(gateway: str, payload: dict = Depends(_body_params), db: Session = Depends(get_db),
            orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
            trusted: set = Depends(get_trusted_webhook_gateways)):
    if not orchestrator.registry.is_supported(gateway):
        raise UnsupportedGatewayError(gateway)
    try:
        orchestrator.handle_webhook(db, gateway, payload, trusted=gateway.lower() in trusted)
    except Exception:
        logger.exception("webhook_processing_failed", gateway=gateway, payload=payload)
        return JSONResponse(status_code=500, content={"status": "error", "message": "Webhook processing failed"})
    return {"status": "success"}

@router.get("/v1/payments/options/{gateway}", response_model=PaymentOptionsRead)
def payment_options(gateway: str, amount_cents: int = Query(..., ge=1), phone: Optional[str] = None,
                    identity: dict = Depends(get_identity_dep),
                    orchestrator: PaymentOrchestrator = Depends(get_orchestrator)):
    options = orchestrator.payment_options(gateway, amount_cents, phone)
    return PaymentOptionsRead(gateway=gateway.lower(), options=options)

@router.post("/v1/payments/{payment_id}/capture", response_model=PaymentRead)
def capture(payment_id: int, identity: dict = Depends(require_admin), db: Session = Depends(get_db),
            orchestrator: PaymentOrchestrator = Depends(get_orchestrator)):
    payment = orchestrator.get_payment(db, payment_id)
    return PaymentRead.model_validate(orchestrator.capture(db, payment))

@router.post("/v1/payments/{payment_id}/refund", response_model=PaymentRead)
def refund(payment_id: int, payload: Optional[RefundRequest] = None, identity: dict = Depends(require_admin),
           db: Session = Depends(get_db), orchestrator: PaymentOrchestrator = Depends(get_orchestrator)):
    payment = orchestrator.get_payment(db, payment_id)
    payment = orchestrator.refund(db, payment, payload.amount_cents if payload else None)
    return PaymentRead.model_validate(payment)
