"""
VNPay API Routes

- POST /payments/vnpay          create a signed payment URL
- GET|POST /payments/vnpay/ipn  server-to-server notification (authoritative)
- GET /payments/vnpay/return    browser return check (advisory)
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlmodel import Session

from . import payment_service, vnpay
from .db import get_session
from .events import publish_order_update
from .models import PaymentCreate
from .order_service import get_order_by_number

logger = logging.getLogger(__name__)

router = APIRouter()


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "127.0.0.1"


async def _gateway_params(request: Request) -> dict:
    params = dict(request.query_params)
    if request.method == "POST":
        form = await request.form()
        params.update({key: str(value) for key, value in form.items()})
    return params


@router.post("/vnpay")
def create_vnpay_payment(
    payment: PaymentCreate,
    request: Request,
    session: Session = Depends(get_session),
) -> dict:
    try:
        return payment_service.create_payment(session, payment, _client_ip(request))
    except payment_service.GatewayNotConfigured:
        raise HTTPException(
            status_code=500,
            detail="VNPay configuration is missing. Please check environment variables.",
        )


@router.api_route("/vnpay/ipn", methods=["GET", "POST"])
async def vnpay_ipn(
    request: Request,
    session: Session = Depends(get_session),
) -> dict:
    params = await _gateway_params(request)
    logger.info(f"VNPay IPN received: txn_ref={params.get('vnp_TxnRef')}, code={params.get('vnp_ResponseCode')}")

    result = payment_service.reconcile_ipn(session, params)

    if result.rsp_code == "00" and result.message == "Confirm Success":
        order_number = vnpay.parse_txn_ref(params.get("vnp_TxnRef"))
        order = get_order_by_number(session, order_number) if order_number else None
        if order:
            publish_order_update("payment_update", order, payment_method=order.payment_method)
    return result.as_response()


@router.get("/vnpay/return")
def vnpay_return(request: Request) -> dict:
    return payment_service.verify_return(dict(request.query_params))
