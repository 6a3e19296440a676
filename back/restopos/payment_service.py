"""
Payment Service

VNPay payment creation and IPN reconciliation against internal order state.
The IPN handler never raises to the gateway: every outcome maps to one of the
gateway's response codes.
"""
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlmodel import Session

from . import order_state, vnpay
from .db import transaction
from .errors import AmountMismatchError, InvalidStateError, SignatureError, ValidationError
from .models import PaymentCreate, PaymentStatus
from .order_service import get_order, get_order_by_number
from .settings import settings

logger = logging.getLogger(__name__)

GATEWAY_PAYMENT_METHOD = "vnpay"


class GatewayNotConfigured(Exception):
    """VNPay merchant code or hash secret missing from settings."""


@dataclass
class ReconciliationResult:
    rsp_code: str
    message: str

    def as_response(self) -> dict:
        return {"RspCode": self.rsp_code, "Message": self.message}


def _append_note(existing: str | None, note: str) -> str:
    return f"{existing}\n{note}" if existing else note


def create_payment(session: Session, payment: PaymentCreate, ip_addr: str) -> dict:
    if not settings.vnp_tmn_code or not settings.vnp_hash_secret:
        logger.error(f"VNPay config missing: tmn_code={settings.vnp_tmn_code!r}, has_secret={bool(settings.vnp_hash_secret)}")
        raise GatewayNotConfigured("VNPay configuration is missing")

    order = get_order(session, payment.order_id)
    if order.payment_status != PaymentStatus.unpaid:
        raise InvalidStateError(f"Order #{order.order_number} is already {order.payment_status.value}")
    if payment.order_number is not None and payment.order_number != order.order_number:
        raise ValidationError("Order number does not match the order")

    amount = Decimal(order.total)
    if payment.amount is not None:
        if payment.amount <= 0:
            raise ValidationError("Amount must be positive")
        if vnpay.to_minor_units(payment.amount) != vnpay.to_minor_units(amount):
            raise ValidationError(f"Amount {payment.amount} does not match order total {amount}")
    if amount <= 0:
        raise ValidationError("Order total must be positive")

    txn_ref = vnpay.make_txn_ref(order.order_number, int(time.time() * 1000))
    payment_url = vnpay.build_payment_url(
        api_url=settings.vnp_api_url,
        tmn_code=settings.vnp_tmn_code,
        hash_secret=settings.vnp_hash_secret,
        return_url=settings.vnp_return_url,
        txn_ref=txn_ref,
        amount=amount,
        order_info=payment.order_info or f"Thanh toan don hang {order.order_number}",
        ip_addr=ip_addr,
        create_date=vnpay.format_vnpay_date(datetime.now(timezone.utc), settings.timezone_name),
        locale=payment.language or "vn",
        bank_code=payment.bank_code,
    )

    logger.info(f"VNPay payment created: order #{order.order_number}, txn_ref={txn_ref}, amount={amount}")
    return {
        "success": True,
        "payment_url": payment_url,
        "order_id": order.id,
        "txn_ref": txn_ref,
    }


def _verify(params: dict) -> None:
    if not vnpay.verify_signature(params, settings.vnp_hash_secret):
        raise SignatureError("Invalid checksum")


def reconcile_ipn(session: Session, params: dict) -> ReconciliationResult:
    """
    Verify an IPN and apply it to the order. Safe to replay: a notification
    for an order that is already paid is acknowledged without side effects.
    """
    txn_ref = params.get("vnp_TxnRef")
    try:
        _verify(params)
    except SignatureError:
        logger.error(f"IPN rejected: invalid signature for txn_ref={txn_ref}")
        return ReconciliationResult(SignatureError.gateway_code, "Invalid checksum")

    order_number = vnpay.parse_txn_ref(txn_ref)
    if order_number is None:
        logger.error(f"IPN rejected: malformed txn_ref={txn_ref!r}")
        return ReconciliationResult("01", "Order not found")

    response_code = params.get("vnp_ResponseCode")
    transaction_status = params.get("vnp_TransactionStatus")

    try:
        with transaction(session):
            # Row lock so a concurrent manual "mark paid" cannot interleave
            order = get_order_by_number(session, order_number, for_update=True)
            if not order:
                logger.error(f"IPN rejected: order #{order_number} not found")
                return ReconciliationResult("01", "Order not found")

            expected = vnpay.to_minor_units(order.total)
            received = params.get("vnp_Amount")
            if not (received and str(received).isdigit() and int(received) == expected):
                error = AmountMismatchError(expected, received)
                logger.error(f"IPN rejected for order #{order_number}: {error}")
                return ReconciliationResult(AmountMismatchError.gateway_code, "Invalid amount")

            # Paid or refunded: a redelivered notification must not touch the order
            if order.payment_status != PaymentStatus.unpaid:
                logger.info(f"IPN: order #{order_number} already {order.payment_status.value}, acknowledging replay")
                return ReconciliationResult("00", "Order already confirmed")

            transaction_no = params.get("vnp_TransactionNo")
            bank_code = params.get("vnp_BankCode")
            pay_date = params.get("vnp_PayDate")

            if response_code == "00" and transaction_status == "00":
                order_state.mark_paid_by_gateway(session, order, GATEWAY_PAYMENT_METHOD)
                order.notes = _append_note(
                    order.notes,
                    f"[VNPay] Transaction: {transaction_no}, Bank: {bank_code}, Date: {pay_date}",
                )
                session.add(order)
                logger.info(f"IPN: payment confirmed for order #{order_number} (txn {transaction_no})")
            else:
                order.notes = _append_note(
                    order.notes,
                    f"[VNPay Failed] Code: {response_code}, Message: {vnpay.response_message(response_code)}",
                )
                session.add(order)
                logger.warning(f"IPN: payment failed for order #{order_number}, code {response_code}")

        return ReconciliationResult("00", "Confirm Success")
    except Exception as e:
        logger.error(f"VNPay IPN error for txn_ref={txn_ref}: {e}", exc_info=True)
        return ReconciliationResult("99", "Unknown error")


def verify_return(params: dict) -> dict:
    """
    Check the browser return redirect. Advisory only: the order is updated by
    the IPN, never from here.
    """
    valid = vnpay.verify_signature(params, settings.vnp_hash_secret)
    response_code = params.get("vnp_ResponseCode")
    success = valid and response_code == "00" and params.get("vnp_TransactionStatus", "00") == "00"
    return {
        "valid": valid,
        "success": success,
        "response_code": response_code,
        "message": vnpay.response_message(response_code) if valid else "Invalid checksum",
        "order_number": vnpay.parse_txn_ref(params.get("vnp_TxnRef")) if valid else None,
        "txn_ref": params.get("vnp_TxnRef"),
    }
