"""
Order State Machine

Applies status and payment-status transitions to an Order loaded in the
caller's session. Nothing here commits: the caller owns the transaction, so a
transition and its side effects (table release) land together or not at all.
"""
import logging
from datetime import datetime, timezone

from sqlmodel import Session

from . import permissions
from .errors import ForbiddenTransitionError, InvalidStateError, ValidationError
from .models import (
    Order,
    OrderStatus,
    PaymentStatus,
    Table,
    TableStatus,
    UserRole,
    TERMINAL_STATUSES,
)

logger = logging.getLogger(__name__)


def parse_order_status(value: str) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise InvalidStateError(f"Unknown order status: {value!r}")


def parse_payment_status(value: str) -> PaymentStatus:
    try:
        return PaymentStatus(value)
    except ValueError:
        raise InvalidStateError(f"Unknown payment status: {value!r}")


def release_table(session: Session, table_id: int | None) -> None:
    """Mark the order's table available again. No-op for takeaway orders."""
    if table_id is None:
        return
    table = session.get(Table, table_id)
    if table and table.status != TableStatus.available:
        table.status = TableStatus.available
        session.add(table)
        logger.info(f"Table {table.number} released")


def occupy_table(session: Session, table: Table) -> None:
    table.status = TableStatus.occupied
    session.add(table)


def check_status_transition(order: Order, new_status: OrderStatus, role: UserRole) -> None:
    """Raise unless `role` may move `order` to `new_status` right now."""
    current = order.status
    if current in TERMINAL_STATUSES:
        raise InvalidStateError(f"Order #{order.order_number} is {current.value}; no further changes allowed")

    if not permissions.is_status_transition_defined(current, new_status):
        raise InvalidStateError(
            f"Transition {current.value} -> {new_status.value} is not defined"
        )

    if not permissions.can_change_order_status(role, current, new_status):
        raise ForbiddenTransitionError(role.value, current.value, new_status.value)

    if new_status == OrderStatus.completed and order.payment_status != PaymentStatus.paid:
        raise InvalidStateError(
            f"Order #{order.order_number} must be paid before it can be completed"
        )


def apply_status_change(session: Session, order: Order, new_status: OrderStatus, role: UserRole) -> Order:
    check_status_transition(order, new_status, role)

    previous = order.status
    now = datetime.now(timezone.utc)
    order.status = new_status
    order.updated_at = now
    if new_status == OrderStatus.cancelled:
        order.cancelled_at = now
    if new_status in TERMINAL_STATUSES:
        release_table(session, order.table_id)

    session.add(order)
    logger.info(f"Order #{order.order_number}: {previous.value} -> {new_status.value} by {role.value}")
    return order


def check_payment_transition(
    order: Order,
    new_payment_status: PaymentStatus,
    payment_method: str | None,
    role: UserRole,
) -> None:
    current = order.payment_status
    if (current, new_payment_status) not in permissions.PAYMENT_TRANSITIONS:
        raise InvalidStateError(
            f"Payment transition {current.value} -> {new_payment_status.value} is not defined"
        )

    if not permissions.can_change_payment_status(role, current, new_payment_status):
        raise ForbiddenTransitionError(role.value, current.value, new_payment_status.value)

    if new_payment_status == PaymentStatus.paid and not (payment_method or order.payment_method):
        raise ValidationError("A payment method is required to mark an order as paid")


def apply_payment_change(
    session: Session,
    order: Order,
    new_payment_status: PaymentStatus,
    payment_method: str | None,
    role: UserRole,
) -> Order:
    check_payment_transition(order, new_payment_status, payment_method, role)

    previous = order.payment_status
    now = datetime.now(timezone.utc)
    if new_payment_status == PaymentStatus.paid:
        order.payment_method = payment_method or order.payment_method
        order.paid_at = now
    order.payment_status = new_payment_status
    order.updated_at = now

    session.add(order)
    logger.info(
        f"Order #{order.order_number}: payment {previous.value} -> {new_payment_status.value} "
        f"({order.payment_method}) by {role.value}"
    )
    return order


def set_payment_method(order: Order, payment_method: str, role: UserRole) -> None:
    """Record the intended payment method; frozen once the order is paid."""
    if not permissions.can_process_payment(role):
        raise ForbiddenTransitionError(role.value, order.payment_method or "none", payment_method)
    if order.payment_status != PaymentStatus.unpaid and payment_method != order.payment_method:
        raise InvalidStateError(
            f"Payment method of order #{order.order_number} is fixed once paid"
        )
    order.payment_method = payment_method


def mark_paid_by_gateway(session: Session, order: Order, payment_method: str) -> Order:
    """
    Payment confirmed by the gateway: paid, and completed unless already
    cancelled. Bypasses role checks, the gateway is the authority here.
    """
    now = datetime.now(timezone.utc)
    order.payment_status = PaymentStatus.paid
    order.payment_method = payment_method
    order.paid_at = now
    order.updated_at = now
    if order.status != OrderStatus.cancelled:
        order.status = OrderStatus.completed
    release_table(session, order.table_id)
    session.add(order)
    return order
