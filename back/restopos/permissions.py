"""
Role and transition rules for orders.

This module is the single source of truth for who may move an order between
states. Server-side enforcement (`order_state`) and the
`/orders/{id}/allowed-transitions` endpoint used for UI gating both read it.
"""

from .models import OrderStatus, PaymentStatus, UserRole, TERMINAL_STATUSES


ROLE_LEVELS: dict[UserRole, int] = {
    UserRole.owner: 100,
    UserRole.manager: 50,
    UserRole.waiter: 35,
    UserRole.kitchen: 30,
    UserRole.cashier: 25,
}


def has_role(role: UserRole, required: UserRole) -> bool:
    """True when `role` sits at or above `required` in the hierarchy."""
    return ROLE_LEVELS.get(role, 0) >= ROLE_LEVELS.get(required, 0)


# Manager and above may always act
_ADMINS = frozenset(role for role in UserRole if has_role(role, UserRole.manager))

STATUS_TRANSITIONS: dict[tuple[OrderStatus, OrderStatus], frozenset[UserRole]] = {
    (OrderStatus.pending, OrderStatus.confirmed): _ADMINS | {UserRole.waiter},
    (OrderStatus.confirmed, OrderStatus.preparing): _ADMINS | {UserRole.kitchen},
    (OrderStatus.preparing, OrderStatus.ready): _ADMINS | {UserRole.kitchen},
    (OrderStatus.ready, OrderStatus.served): _ADMINS | {UserRole.waiter},
    (OrderStatus.served, OrderStatus.completed): _ADMINS | {UserRole.cashier},
}
# Any non-terminal status may be cancelled
for _status in OrderStatus:
    if _status not in TERMINAL_STATUSES:
        STATUS_TRANSITIONS[(_status, OrderStatus.cancelled)] = _ADMINS

PAYMENT_TRANSITIONS: dict[tuple[PaymentStatus, PaymentStatus], frozenset[UserRole]] = {
    (PaymentStatus.unpaid, PaymentStatus.paid): _ADMINS | {UserRole.cashier},
    (PaymentStatus.paid, PaymentStatus.refunded): _ADMINS,
}


def is_status_transition_defined(from_status: OrderStatus, to_status: OrderStatus) -> bool:
    return (from_status, to_status) in STATUS_TRANSITIONS


def can_change_order_status(role: UserRole, from_status: OrderStatus, to_status: OrderStatus) -> bool:
    allowed = STATUS_TRANSITIONS.get((from_status, to_status))
    return allowed is not None and role in allowed


def can_change_payment_status(role: UserRole, from_status: PaymentStatus, to_status: PaymentStatus) -> bool:
    allowed = PAYMENT_TRANSITIONS.get((from_status, to_status))
    return allowed is not None and role in allowed


def can_process_payment(role: UserRole) -> bool:
    return can_change_payment_status(role, PaymentStatus.unpaid, PaymentStatus.paid)


def allowed_status_targets(
    role: UserRole,
    order_status: OrderStatus,
    payment_status: PaymentStatus,
) -> list[OrderStatus]:
    """Statuses this role may move the order to right now."""
    targets = []
    for (from_status, to_status), roles in STATUS_TRANSITIONS.items():
        if from_status != order_status or role not in roles:
            continue
        if to_status == OrderStatus.completed and payment_status != PaymentStatus.paid:
            continue
        targets.append(to_status)
    return targets


def allowed_payment_targets(role: UserRole, payment_status: PaymentStatus) -> list[PaymentStatus]:
    return [
        to_status
        for (from_status, to_status), roles in PAYMENT_TRANSITIONS.items()
        if from_status == payment_status and role in roles
    ]
