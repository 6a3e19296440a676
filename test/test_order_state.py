"""Order lifecycle: role-gated status and payment transitions."""
import itertools

import pytest

from restopos import order_service, permissions
from restopos.errors import ForbiddenTransitionError, InvalidStateError, ValidationError
from restopos.models import (
    OrderStatus,
    PaymentStatus,
    StatusPatch,
    TableStatus,
    UserRole,
)

S = OrderStatus
P = PaymentStatus
R = UserRole

ALLOWED = {
    (S.pending, S.confirmed): {R.owner, R.manager, R.waiter},
    (S.confirmed, S.preparing): {R.owner, R.manager, R.kitchen},
    (S.preparing, S.ready): {R.owner, R.manager, R.kitchen},
    (S.ready, S.served): {R.owner, R.manager, R.waiter},
    (S.served, S.completed): {R.owner, R.manager, R.cashier},
    (S.pending, S.cancelled): {R.owner, R.manager},
    (S.confirmed, S.cancelled): {R.owner, R.manager},
    (S.preparing, S.cancelled): {R.owner, R.manager},
    (S.ready, S.cancelled): {R.owner, R.manager},
    (S.served, S.cancelled): {R.owner, R.manager},
}


@pytest.fixture
def table(make_table):
    return make_table(8)


@pytest.fixture
def order(make_menu_item, make_order, table):
    pho = make_menu_item("Pho bo", 50000)
    return make_order([(pho, 1)], table=table)


def change_status(session, order, status, role):
    return order_service.apply_patch(session, order.id, StatusPatch(status=status), role)


def test_permission_table():
    for from_status, to_status in itertools.product(S, S):
        for role in R:
            expected = role in ALLOWED.get((from_status, to_status), set())
            assert permissions.can_change_order_status(role, from_status, to_status) == expected, (
                role, from_status, to_status
            )


@pytest.mark.parametrize(("transition", "roles"), list(ALLOWED.items()))
def test_allowed_transitions_succeed(session, order, force_state, transition, roles):
    from_status, to_status = transition
    payment = P.paid if to_status == S.completed else P.unpaid
    for role in roles:
        force_state(order, status=from_status, payment_status=payment, payment_method="cash")
        updated = change_status(session, order, to_status.value, role)
        assert updated.status == to_status


@pytest.mark.parametrize(("transition", "roles"), list(ALLOWED.items()))
def test_other_roles_are_forbidden(session, order, force_state, transition, roles):
    from_status, to_status = transition
    for role in set(R) - roles:
        force_state(order, status=from_status, payment_status=P.paid, payment_method="cash")
        with pytest.raises(ForbiddenTransitionError):
            change_status(session, order, to_status.value, role)
        session.refresh(order)
        assert order.status == from_status


def test_undefined_transitions_leave_order_unchanged(session, order, force_state):
    for from_status, to_status in itertools.product(S, S):
        if (from_status, to_status) in ALLOWED:
            continue
        force_state(order, status=from_status, payment_status=P.paid, payment_method="cash")
        with pytest.raises(InvalidStateError):
            change_status(session, order, to_status.value, R.owner)
        session.refresh(order)
        assert order.status == from_status


def test_kitchen_flow_then_cashier_completes(session, order, table):
    change_status(session, order, "confirmed", R.waiter)
    change_status(session, order, "preparing", R.kitchen)
    change_status(session, order, "ready", R.kitchen)
    change_status(session, order, "served", R.waiter)

    with pytest.raises(InvalidStateError):
        change_status(session, order, "completed", R.cashier)

    order = order_service.apply_patch(session, order.id, StatusPatch(
        payment_status="paid", payment_method="cash", status="completed",
    ), R.cashier)

    assert order.status == S.completed
    assert order.payment_status == P.paid
    assert order.payment_method == "cash"
    assert order.paid_at is not None
    session.refresh(table)
    assert table.status == TableStatus.available


def test_waiter_cannot_skip_the_kitchen(session, order, force_state):
    force_state(order, status=S.confirmed)
    with pytest.raises(ForbiddenTransitionError):
        change_status(session, order, "preparing", R.waiter)
    session.refresh(order)
    assert order.status == S.confirmed


def test_cancel_releases_table(session, order, table):
    change_status(session, order, "confirmed", R.waiter)
    session.refresh(table)
    assert table.status == TableStatus.occupied

    order = change_status(session, order, "cancelled", R.manager)
    assert order.status == S.cancelled
    assert order.cancelled_at is not None
    session.refresh(table)
    assert table.status == TableStatus.available


def test_terminal_orders_are_frozen(session, order, force_state):
    force_state(order, status=S.cancelled)
    for target in S:
        with pytest.raises(InvalidStateError):
            change_status(session, order, target.value, R.owner)


def test_unknown_status_value(session, order):
    with pytest.raises(InvalidStateError):
        change_status(session, order, "eaten", R.owner)
    with pytest.raises(InvalidStateError):
        order_service.apply_patch(session, order.id, StatusPatch(payment_status="comped"), R.owner)


def test_empty_patch_is_rejected(session, order):
    with pytest.raises(ValidationError):
        order_service.apply_patch(session, order.id, StatusPatch(), R.owner)


def test_notes_only_patch(session, order):
    order = order_service.apply_patch(session, order.id, StatusPatch(notes="No onions"), R.waiter)
    assert order.notes == "No onions"
    assert order.status == S.pending


# ============ PAYMENT STATUS ============

def test_payment_requires_a_method(session, order):
    with pytest.raises(ValidationError):
        order_service.apply_patch(session, order.id, StatusPatch(payment_status="paid"), R.cashier)
    session.refresh(order)
    assert order.payment_status == P.unpaid


@pytest.mark.parametrize("role", [R.waiter, R.kitchen])
def test_only_cashier_and_admins_take_payment(session, order, role):
    with pytest.raises(ForbiddenTransitionError):
        order_service.apply_patch(session, order.id, StatusPatch(
            payment_status="paid", payment_method="cash",
        ), role)


def test_refund_is_admin_only(session, order, force_state):
    force_state(order, payment_status=P.paid, payment_method="card")

    with pytest.raises(ForbiddenTransitionError):
        order_service.apply_patch(session, order.id, StatusPatch(payment_status="refunded"), R.cashier)

    order = order_service.apply_patch(session, order.id, StatusPatch(payment_status="refunded"), R.manager)
    assert order.payment_status == P.refunded


def test_payment_cannot_go_backwards(session, order, force_state):
    force_state(order, payment_status=P.refunded, payment_method="card")
    for target in ("unpaid", "paid"):
        with pytest.raises(InvalidStateError):
            order_service.apply_patch(session, order.id, StatusPatch(
                payment_status=target, payment_method="cash",
            ), R.owner)


def test_payment_method_is_fixed_once_paid(session, order, force_state):
    order = order_service.apply_patch(session, order.id, StatusPatch(payment_method="card"), R.cashier)
    assert order.payment_method == "card"

    force_state(order, payment_status=P.paid)
    with pytest.raises(InvalidStateError):
        order_service.apply_patch(session, order.id, StatusPatch(payment_method="cash"), R.owner)
    session.refresh(order)
    assert order.payment_method == "card"


@pytest.mark.parametrize("role", [R.waiter, R.kitchen])
def test_only_payment_roles_set_the_method(session, order, role):
    with pytest.raises(ForbiddenTransitionError):
        order_service.apply_patch(session, order.id, StatusPatch(payment_method="cash"), role)
    session.refresh(order)
    assert order.payment_method is None


def test_failed_patch_rolls_back_payment(session, order):
    # Payment is applied first; the forbidden status change must undo it
    with pytest.raises(ForbiddenTransitionError):
        order_service.apply_patch(session, order.id, StatusPatch(
            payment_status="paid", payment_method="cash", status="confirmed",
        ), R.cashier)
    session.refresh(order)
    assert order.payment_status == P.unpaid
    assert order.status == S.pending


# ============ UI GATING ============

def test_allowed_status_targets():
    assert permissions.allowed_status_targets(R.waiter, S.pending, P.unpaid) == [S.confirmed]
    assert permissions.allowed_status_targets(R.kitchen, S.pending, P.unpaid) == []
    assert set(permissions.allowed_status_targets(R.manager, S.served, P.unpaid)) == {S.cancelled}
    assert set(permissions.allowed_status_targets(R.manager, S.served, P.paid)) == {S.completed, S.cancelled}
    assert permissions.allowed_status_targets(R.owner, S.completed, P.paid) == []


def test_allowed_payment_targets():
    assert permissions.allowed_payment_targets(R.cashier, P.unpaid) == [P.paid]
    assert permissions.allowed_payment_targets(R.cashier, P.paid) == []
    assert permissions.allowed_payment_targets(R.owner, P.paid) == [P.refunded]
    assert permissions.can_process_payment(R.cashier)
    assert not permissions.can_process_payment(R.waiter)


def test_role_hierarchy():
    assert permissions.has_role(R.owner, R.manager)
    assert permissions.has_role(R.waiter, R.kitchen)
    assert not permissions.has_role(R.cashier, R.waiter)


def test_managers_and_above_may_always_act():
    for transition, roles in permissions.STATUS_TRANSITIONS.items():
        assert {R.owner, R.manager} <= roles, transition
    for transition, roles in permissions.PAYMENT_TRANSITIONS.items():
        assert {R.owner, R.manager} <= roles, transition
