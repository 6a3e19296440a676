"""
Order Service

Business logic for the order lifecycle:
- Order creation (order builder) with ingredient cost snapshots
- Status / payment updates through the state machine
- Appending items to a placed order and confirming them
- Reporting (sales, cost, profit) and stale-order housekeeping
"""
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

from sqlalchemy import func, update
from sqlmodel import Session, select

from . import order_state
from .costing import compute_item_cost, quantize_money
from .db import transaction
from .errors import InvalidStateError, NotFoundError, ValidationError
from .models import (
    AddItemsRequest,
    ConfirmItemsRequest,
    Counter,
    Customer,
    MenuItem,
    Order,
    OrderCreate,
    OrderItem,
    OrderItemCreate,
    OrderItemStatus,
    OrderStatus,
    PaymentStatus,
    PublicOrderCreate,
    StatusPatch,
    Table,
    UserRole,
    TERMINAL_STATUSES,
)
from .settings import settings

logger = logging.getLogger(__name__)

ORDER_NUMBER_COUNTER = "order_number"


def _as_utc(value: datetime) -> datetime:
    # SQLite hands datetimes back naive; they were written as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def next_order_number(session: Session) -> int:
    """
    Atomically reserve the next order number inside the caller's transaction.
    The counter row is seeded from the highest existing order number.
    """
    statement = (
        update(Counter)
        .where(Counter.name == ORDER_NUMBER_COUNTER)
        .values(value=Counter.value + 1)
        .returning(Counter.value)
    )
    row = session.connection().execute(statement).first()
    if row is not None:
        return row[0]

    current_max = session.exec(select(func.max(Order.order_number))).one() or 0
    counter = Counter(name=ORDER_NUMBER_COUNTER, value=current_max + 1)
    session.add(counter)
    session.flush()
    return counter.value


def _build_order_item(session: Session, item: OrderItemCreate, status: OrderItemStatus) -> OrderItem:
    menu_item = session.get(MenuItem, item.menu_item_id)
    if not menu_item:
        raise NotFoundError("Menu item", item.menu_item_id)
    if not menu_item.available:
        raise ValidationError(f"Menu item '{menu_item.name}' is not available")

    unit_price = Decimal(menu_item.price)
    return OrderItem(
        menu_item_id=menu_item.id,
        menu_item_name=menu_item.name,
        quantity=item.quantity,
        unit_price=unit_price,
        total_price=quantize_money(unit_price * item.quantity),
        cost_price=compute_item_cost(session, menu_item.id, item.quantity),
        notes=item.notes,
        status=status,
    )


def recompute_totals(order: Order) -> None:
    """subtotal from every line (confirmed and pending); tax and total follow."""
    subtotal = sum((Decimal(item.total_price) for item in order.items), Decimal("0"))
    order.subtotal = quantize_money(subtotal)
    order.tax = quantize_money(order.subtotal * settings.tax_rate)
    order.total = quantize_money(order.subtotal + order.tax - Decimal(order.discount or 0))


def get_order(session: Session, order_id: int, for_update: bool = False) -> Order:
    statement = select(Order).where(Order.id == order_id)
    if for_update:
        statement = statement.with_for_update()
    order = session.exec(statement).first()
    if not order:
        raise NotFoundError("Order", order_id)
    return order


def get_order_by_number(session: Session, order_number: int, for_update: bool = False) -> Order | None:
    statement = select(Order).where(Order.order_number == order_number)
    if for_update:
        statement = statement.with_for_update()
    return session.exec(statement).first()


def get_active_order_for_table(session: Session, table_id: int) -> Order | None:
    """Latest order on the table that is neither completed nor cancelled."""
    statement = (
        select(Order)
        .where(Order.table_id == table_id)
        .where(Order.status.not_in(TERMINAL_STATUSES))
        .order_by(Order.created_at.desc(), Order.id.desc())
    )
    return session.exec(statement).first()


def list_orders(
    session: Session,
    status: OrderStatus | None = None,
    payment_status: PaymentStatus | None = None,
    today: bool = False,
) -> list[Order]:
    statement = select(Order).order_by(Order.created_at.desc(), Order.id.desc())
    if status:
        statement = statement.where(Order.status == status)
    if payment_status:
        statement = statement.where(Order.payment_status == payment_status)
    orders = list(session.exec(statement).all())

    if today:
        start = _period_starts(datetime.now(timezone.utc))["today"]
        orders = [o for o in orders if _as_utc(o.created_at) >= start]
    return orders


# ============ ORDER BUILDER ============

def create_order(session: Session, order_data: OrderCreate) -> Order:
    if not order_data.items:
        raise ValidationError("Order must have at least one item")

    with transaction(session):
        table = None
        if order_data.table_id is not None:
            # Row lock serializes concurrent orders for the same table
            table = session.exec(
                select(Table).where(Table.id == order_data.table_id).with_for_update()
            ).first()
            if not table:
                raise ValidationError(f"Table {order_data.table_id} does not exist")
            active = get_active_order_for_table(session, table.id)
            if active:
                raise InvalidStateError(
                    f"Table {table.number} already has active order #{active.order_number}"
                )

        if order_data.customer_id is not None and not session.get(Customer, order_data.customer_id):
            raise ValidationError(f"Customer {order_data.customer_id} does not exist")

        lines = [
            _build_order_item(session, item, OrderItemStatus.confirmed)
            for item in order_data.items
        ]

        order = Order(
            order_number=next_order_number(session),
            table_id=order_data.table_id,
            customer_id=order_data.customer_id,
            notes=order_data.notes,
        )
        order.items.extend(lines)
        recompute_totals(order)
        session.add(order)

        if table:
            order_state.occupy_table(session, table)

    session.refresh(order)
    logger.info(
        f"Order #{order.order_number} created: {len(lines)} lines, total {order.total}"
        + (f", table {table.number}" if table else "")
    )
    return order


# ============ ITEM ADDITION / CONFIRMATION ============

def add_items_to_order(
    session: Session,
    order_id: int,
    items: list[OrderItemCreate],
    notes: str | None = None,
) -> Order:
    """
    Append items awaiting staff confirmation; totals include them right away.
    `notes` are appended to the order notes in the same transaction.
    """
    if not items:
        raise ValidationError("At least one item is required")

    with transaction(session):
        order = get_order(session, order_id, for_update=True)
        if order.status in TERMINAL_STATUSES:
            raise InvalidStateError(f"Cannot add items to a {order.status.value} order")
        if order.payment_status != PaymentStatus.unpaid:
            raise InvalidStateError(f"Cannot add items to a {order.payment_status.value} order")

        for item in items:
            order.items.append(_build_order_item(session, item, OrderItemStatus.pending_confirm))
        recompute_totals(order)
        if notes:
            order.notes = f"{order.notes or ''}\n{notes}".strip()
        order.updated_at = datetime.now(timezone.utc)
        session.add(order)

    session.refresh(order)
    logger.info(f"Order #{order.order_number}: {len(items)} item(s) added, awaiting confirmation")
    return order


def confirm_order_items(session: Session, order_id: int, item_ids: list[int] | None = None) -> Order:
    """Confirm the given pending lines, or every pending line when none are given."""
    with transaction(session):
        order = get_order(session, order_id, for_update=True)
        wanted = set(item_ids or [])
        confirmed = 0
        for item in order.items:
            if item.status != OrderItemStatus.pending_confirm:
                continue
            if wanted and item.id not in wanted:
                continue
            item.status = OrderItemStatus.confirmed
            session.add(item)
            confirmed += 1

    session.refresh(order)
    logger.info(f"Order #{order.order_number}: {confirmed} item(s) confirmed")
    return order


# ============ UPDATES ============

def apply_patch(session: Session, order_id: int, patch: StatusPatch, role: UserRole) -> Order:
    if all(value is None for value in (patch.status, patch.payment_status, patch.payment_method, patch.notes)):
        raise ValidationError("Nothing to update")

    # Validate enum values before touching anything
    new_status = order_state.parse_order_status(patch.status) if patch.status is not None else None
    new_payment_status = (
        order_state.parse_payment_status(patch.payment_status)
        if patch.payment_status is not None else None
    )

    with transaction(session):
        order = get_order(session, order_id, for_update=True)

        # Payment first so "paid + completed" can arrive in one request
        if new_payment_status is not None:
            order_state.apply_payment_change(session, order, new_payment_status, patch.payment_method, role)
        elif patch.payment_method is not None:
            order_state.set_payment_method(order, patch.payment_method, role)

        if new_status is not None:
            order_state.apply_status_change(session, order, new_status, role)

        if patch.notes is not None:
            order.notes = patch.notes

        order.updated_at = datetime.now(timezone.utc)
        session.add(order)

    session.refresh(order)
    return order


def update_order(
    session: Session,
    order_id: int,
    patch: StatusPatch | AddItemsRequest | ConfirmItemsRequest,
    role: UserRole,
) -> Order:
    if isinstance(patch, AddItemsRequest):
        return add_items_to_order(session, order_id, patch.add_items)
    if isinstance(patch, ConfirmItemsRequest):
        return confirm_order_items(session, order_id, patch.item_ids)
    return apply_patch(session, order_id, patch, role)


def delete_order(session: Session, order_id: int) -> None:
    """Hard delete (admin only). Frees the table first."""
    with transaction(session):
        order = get_order(session, order_id, for_update=True)
        order_number = order.order_number
        order_state.release_table(session, order.table_id)
        for item in list(order.items):
            session.delete(item)
        session.delete(order)
    logger.info(f"Order #{order_number} deleted")


def submit_table_order(session: Session, table_token: str, order_data: PublicOrderCreate) -> tuple[Order, bool]:
    """
    Self-service order from a table QR page. Appends to the table's open
    order when there is one, otherwise starts a new order. An open order that
    is already paid blocks the table until staff close it.
    Returns (order, created).
    """
    table = session.exec(select(Table).where(Table.token == table_token)).first()
    if not table:
        raise NotFoundError("Table", table_token)

    active = get_active_order_for_table(session, table.id)
    if active and active.payment_status != PaymentStatus.unpaid:
        raise InvalidStateError(
            f"Table {table.number} has order #{active.order_number} already "
            f"{active.payment_status.value} but still open; staff must close it before new orders"
        )
    if active:
        order = add_items_to_order(session, active.id, order_data.items, notes=order_data.notes)
        return order, False

    order = create_order(session, OrderCreate(
        items=order_data.items,
        table_id=table.id,
        notes=order_data.notes,
    ))
    return order, True


# ============ REPORTING ============

def _period_starts(now: datetime) -> dict[str, datetime]:
    local_now = now.astimezone(ZoneInfo(settings.timezone_name))
    day_start = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    return {
        "today": day_start,
        "month": day_start.replace(day=1),
        "year": day_start.replace(month=1, day=1),
    }


def order_stats(session: Session, now: datetime | None = None) -> dict:
    """Sales, ingredient cost and profit of paid, completed orders."""
    now = now or datetime.now(timezone.utc)
    orders = session.exec(
        select(Order)
        .where(Order.status == OrderStatus.completed)
        .where(Order.payment_status == PaymentStatus.paid)
    ).all()

    result = {}
    for period, start in _period_starts(now).items():
        selected = [o for o in orders if _as_utc(o.created_at) >= start]
        sales = sum((Decimal(o.total) for o in selected), Decimal("0"))
        cost = sum(
            (Decimal(item.cost_price) for o in selected for item in o.items),
            Decimal("0"),
        )
        result[period] = {
            "sales": float(sales),
            "cost": float(cost),
            "profit": float(sales - cost),
            "count": len(selected),
        }
    return result


def sweep_stale_orders(session: Session, older_than_minutes: int, now: datetime | None = None) -> list[Order]:
    """Cancel unpaid orders stuck in `pending` and free their tables."""
    if older_than_minutes <= 0:
        return []

    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(minutes=older_than_minutes)

    with transaction(session):
        candidates = session.exec(
            select(Order)
            .where(Order.status == OrderStatus.pending)
            .where(Order.payment_status == PaymentStatus.unpaid)
            .with_for_update()
        ).all()
        stale = [o for o in candidates if _as_utc(o.created_at) < cutoff]
        for order in stale:
            order.status = OrderStatus.cancelled
            order.cancelled_at = now
            order.updated_at = now
            order.notes = (
                f"{order.notes or ''}\n[Auto-cancelled] pending for more than {older_than_minutes} minutes"
            ).strip()
            order_state.release_table(session, order.table_id)
            session.add(order)

    if stale:
        logger.info(f"Stale sweep cancelled {len(stale)} order(s): {[o.order_number for o in stale]}")
    return stale


def serialize_order(order: Order) -> dict:
    table = order.table
    customer = order.customer
    return {
        "id": order.id,
        "order_number": order.order_number,
        "status": order.status.value,
        "payment_status": order.payment_status.value,
        "payment_method": order.payment_method,
        "subtotal": float(order.subtotal),
        "tax": float(order.tax),
        "discount": float(order.discount),
        "total": float(order.total),
        "notes": order.notes,
        "table_id": order.table_id,
        "customer_id": order.customer_id,
        "created_at": order.created_at.isoformat(),
        "updated_at": order.updated_at.isoformat() if order.updated_at else None,
        "paid_at": order.paid_at.isoformat() if order.paid_at else None,
        "items": [
            {
                "id": item.id,
                "menu_item_id": item.menu_item_id,
                "menu_item_name": item.menu_item_name,
                "quantity": item.quantity,
                "unit_price": float(item.unit_price),
                "total_price": float(item.total_price),
                "cost_price": float(item.cost_price),
                "notes": item.notes,
                "status": item.status.value,
            }
            for item in order.items
        ],
        "table": {
            "id": table.id,
            "number": table.number,
            "name": table.name,
            "zone_id": table.zone_id,
            "status": table.status.value,
        } if table else None,
        "customer": {
            "id": customer.id,
            "name": customer.name,
            "phone": customer.phone,
        } if customer else None,
    }
