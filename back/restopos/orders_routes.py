"""
Order API Routes

- Staff order endpoints (create, read, patch, delete, stats)
- Public table endpoints used by the QR self-ordering page
"""
from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, Query, status
from pydantic import ValidationError as PydanticValidationError
from sqlmodel import Session, select

from . import order_service, permissions
from .db import get_session
from .errors import NotFoundError, ValidationError
from .events import publish_order_update
from .models import (
    AddItemsRequest,
    ConfirmItemsRequest,
    OrderCreate,
    OrderStatus,
    PaymentStatus,
    PublicOrderCreate,
    Table,
    User,
    UserRole,
    parse_update_patch,
)
from .security import RoleChecker, get_current_user
from .settings import settings

router = APIRouter()

require_admin = RoleChecker(UserRole.owner, UserRole.manager)


# ============ STAFF ============

@router.get("/orders")
def list_orders(
    current_user: Annotated[User, Depends(get_current_user)],
    session: Session = Depends(get_session),
    status_filter: OrderStatus | None = Query(None, alias="status"),
    payment_status: PaymentStatus | None = None,
    today: bool = False,
    table_id: int | None = None,
    active_only: bool = False,
) -> dict:
    # Active order of one table, used to append to an open bill
    if table_id is not None and active_only:
        order = order_service.get_active_order_for_table(session, table_id)
        return {"order": order_service.serialize_order(order) if order else None}

    orders = order_service.list_orders(session, status=status_filter, payment_status=payment_status, today=today)
    if table_id is not None:
        orders = [o for o in orders if o.table_id == table_id]
    return {"orders": [order_service.serialize_order(o) for o in orders]}


@router.get("/orders/stats")
def get_order_stats(
    current_user: Annotated[User, Depends(require_admin)],
    session: Session = Depends(get_session),
) -> dict:
    return order_service.order_stats(session)


@router.post("/orders/sweep-stale")
def sweep_stale_orders(
    current_user: Annotated[User, Depends(require_admin)],
    session: Session = Depends(get_session),
    older_than_minutes: int | None = None,
) -> dict:
    """Cancel pending orders nobody picked up. Off unless configured."""
    minutes = older_than_minutes if older_than_minutes is not None else settings.stale_order_minutes
    cancelled = order_service.sweep_stale_orders(session, minutes)
    for order in cancelled:
        publish_order_update("status_update", order)
    return {"cancelled": [o.order_number for o in cancelled], "older_than_minutes": minutes}


@router.post("/orders", status_code=status.HTTP_201_CREATED)
def create_order(
    order_data: OrderCreate,
    current_user: Annotated[User, Depends(get_current_user)],
    session: Session = Depends(get_session),
) -> dict:
    order = order_service.create_order(session, order_data)
    publish_order_update("new_order", order)
    return {"order": order_service.serialize_order(order)}


@router.get("/orders/{order_id}")
def get_order(
    order_id: int,
    current_user: Annotated[User, Depends(get_current_user)],
    session: Session = Depends(get_session),
) -> dict:
    order = order_service.get_order(session, order_id)
    return {"order": order_service.serialize_order(order)}


@router.get("/orders/{order_id}/allowed-transitions")
def get_allowed_transitions(
    order_id: int,
    current_user: Annotated[User, Depends(get_current_user)],
    session: Session = Depends(get_session),
) -> dict:
    """What the current user may do with this order, for UI gating."""
    order = order_service.get_order(session, order_id)
    return {
        "order_id": order.id,
        "role": current_user.role.value,
        "status": [s.value for s in permissions.allowed_status_targets(
            current_user.role, order.status, order.payment_status
        )],
        "payment_status": [s.value for s in permissions.allowed_payment_targets(
            current_user.role, order.payment_status
        )],
    }


@router.put("/orders/{order_id}")
def update_order(
    order_id: int,
    current_user: Annotated[User, Depends(get_current_user)],
    body: dict[str, Any] = Body(...),
    session: Session = Depends(get_session),
) -> dict:
    """
    One of three modes per call:
    - {"add_items": [...]} appends items awaiting confirmation
    - {"confirm_items": true, "item_ids": [...]} confirms pending items
    - {"status", "payment_status", "payment_method", "notes"} plain patch
    """
    try:
        patch = parse_update_patch(body)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid update: {e.errors(include_url=False)}")

    order = order_service.update_order(session, order_id, patch, current_user.role)

    if isinstance(patch, AddItemsRequest):
        event = "items_added"
    elif isinstance(patch, ConfirmItemsRequest):
        event = "items_confirmed"
    else:
        event = "status_update"
    publish_order_update(event, order)
    return {"order": order_service.serialize_order(order)}


@router.delete("/orders/{order_id}")
def delete_order(
    order_id: int,
    current_user: Annotated[User, Depends(require_admin)],
    session: Session = Depends(get_session),
) -> dict:
    order_service.delete_order(session, order_id)
    return {"status": "deleted", "order_id": order_id}


# ============ PUBLIC (table QR) ============

@router.get("/menu/{table_token}/order")
def get_table_order(
    table_token: str,
    session: Session = Depends(get_session),
) -> dict:
    """Public endpoint - the table's open order, if any."""
    table = session.exec(select(Table).where(Table.token == table_token)).first()
    if not table:
        raise NotFoundError("Table", table_token)
    order = order_service.get_active_order_for_table(session, table.id)
    return {
        "table": {"id": table.id, "number": table.number, "name": table.name},
        "order": order_service.serialize_order(order) if order else None,
    }


@router.post("/menu/{table_token}/order")
def submit_table_order(
    table_token: str,
    order_data: PublicOrderCreate,
    session: Session = Depends(get_session),
) -> dict:
    """Public endpoint - create or add to the table's order."""
    order, created = order_service.submit_table_order(session, table_token, order_data)
    publish_order_update("new_order" if created else "items_added", order)
    return {
        "status": "created" if created else "updated",
        "order": order_service.serialize_order(order),
    }
