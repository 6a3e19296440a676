from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Union
from uuid import uuid4

from pydantic import Discriminator, Tag, TypeAdapter
from sqlalchemy import Numeric, UniqueConstraint
from sqlmodel import Field, Relationship, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _money(default: Decimal = Decimal("0")):
    return Field(default=default, sa_type=Numeric(14, 2))


class OrderStatus(str, Enum):
    pending = "pending"
    confirmed = "confirmed"
    preparing = "preparing"
    ready = "ready"
    served = "served"
    completed = "completed"
    cancelled = "cancelled"


TERMINAL_STATUSES = (OrderStatus.completed, OrderStatus.cancelled)


class PaymentStatus(str, Enum):
    unpaid = "unpaid"
    paid = "paid"
    refunded = "refunded"


class OrderItemStatus(str, Enum):
    confirmed = "confirmed"
    pending_confirm = "pending_confirm"


class TableStatus(str, Enum):
    available = "available"
    occupied = "occupied"
    reserved = "reserved"
    unavailable = "unavailable"


class UserRole(str, Enum):
    owner = "owner"
    manager = "manager"
    waiter = "waiter"
    kitchen = "kitchen"
    cashier = "cashier"


class User(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True)
    hashed_password: str
    full_name: str | None = None
    role: UserRole = Field(default=UserRole.waiter)
    is_active: bool = Field(default=True)


class Zone(SQLModel, table=True):
    """Named group of tables (e.g., VIP, Outdoor). Display only."""
    id: int | None = Field(default=None, primary_key=True)
    name: str
    sort_order: int = Field(default=0)


class Table(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    number: int = Field(unique=True, index=True)
    name: str | None = None
    capacity: int = Field(default=4)
    status: TableStatus = Field(default=TableStatus.available, index=True)
    zone_id: int | None = Field(default=None, foreign_key="zone.id")
    # Printed on the table's QR code for self-service ordering
    token: str = Field(default_factory=lambda: str(uuid4()), unique=True, index=True)


class Category(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    name: str
    sort_order: int = Field(default=0)


class Ingredient(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    unit: str = Field(default="piece")  # kg, liter, piece...
    cost_price: Decimal = Field(default=Decimal("0"), sa_type=Numeric(14, 4))  # per unit


class MenuItemIngredient(SQLModel, table=True):
    """
    Bill of materials - how much of an ingredient one unit of a menu item consumes.
    """
    __tablename__ = "menu_item_ingredient"
    __table_args__ = (UniqueConstraint("menu_item_id", "ingredient_id"),)

    id: int | None = Field(default=None, primary_key=True)
    menu_item_id: int = Field(foreign_key="menuitem.id", index=True)
    ingredient_id: int = Field(foreign_key="ingredient.id", index=True)
    quantity: Decimal = Field(sa_type=Numeric(12, 4))

    menu_item: "MenuItem" = Relationship(back_populates="ingredients")
    ingredient: Ingredient = Relationship()


class MenuItem(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    name: str
    description: str | None = None
    price: Decimal = _money()
    category_id: int | None = Field(default=None, foreign_key="category.id", index=True)
    available: bool = Field(default=True)

    ingredients: list[MenuItemIngredient] = Relationship(back_populates="menu_item")


class Customer(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    name: str
    phone: str | None = Field(default=None, index=True)


class Counter(SQLModel, table=True):
    """Named monotonically increasing counters (order numbers)."""
    name: str = Field(primary_key=True)
    value: int = Field(default=0)


class Order(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    order_number: int = Field(unique=True, index=True)
    status: OrderStatus = Field(default=OrderStatus.pending, index=True)
    payment_status: PaymentStatus = Field(default=PaymentStatus.unpaid, index=True)
    payment_method: str | None = None  # 'cash', 'card', 'vnpay'...
    subtotal: Decimal = _money()
    tax: Decimal = _money()
    discount: Decimal = _money()
    total: Decimal = _money()
    notes: str | None = None
    table_id: int | None = Field(default=None, foreign_key="table.id", index=True)
    customer_id: int | None = Field(default=None, foreign_key="customer.id")
    created_at: datetime = Field(default_factory=_utcnow, index=True)
    updated_at: datetime = Field(default_factory=_utcnow)
    paid_at: datetime | None = None
    cancelled_at: datetime | None = None

    items: list["OrderItem"] = Relationship(
        back_populates="order",
        sa_relationship_kwargs={"order_by": "OrderItem.id"},
    )
    table: Table | None = Relationship()
    customer: Customer | None = Relationship()


class OrderItem(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    order_id: int = Field(foreign_key="order.id", index=True)
    menu_item_id: int = Field(foreign_key="menuitem.id")
    menu_item_name: str  # Snapshot of the name at order time
    quantity: int
    unit_price: Decimal = _money()  # Snapshot of the price at order time
    total_price: Decimal = _money()
    cost_price: Decimal = _money()  # Ingredient cost for the whole line, snapshot
    notes: str | None = None
    status: OrderItemStatus = Field(default=OrderItemStatus.confirmed, index=True)
    created_at: datetime = Field(default_factory=_utcnow)

    order: Order = Relationship(back_populates="items")


# Request/Response Models
class OrderItemCreate(SQLModel):
    menu_item_id: int
    quantity: int = Field(ge=1)
    notes: str | None = None


class OrderCreate(SQLModel):
    items: list[OrderItemCreate]
    table_id: int | None = None
    customer_id: int | None = None
    notes: str | None = None


class PublicOrderCreate(SQLModel):
    """Self-service order submitted from a table's QR page."""
    items: list[OrderItemCreate]
    notes: str | None = None


class PaymentCreate(SQLModel):
    order_id: int
    order_number: int | None = None
    amount: Decimal | None = None
    order_info: str | None = None
    bank_code: str | None = None
    language: str | None = None


# Order update patch: exactly one mode per call
class StatusPatch(SQLModel):
    status: str | None = None
    payment_status: str | None = None
    payment_method: str | None = None
    notes: str | None = None


class AddItemsRequest(SQLModel):
    add_items: list[OrderItemCreate]


class ConfirmItemsRequest(SQLModel):
    confirm_items: Literal[True]
    item_ids: list[int] | None = None


def _patch_mode(body) -> str:
    if isinstance(body, dict):
        if body.get("add_items"):
            return "add_items"
        if body.get("confirm_items") is True:
            return "confirm_items"
        return "patch"
    if isinstance(body, AddItemsRequest):
        return "add_items"
    if isinstance(body, ConfirmItemsRequest):
        return "confirm_items"
    return "patch"


UpdatePatch = Annotated[
    Union[
        Annotated[StatusPatch, Tag("patch")],
        Annotated[AddItemsRequest, Tag("add_items")],
        Annotated[ConfirmItemsRequest, Tag("confirm_items")],
    ],
    Discriminator(_patch_mode),
]

_update_patch_adapter = TypeAdapter(UpdatePatch)


def parse_update_patch(body: dict) -> StatusPatch | AddItemsRequest | ConfirmItemsRequest:
    """Turn a raw PUT /orders/{id} body into exactly one typed command."""
    return _update_patch_adapter.validate_python(body)
