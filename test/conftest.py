import os

# Must be set before restopos.settings is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = ""
os.environ["VNP_TMN_CODE"] = "TESTCODE"
os.environ["VNP_HASH_SECRET"] = "TESTSECRET0123456789"
os.environ["TAX_RATE"] = "0.08"

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, select

from restopos import order_service
from restopos.db import engine, get_session
from restopos.main import app
from restopos.models import (
    Ingredient,
    MenuItem,
    MenuItemIngredient,
    Order,
    OrderCreate,
    OrderItemCreate,
    OrderStatus,
    PaymentStatus,
    Table,
    User,
    UserRole,
)
from restopos.security import get_current_user


@pytest.fixture
def session():
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def make_table(session):
    def _make(number: int = 1, **kwargs) -> Table:
        table = Table(number=number, name=f"Table {number}", **kwargs)
        session.add(table)
        session.commit()
        session.refresh(table)
        return table
    return _make


@pytest.fixture
def make_menu_item(session):
    """Menu item with an optional recipe: [(name, cost_price, quantity), ...]."""
    def _make(name: str, price, recipe=(), available: bool = True) -> MenuItem:
        menu_item = MenuItem(name=name, price=Decimal(str(price)), available=available)
        session.add(menu_item)
        session.flush()
        for ingredient_name, cost_price, quantity in recipe:
            ingredient = Ingredient(name=ingredient_name, cost_price=Decimal(str(cost_price)))
            session.add(ingredient)
            session.flush()
            session.add(MenuItemIngredient(
                menu_item_id=menu_item.id,
                ingredient_id=ingredient.id,
                quantity=Decimal(str(quantity)),
            ))
        session.commit()
        session.refresh(menu_item)
        return menu_item
    return _make


@pytest.fixture
def make_order(session):
    def _make(lines, table: Table | None = None, **kwargs) -> Order:
        return order_service.create_order(session, OrderCreate(
            items=[OrderItemCreate(menu_item_id=m.id, quantity=q) for m, q in lines],
            table_id=table.id if table else None,
            **kwargs,
        ))
    return _make


@pytest.fixture
def force_state(session):
    """Put an order straight into a state, bypassing the state machine."""
    def _force(order: Order, status: OrderStatus | None = None,
               payment_status: PaymentStatus | None = None, payment_method: str | None = None) -> Order:
        if status is not None:
            order.status = status
        if payment_status is not None:
            order.payment_status = payment_status
        if payment_method is not None:
            order.payment_method = payment_method
        session.add(order)
        session.commit()
        session.refresh(order)
        return order
    return _force


@pytest.fixture
def client(session):
    def _get_session():
        yield session

    app.dependency_overrides[get_session] = _get_session
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def login_as(session, client):
    """Switch the API client to a user of the given role."""
    def _login(role: UserRole) -> User:
        email = f"{role.value}@test.local"
        user = session.exec(select(User).where(User.email == email)).first()
        if user is None:
            user = User(email=email, hashed_password="x", full_name=role.value.title(), role=role)
            session.add(user)
            session.commit()
            session.refresh(user)
        app.dependency_overrides[get_current_user] = lambda: user
        return user
    return _login
