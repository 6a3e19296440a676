"""
Seed a demo restaurant: staff for every role, zones, tables, ingredients and
menu items with recipes.

Usage:
    python -m restopos.seeds.demo
    python -m restopos.seeds.demo --password secret123
"""
import argparse
from decimal import Decimal

from sqlmodel import Session, select

from restopos.db import create_db_and_tables, engine
from restopos.models import (
    Category,
    Ingredient,
    MenuItem,
    MenuItemIngredient,
    Table,
    User,
    UserRole,
    Zone,
)
from restopos.security import get_password_hash

STAFF = [
    ("owner@restopos.local", "Owner", UserRole.owner),
    ("manager@restopos.local", "Manager", UserRole.manager),
    ("waiter@restopos.local", "Waiter", UserRole.waiter),
    ("kitchen@restopos.local", "Kitchen", UserRole.kitchen),
    ("cashier@restopos.local", "Cashier", UserRole.cashier),
]

ZONES = {"Main Hall": [1, 2, 3, 4], "VIP": [10, 11], "Outdoor": [20, 21, 22]}

# name -> (unit, cost per unit)
INGREDIENTS = {
    "Rice noodles": ("kg", Decimal("30000")),
    "Beef": ("kg", Decimal("250000")),
    "Chicken": ("kg", Decimal("90000")),
    "Herbs": ("kg", Decimal("40000")),
    "Broth": ("liter", Decimal("15000")),
    "Coffee beans": ("kg", Decimal("300000")),
    "Condensed milk": ("liter", Decimal("60000")),
}

# category -> [(name, price, {ingredient: quantity per serving})]
MENU = {
    "Noodles": [
        ("Pho bo", Decimal("50000"), {"Rice noodles": "0.15", "Beef": "0.08", "Herbs": "0.02", "Broth": "0.4"}),
        ("Pho ga", Decimal("45000"), {"Rice noodles": "0.15", "Chicken": "0.1", "Herbs": "0.02", "Broth": "0.4"}),
    ],
    "Drinks": [
        ("Ca phe sua da", Decimal("30000"), {"Coffee beans": "0.02", "Condensed milk": "0.03"}),
        ("Tra da", Decimal("5000"), {}),
    ],
}


def seed_demo(password: str) -> None:
    print("Seeding demo restaurant...")
    create_db_and_tables()

    with Session(engine) as session:
        for email, name, role in STAFF:
            if session.exec(select(User).where(User.email == email)).first():
                print(f"  User {email} already exists")
                continue
            session.add(User(
                email=email,
                full_name=name,
                role=role,
                hashed_password=get_password_hash(password),
            ))
            print(f"  Created user: {email} ({role.value})")

        for sort_order, (zone_name, numbers) in enumerate(ZONES.items()):
            zone = session.exec(select(Zone).where(Zone.name == zone_name)).first()
            if not zone:
                zone = Zone(name=zone_name, sort_order=sort_order)
                session.add(zone)
                session.flush()
            for number in numbers:
                if session.exec(select(Table).where(Table.number == number)).first():
                    continue
                session.add(Table(number=number, name=f"Table {number}", zone_id=zone.id))
            print(f"  Zone {zone_name}: tables {numbers}")

        if session.exec(select(MenuItem)).first():
            session.commit()
            print("Menu already seeded, skipping ingredients and menu items")
            return

        ingredients = {}
        for name, (unit, cost) in INGREDIENTS.items():
            ingredient = Ingredient(name=name, unit=unit, cost_price=cost)
            session.add(ingredient)
            ingredients[name] = ingredient
        session.flush()

        for sort_order, (category_name, items) in enumerate(MENU.items()):
            category = Category(name=category_name, sort_order=sort_order)
            session.add(category)
            session.flush()
            for name, price, recipe in items:
                menu_item = MenuItem(name=name, price=price, category_id=category.id)
                session.add(menu_item)
                session.flush()
                for ingredient_name, quantity in recipe.items():
                    session.add(MenuItemIngredient(
                        menu_item_id=menu_item.id,
                        ingredient_id=ingredients[ingredient_name].id,
                        quantity=Decimal(quantity),
                    ))
                print(f"  Created menu item: {category_name} > {name} ({price})")

        session.commit()

    print("\nComplete!")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed demo restaurant data")
    parser.add_argument("--password", default="demo1234", help="Password for every demo user")
    args = parser.parse_args()
    seed_demo(args.password)
