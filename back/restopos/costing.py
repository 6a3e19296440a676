"""
Cost Calculator

Ingredient-derived cost of menu items, from the bill of materials
(MenuItemIngredient). Order lines snapshot this value at order time; it is
never recomputed for historical orders.
"""

from decimal import ROUND_HALF_UP, Decimal

from sqlmodel import Session, select

from .errors import NotFoundError, ValidationError
from .models import Ingredient, MenuItem, MenuItemIngredient

CENT = Decimal("0.01")


def quantize_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def get_recipe_for_menu_item(session: Session, menu_item_id: int) -> list[tuple[MenuItemIngredient, Ingredient]]:
    """Get all recipe lines of a menu item with their ingredient."""
    statement = (
        select(MenuItemIngredient, Ingredient)
        .join(Ingredient, Ingredient.id == MenuItemIngredient.ingredient_id)
        .where(MenuItemIngredient.menu_item_id == menu_item_id)
        .order_by(MenuItemIngredient.id)
    )
    return list(session.exec(statement).all())


def menu_item_unit_cost(session: Session, menu_item: MenuItem) -> Decimal:
    """Cost of one unit: sum of ingredient cost price x recipe quantity."""
    total = Decimal("0")
    for link, ingredient in get_recipe_for_menu_item(session, menu_item.id):
        total += Decimal(ingredient.cost_price) * Decimal(link.quantity)
    return total


def compute_item_cost(session: Session, menu_item_id: int, quantity: int) -> Decimal:
    """Total ingredient cost for `quantity` units of a menu item."""
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")

    menu_item = session.get(MenuItem, menu_item_id)
    if not menu_item:
        raise NotFoundError("Menu item", menu_item_id)

    return quantize_money(menu_item_unit_cost(session, menu_item) * quantity)


def calculate_menu_item_cost(session: Session, menu_item_id: int) -> dict:
    """
    Per-ingredient cost breakdown of one unit of a menu item, with the margin
    against its current selling price.
    """
    menu_item = session.get(MenuItem, menu_item_id)
    if not menu_item:
        raise NotFoundError("Menu item", menu_item_id)

    ingredients_cost = []
    total_cost = Decimal("0")

    for link, ingredient in get_recipe_for_menu_item(session, menu_item_id):
        line_cost = Decimal(ingredient.cost_price) * Decimal(link.quantity)
        ingredients_cost.append({
            "ingredient_id": ingredient.id,
            "name": ingredient.name,
            "unit": ingredient.unit,
            "quantity": float(link.quantity),
            "cost": float(quantize_money(line_cost)),
        })
        total_cost += line_cost

    total_cost = quantize_money(total_cost)
    price = Decimal(menu_item.price)
    return {
        "menu_item_id": menu_item.id,
        "name": menu_item.name,
        "price": float(price),
        "ingredients": ingredients_cost,
        "total_cost": float(total_cost),
        "margin": float(price - total_cost),
    }
