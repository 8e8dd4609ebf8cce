# Overview: Product stock collaborator consulted on order confirmation and sale reversal.

from __future__ import annotations

from ..errors import InvalidAmountError, InvalidStateTransitionError, ValidationError
from ..extensions import db
from ..models import Order, Product, StockMovement
from ..models.inventory import MOVEMENT_ADJUSTMENT, MOVEMENT_IN, MOVEMENT_OUT
from ..money import to_money
from . import ledger_store


def create_product(name: str, price, stock: int = 0, sku: str | None = None) -> Product:
    if not name or not name.strip():
        raise ValidationError("Product name is required")
    if isinstance(stock, bool) or not isinstance(stock, int) or stock < 0:
        raise ValidationError("Initial stock must be a non-negative integer")
    if to_money(price) < 0:
        raise InvalidAmountError("Price cannot be negative")
    product = Product(name=name.strip(), price=to_money(price), stock=stock, sku=sku)
    with ledger_store.atomic():
        db.session.add(product)
    return product


def _move(product: Product, movement_type: str, quantity: int, reason: str, reference: str | None) -> StockMovement:
    previous = product.stock
    delta = quantity if movement_type == MOVEMENT_IN else -quantity
    new_stock = previous + delta
    if new_stock < 0:
        raise InvalidStateTransitionError(
            f"Insufficient stock for {product.name}: {previous} on hand, {quantity} requested"
        )
    product.stock = new_stock
    movement = StockMovement(
        product_id=product.id,
        movement_type=movement_type,
        quantity=quantity,
        previous_stock=previous,
        new_stock=new_stock,
        reason=reason,
        reference=reference,
    )
    db.session.add(movement)
    return movement


def consume_order_stock(order: Order) -> list[StockMovement]:
    """Deduct stock for every item of a confirmed order (once per order)."""
    if order.stock_applied:
        return []
    movements = []
    for item in order.items:
        product = ledger_store.get_product(item.product_id, for_update=True)
        movements.append(_move(product, MOVEMENT_OUT, item.quantity, "order_confirmed", order.order_number))
    order.stock_applied = True
    db.session.flush()
    return movements


def restore_order_stock(order: Order, reason: str) -> list[StockMovement]:
    """Put back the quantities of an order whose stock had been deducted."""
    if not order.stock_applied:
        return []
    movements = []
    for item in order.items:
        product = ledger_store.get_product(item.product_id, for_update=True)
        movements.append(_move(product, MOVEMENT_IN, item.quantity, reason, order.order_number))
    order.stock_applied = False
    db.session.flush()
    return movements


def adjust_stock(product_id: int, new_stock: int, reason: str | None = None) -> StockMovement:
    """Manual count correction; records the delta as an adjustment movement."""
    if isinstance(new_stock, bool) or not isinstance(new_stock, int) or new_stock < 0:
        raise ValidationError("Stock must be a non-negative integer")
    with ledger_store.atomic():
        product = ledger_store.get_product(product_id, for_update=True)
        previous = product.stock
        product.stock = new_stock
        movement = StockMovement(
            product_id=product.id,
            movement_type=MOVEMENT_ADJUSTMENT,
            quantity=abs(new_stock - previous),
            previous_stock=previous,
            new_stock=new_stock,
            reason=reason or "manual_adjustment",
        )
        db.session.add(movement)
    return movement
