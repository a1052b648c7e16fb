from __future__ import annotations

import logging
from typing import Iterable, List, Tuple

from sqlalchemy import case, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.errors import VariantNotFound
from storefront.models import Product, ProductVariant
from storefront.observability import increment_counter, record_event
from storefront.services.cart_service import CartLine, resolve_variant


def _clamped_decrement(column, quantity: int):
    """``column - quantity`` floored at zero, evaluated inside the UPDATE."""
    return case((column >= quantity, column - quantity), else_=0)


class InventoryService:
    """
    Stock adjustments triggered by completed checkouts.

    Every decrement is a single ``UPDATE ... SET stock = CASE ...`` so
    concurrent checkouts against the same row serialize in the database and
    can never drive stock below zero.
    """

    def __init__(self, db_session: Session) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)

    def adjust_for_order(self, order_id: str, lines: Iterable[CartLine]) -> List[Tuple[int, bool]]:
        """
        Decrement stock for each cart line of an accepted order.

        Failures are logged and counted; they never propagate because the
        order has already been committed. Returns ``(product_id, ok)`` pairs.
        """
        outcomes: List[Tuple[int, bool]] = []
        for line in lines:
            ok = self._adjust_line(order_id, line)
            outcomes.append((line.product_id, ok))
        return outcomes

    def decrease_stock(self, product_id: int, quantity: int) -> bool:
        """Atomically decrement base stock. Returns False if the product is gone."""
        result = self.db.execute(
            update(Product)
            .where(Product.productID == product_id)
            .values(stock=_clamped_decrement(Product.stock, quantity))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def decrease_variant_stock(self, variant_id: int, quantity: int) -> bool:
        """Atomically decrement a size/color variant's stock."""
        result = self.db.execute(
            update(ProductVariant)
            .where(ProductVariant.variantID == variant_id)
            .values(stock=_clamped_decrement(ProductVariant.stock, quantity))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _adjust_line(self, order_id: str, line: CartLine) -> bool:
        try:
            product = self.db.query(Product).filter_by(productID=line.product_id).first()
            if product is None:
                self.logger.warning(
                    "Product %s vanished before stock adjustment",
                    line.product_id,
                    extra={"order_id": order_id},
                )
                increment_counter("inventory_adjust_failures_total", labels={"reason": "missing_product"})
                return False

            variant = resolve_variant(product, line)
            if variant is not None:
                changed = self.decrease_variant_stock(variant.variantID, line.quantity)
                target = f"{variant.kind.value}:{variant.name}"
            else:
                changed = self.decrease_stock(product.productID, line.quantity)
                target = "base"
            self.db.commit()
        except (SQLAlchemyError, VariantNotFound) as exc:
            self.db.rollback()
            self.logger.error(
                "Stock adjustment failed for product %s: %s",
                line.product_id,
                exc,
                extra={"order_id": order_id, "quantity": line.quantity},
            )
            increment_counter("inventory_adjust_failures_total", labels={"reason": "error"})
            return False

        record_event(
            "inventory_decremented",
            {
                "order_id": order_id,
                "product_id": line.product_id,
                "target": target,
                "quantity": line.quantity,
            },
        )
        self.logger.info(
            "Stock decreased for product %d (%s) by %d",
            line.product_id,
            target,
            line.quantity,
            extra={"order_id": order_id},
        )
        return changed
