from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session, selectinload

from storefront.errors import (
    InsufficientStock,
    InvalidCartLine,
    InvalidQuantity,
    ProductNotFound,
    VariantNotFound,
)
from storefront.models import Product, ProductVariant, VariantKind, to_money


@dataclass(frozen=True)
class CartLine:
    """One client-supplied cart line. Prices are never taken from the client."""

    product_id: int
    quantity: int
    size: Optional[str] = None
    color: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "CartLine":
        if not isinstance(payload, dict):
            raise InvalidCartLine("Each cart item must be an object")

        raw_product_id = payload.get("product_id", payload.get("id"))
        try:
            product_id = int(raw_product_id)
        except (TypeError, ValueError):
            raise InvalidCartLine(
                "Each cart item must reference a product",
                details={"product_id": raw_product_id},
            )

        quantity = payload.get("quantity")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidQuantity(
                f"Quantity for product {product_id} must be a positive integer",
                details={"product_id": product_id, "quantity": quantity},
            )

        return cls(
            product_id=product_id,
            quantity=quantity,
            size=_clean_option(payload.get("size")),
            color=_clean_option(payload.get("color")),
        )


@dataclass(frozen=True)
class PricedLine:
    line: CartLine
    unit_price: Decimal
    subtotal: Decimal
    product_name: str


@dataclass(frozen=True)
class CartValidation:
    subtotal: Decimal
    lines: List[PricedLine]


class CartValidator:
    """Checks every cart line against the catalogue and prices it from stored data."""

    def __init__(self, db_session: Session) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)

    def validate(self, lines: Iterable[CartLine]) -> CartValidation:
        lines = list(lines)
        products = self._load_products({line.product_id for line in lines})

        subtotal = Decimal("0.00")
        priced: List[PricedLine] = []
        # Quantity already claimed per stock counter by earlier lines
        requested: Dict[Tuple[str, int], int] = {}
        for line in lines:
            product = products.get(line.product_id)
            if product is None:
                raise ProductNotFound(
                    f"Product {line.product_id} not found",
                    details={"product_id": line.product_id},
                )

            stock_key, available, unit_price, label = self._stock_and_price(product, line)
            total_requested = requested.get(stock_key, 0) + line.quantity
            if total_requested > available:
                raise InsufficientStock(
                    f"Insufficient stock for {label}",
                    details={
                        "product_id": product.productID,
                        "requested": total_requested,
                        "available": available,
                    },
                )
            requested[stock_key] = total_requested

            line_subtotal = to_money(unit_price * line.quantity)
            subtotal += line_subtotal
            priced.append(
                PricedLine(
                    line=line,
                    unit_price=unit_price,
                    subtotal=line_subtotal,
                    product_name=product.name,
                )
            )

        self.logger.debug("Cart validated", extra={"lines": len(priced), "subtotal": str(subtotal)})
        return CartValidation(subtotal=to_money(subtotal), lines=priced)

    def _load_products(self, product_ids) -> Dict[int, Product]:
        if not product_ids:
            return {}
        rows = (
            self.db.query(Product)
            .options(selectinload(Product.variants))
            .filter(Product.productID.in_(product_ids))
            .all()
        )
        return {product.productID: product for product in rows}

    @staticmethod
    def _stock_and_price(product: Product, line: CartLine):
        variant = resolve_variant(product, line)
        if variant is not None:
            return (
                ("variant", variant.variantID),
                variant.stock or 0,
                variant.unit_price(),
                f"{product.name} ({variant.name})",
            )
        return ("product", product.productID), product.stock or 0, to_money(product.price), product.name


def resolve_variant(product: Product, line: CartLine) -> Optional[ProductVariant]:
    """
    Return the variant whose stock governs ``line``, or None for base stock.

    A selected size (or, failing that, color) is matched against the product's
    variants of that kind. Products that define no variants of the selected
    kind fall back to base stock.
    """
    for kind, option in ((VariantKind.SIZE, line.size), (VariantKind.COLOR, line.color)):
        if not option or not product.variants_of(kind):
            continue
        variant = product.find_variant(kind, option)
        if variant is None:
            raise VariantNotFound(
                f"{kind.value.capitalize()} '{option}' is not available for {product.name}",
                details={"product_id": product.productID, kind.value: option},
            )
        return variant
    return None


def _clean_option(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None
