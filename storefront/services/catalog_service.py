from __future__ import annotations

import logging
import re
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.models import Product, ProductVariant, VariantKind, parse_money
from storefront.observability import record_event

VARIANT_KEYS = ((VariantKind.SIZE, "sizes"), (VariantKind.COLOR, "colors"))
# Upper bound of the Integer stock columns
MAX_STOCK = 2_147_483_647


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug or "product"


class CatalogService:
    """Admin-side product creation and updates, including size and color variants."""

    def __init__(self, db_session: Session) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)

    def create_product(self, payload: Dict[str, Any]) -> Tuple[bool, str, Optional[Product]]:
        name = str(payload.get("name") or "").strip()
        if not name:
            return False, "Product name is required", None

        try:
            product = Product(
                name=name,
                slug=_text(payload.get("slug")) or slugify(name),
                description=payload.get("description"),
                price=_parse_price(payload.get("price")),
                stock=_parse_stock(payload.get("stock", 0)),
            )
            for kind, key in VARIANT_KEYS:
                product.variants.extend(self._build_variants(kind, _variant_entries(payload, key)))
        except ValueError as exc:
            return False, str(exc), None

        self.db.add(product)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return False, f"Product slug '{product.slug}' already exists", None
        except SQLAlchemyError as exc:
            self.db.rollback()
            self.logger.error("Error creating product %s: %s", name, exc)
            return False, "Failed to create product", None

        record_event("product_created", {"product_id": product.productID, "variants": len(product.variants)})
        return True, "Product created", product

    def update_product(self, product_id: Any, payload: Dict[str, Any]) -> Tuple[bool, str, Optional[Product]]:
        """
        Apply a partial update to a product.

        Only keys present in ``payload`` change. A new name re-derives the
        slug unless one is supplied. ``sizes`` / ``colors`` replace that
        kind's variant list: variants are matched by name and updated in
        place, new names are added and missing names are removed. A plain
        string entry for an existing variant leaves its stock and price alone.
        """
        if product_id in (None, ""):
            return False, "Product ID is required", None
        try:
            product = self.db.get(Product, int(product_id))
        except (TypeError, ValueError):
            product = None
        if product is None:
            return False, "Product not found", None

        try:
            if "name" in payload:
                name = _text(payload.get("name"))
                if not name:
                    raise ValueError("Product name is required")
                product.name = name
                if not _text(payload.get("slug")):
                    product.slug = slugify(name)
            if _text(payload.get("slug")):
                product.slug = _text(payload.get("slug"))
            if "description" in payload:
                product.description = payload.get("description")
            if "price" in payload:
                product.price = _parse_price(payload.get("price"))
            if "stock" in payload:
                product.stock = _parse_stock(payload.get("stock"))
            for kind, key in VARIANT_KEYS:
                if key in payload:
                    self._merge_variants(product, kind, _variant_entries(payload, key))
        except ValueError as exc:
            self.db.rollback()
            return False, str(exc), None

        slug = product.slug
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return False, f"Product slug '{slug}' already exists", None
        except SQLAlchemyError as exc:
            self.db.rollback()
            self.logger.error("Error updating product %s: %s", product_id, exc)
            return False, "Failed to update product", None

        record_event("product_updated", {"product_id": product.productID, "fields": sorted(payload)})
        self.logger.info("Product %s updated", product.productID, extra={"fields": sorted(payload)})
        return True, "Product updated", product

    def _merge_variants(self, product: Product, kind: VariantKind, entries: List[Any]) -> None:
        incoming = self._build_variants(kind, entries)
        names_only = {entry.strip() for entry in entries if isinstance(entry, str)}
        existing = {variant.name: variant for variant in product.variants_of(kind)}

        for variant in incoming:
            current = existing.pop(variant.name, None)
            if current is None:
                product.variants.append(variant)
            elif variant.name not in names_only:
                current.stock = variant.stock
                current.price_override = variant.price_override
        for stale in existing.values():
            product.variants.remove(stale)

    @staticmethod
    def _build_variants(kind: VariantKind, entries: List[Any]) -> List[ProductVariant]:
        variants = []
        seen = set()
        for entry in entries:
            # Plain strings are accepted as names with no independent stock
            if isinstance(entry, str):
                entry = {"name": entry}
            if not isinstance(entry, dict) or not str(entry.get("name") or "").strip():
                raise ValueError(f"Each {kind.value} needs a name")
            variant_name = str(entry["name"]).strip()
            if variant_name in seen:
                raise ValueError(f"Duplicate {kind.value} '{variant_name}'")
            seen.add(variant_name)

            override = entry.get("price")
            try:
                stock = _parse_stock(entry.get("stock", 0))
                override = None if override in (None, "") else _parse_price(override)
            except ValueError:
                raise ValueError(f"Invalid stock or price for {kind.value} '{variant_name}'")

            variants.append(
                ProductVariant(kind=kind, name=variant_name, stock=stock, price_override=override)
            )
        return variants


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _parse_price(value: Any) -> Decimal:
    try:
        price = parse_money(value)
    except ValueError:
        raise ValueError("price must be a valid amount")
    if price < 0:
        raise ValueError("price cannot be negative")
    return price


def _parse_stock(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("stock must be a whole number")
    try:
        stock = int(value)
    except (TypeError, ValueError, OverflowError):
        raise ValueError("stock must be a whole number")
    if stock < 0:
        raise ValueError("stock cannot be negative")
    if stock > MAX_STOCK:
        raise ValueError("stock is out of range")
    return stock


def _variant_entries(payload: Dict[str, Any], key: str) -> List[Any]:
    entries = payload.get(key)
    if entries is None:
        return []
    if not isinstance(entries, list):
        raise ValueError(f"{key} must be a list")
    return entries
