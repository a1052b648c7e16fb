from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.config import Config
from storefront.models import Coupon, CouponStatus, DiscountType, parse_money, to_money
from storefront.observability import increment_counter, record_event


@dataclass(frozen=True)
class CouponApplication:
    """Outcome of applying an (optional) coupon code to a subtotal."""

    subtotal: Decimal
    discount: Decimal
    total: Decimal
    coupon_id: Optional[int] = None
    code: Optional[str] = None
    reason: Optional[str] = None

    @property
    def applied(self) -> bool:
        return self.coupon_id is not None


class CouponService:
    """
    Coupon lookup, discount computation, usage claims and admin creation.

    Applying a coupon is deliberately lenient: an unknown, expired, exhausted
    or under-minimum code simply yields no discount. The reason is kept on the
    result for logging and for the preview endpoint, but never raised.
    """

    def __init__(self, db_session: Session, config: type[Config] = Config) -> None:
        self.db = db_session
        self.config = config
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Checkout flow
    # ------------------------------------------------------------------
    def apply(
        self,
        code: Optional[str],
        subtotal: Decimal,
        now: Optional[datetime] = None,
    ) -> CouponApplication:
        subtotal = to_money(subtotal)
        normalized = normalize_code(code)
        if not normalized:
            return CouponApplication(subtotal=subtotal, discount=Decimal("0.00"), total=subtotal)

        coupon = (
            self.db.query(Coupon)
            .filter(Coupon.code == normalized, Coupon.status == CouponStatus.ACTIVE)
            .first()
        )
        reason = self._rejection_reason(coupon, subtotal, now or datetime.now(timezone.utc))
        if reason:
            self.logger.info(
                "Coupon %s not applied: %s",
                normalized,
                reason,
                extra={"coupon_code": normalized, "subtotal": str(subtotal)},
            )
            increment_counter("coupons_rejected_total", labels={"reason": reason})
            return CouponApplication(
                subtotal=subtotal,
                discount=Decimal("0.00"),
                total=subtotal,
                code=normalized,
                reason=reason,
            )

        discount = coupon.compute_discount(subtotal)
        total = to_money(max(Decimal("0.00"), subtotal - discount))
        return CouponApplication(
            subtotal=subtotal,
            discount=discount,
            total=total,
            coupon_id=coupon.couponID,
            code=coupon.code,
        )

    def claim_usage(self, coupon_id: int) -> bool:
        """
        Count one use of the coupon with a single guarded UPDATE.

        The row only changes while ``used_count < usage_limit`` (or no limit
        is set), so concurrent checkouts can never push the counter past the
        limit. Returns False when the guard rejected the increment.
        """
        result = self.db.execute(
            update(Coupon)
            .where(
                Coupon.couponID == coupon_id,
                or_(Coupon.usage_limit.is_(None), Coupon.used_count < Coupon.usage_limit),
            )
            .values(used_count=Coupon.used_count + 1)
            .execution_options(synchronize_session=False)
        )
        claimed = result.rowcount == 1
        if claimed:
            increment_counter("coupons_redeemed_total")
        else:
            self.logger.warning(
                "Coupon %s usage limit reached before claim", coupon_id,
                extra={"coupon_id": coupon_id},
            )
        return claimed

    # ------------------------------------------------------------------
    # Admin flows
    # ------------------------------------------------------------------
    def create_coupon(self, payload: Dict[str, Any]) -> Tuple[bool, str, Optional[Coupon]]:
        code = normalize_code(payload.get("code"))
        if not code:
            return False, "Coupon code is required", None

        try:
            discount_type = DiscountType(str(payload.get("discount_type", "")).lower())
        except ValueError:
            return False, "discount_type must be 'percentage' or 'fixed'", None

        try:
            discount_value = _optional_money(payload.get("discount_value"))
            min_purchase = _optional_money(payload.get("min_purchase"))
            max_discount = _optional_money(payload.get("max_discount"))
            usage_limit = _optional_int(payload.get("usage_limit"))
        except (TypeError, ValueError):
            return False, "Coupon amounts and limits must be numeric", None

        if discount_value is None or discount_value <= 0:
            return False, "discount_value must be positive", None
        if discount_type == DiscountType.PERCENTAGE and discount_value > 100:
            return False, "Percentage discounts cannot exceed 100", None
        if discount_type == DiscountType.FIXED:
            # Caps only make sense for percentage coupons
            max_discount = None
        if usage_limit is not None and usage_limit <= 0:
            return False, "usage_limit must be positive", None
        if min_purchase is not None and min_purchase < 0:
            return False, "min_purchase cannot be negative", None

        try:
            valid_from = _parse_datetime(payload.get("valid_from")) or datetime.now(timezone.utc)
            valid_until = _parse_datetime(payload.get("valid_until"))
            if valid_until is None:
                valid_days = _optional_int(payload.get("valid_days"))
                if valid_days is None:
                    valid_days = self.config.COUPON_DEFAULT_VALID_DAYS
                valid_until = valid_from + timedelta(days=valid_days)
        except (TypeError, ValueError):
            return False, "Invalid validity window", None
        if valid_until <= valid_from:
            return False, "valid_until must be after valid_from", None

        coupon = Coupon(
            code=code,
            discount_type=discount_type,
            discount_value=discount_value,
            min_purchase=min_purchase,
            max_discount=max_discount,
            usage_limit=usage_limit,
            used_count=0,
            valid_from=valid_from,
            valid_until=valid_until,
            status=CouponStatus.ACTIVE,
        )
        self.db.add(coupon)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return False, f"Coupon code {code} already exists", None
        except SQLAlchemyError as exc:
            self.db.rollback()
            self.logger.error("Failed to create coupon %s: %s", code, exc)
            return False, "Failed to create coupon", None

        record_event("coupon_created", {"coupon_id": coupon.couponID, "code": code})
        self.logger.info("Coupon %s created", code, extra={"coupon_id": coupon.couponID})
        return True, "Coupon created", coupon

    def list_coupons(self) -> List[Coupon]:
        return self.db.query(Coupon).order_by(Coupon.created_at.desc()).all()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _rejection_reason(coupon: Optional[Coupon], subtotal: Decimal, now: datetime) -> Optional[str]:
        if coupon is None:
            return "not_found"
        if not coupon.is_within_window(now):
            return "outside_validity_window"
        if not coupon.has_remaining_uses():
            return "usage_limit_reached"
        if not coupon.meets_minimum(subtotal):
            return "below_min_purchase"
        return None


def normalize_code(code: Optional[str]) -> Optional[str]:
    if code is None:
        return None
    code = str(code).strip().upper()
    return code or None


def _optional_money(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return parse_money(value)


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
