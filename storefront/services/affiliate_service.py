from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

import bleach
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from storefront.config import Config
from storefront.models import (
    Affiliate,
    AffiliateSale,
    AffiliateStatus,
    ClickEvent,
    PayoutMethod,
    Product,
)
from storefront.observability import increment_counter, record_event

REQUIRED_SIGNUP_FIELDS = (
    "affiliate_code",
    "country",
    "address",
    "phone_number",
    "traffic_source",
    "payment_method",
)
BANK_FIELDS = ("bank_name", "bank_account_number", "bank_routing_number", "bank_account_holder_name")
MODERATION_STATUSES = (AffiliateStatus.APPROVED, AffiliateStatus.REJECTED)


def sanitize_text(value: Any) -> str:
    """Strip markup from user-supplied text."""
    if value is None:
        return ""
    return bleach.clean(str(value), tags=[], strip=True).strip()


class AffiliateService:
    """Affiliate signup, moderation, click tracking and dashboard stats."""

    def __init__(self, db_session: Session, config: type[Config] = Config) -> None:
        self.db = db_session
        self.config = config
        self.logger = logging.getLogger(__name__)

    def signup(self, user_id: int, payload: Dict[str, Any]) -> Tuple[bool, str, Optional[Affiliate]]:
        values = {field: sanitize_text(payload.get(field)) for field in REQUIRED_SIGNUP_FIELDS}
        values["traffic_source_other"] = sanitize_text(payload.get("traffic_source_other"))

        if not values["affiliate_code"]:
            return False, "Affiliate code is required", None
        if any(not values[field] for field in REQUIRED_SIGNUP_FIELDS):
            return False, "All required fields must be filled", None

        try:
            payment_method = PayoutMethod(values["payment_method"].lower())
        except ValueError:
            return False, "payment_method must be 'paypal' or 'bank_transfer'", None

        paypal_email = sanitize_text(payload.get("paypal_email"))
        bank = {field: sanitize_text(payload.get(field)) for field in BANK_FIELDS}
        if payment_method == PayoutMethod.PAYPAL and not paypal_email:
            return False, "PayPal email is required when selecting PayPal as payment method", None
        if payment_method == PayoutMethod.BANK_TRANSFER and not all(bank.values()):
            return False, "All bank transfer details are required", None

        traffic_source = values["traffic_source"].lower()
        if traffic_source == "others" and not values["traffic_source_other"]:
            return False, "Please specify how you want to drive sales when selecting Others", None

        code = values["affiliate_code"].upper()
        if self.db.query(Affiliate.affiliateID).filter_by(affiliate_code=code).first():
            return False, "Affiliate code already exists", None
        if self.db.query(Affiliate.affiliateID).filter_by(userID=user_id).first():
            return False, "You already have an affiliate account", None

        is_paypal = payment_method == PayoutMethod.PAYPAL
        affiliate = Affiliate(
            userID=user_id,
            affiliate_code=code,
            status=AffiliateStatus.PENDING,
            country=values["country"],
            address=values["address"],
            phone_number=values["phone_number"],
            traffic_source=traffic_source,
            traffic_source_other=values["traffic_source_other"] if traffic_source == "others" else None,
            payment_method=payment_method,
            paypal_email=paypal_email if is_paypal else None,
            bank_name=None if is_paypal else bank["bank_name"],
            bank_account_number=None if is_paypal else bank["bank_account_number"],
            bank_routing_number=None if is_paypal else bank["bank_routing_number"],
            bank_account_holder_name=None if is_paypal else bank["bank_account_holder_name"],
        )
        self.db.add(affiliate)
        try:
            self.db.commit()
        except IntegrityError:
            # Lost a race with a concurrent signup for the same code or user
            self.db.rollback()
            return False, "Affiliate code already exists", None
        except SQLAlchemyError as exc:
            self.db.rollback()
            self.logger.error("Error creating affiliate for user %s: %s", user_id, exc)
            return False, "Failed to create affiliate account", None

        increment_counter("affiliate_signups_total")
        record_event("affiliate_signup", {"affiliate_id": affiliate.affiliateID, "code": code})
        self.logger.info("Affiliate %s signed up", code, extra={"affiliate_id": affiliate.affiliateID})
        return True, "Affiliate application submitted", affiliate

    def set_status(self, affiliate_id: str, status: str) -> Tuple[bool, str, Optional[Affiliate]]:
        try:
            new_status = AffiliateStatus(str(status).lower())
        except ValueError:
            new_status = None
        if new_status not in MODERATION_STATUSES:
            return False, "Status must be 'approved' or 'rejected'", None

        affiliate = self.db.query(Affiliate).filter_by(affiliateID=affiliate_id).first()
        if not affiliate:
            return False, "Affiliate not found", None

        affiliate.status = new_status
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            self.logger.error("Error updating affiliate %s: %s", affiliate_id, exc)
            return False, "Failed to update affiliate", None

        record_event("affiliate_moderated", {"affiliate_id": affiliate_id, "status": new_status.value})
        return True, f"Affiliate {new_status.value}", affiliate

    def track_click(
        self,
        affiliate_code: Optional[str],
        product_id: Optional[int] = None,
        referrer_url: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[bool, str, Optional[Affiliate]]:
        """
        Record a referral click for an approved affiliate.

        Returns the affiliate so the caller can set the attribution cookie.
        """
        code = (affiliate_code or "").strip().upper()
        if not code:
            return False, "affiliate_code is required", None

        affiliate = (
            self.db.query(Affiliate)
            .filter_by(affiliate_code=code, status=AffiliateStatus.APPROVED)
            .first()
        )
        if not affiliate:
            return False, "Affiliate not found", None

        if product_id is not None and not self.db.query(Product.productID).filter_by(productID=product_id).first():
            product_id = None

        try:
            self.db.add(
                ClickEvent(
                    affiliateID=affiliate.affiliateID,
                    productID=product_id,
                    referrer_url=(referrer_url or None) and referrer_url[:512],
                    user_agent=(user_agent or None) and user_agent[:512],
                )
            )
            self.db.execute(
                update(Affiliate)
                .where(Affiliate.affiliateID == affiliate.affiliateID)
                .values(total_clicks=Affiliate.total_clicks + 1)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            self.logger.error("Error tracking click: %s", exc, extra={"affiliate_id": affiliate.affiliateID})
            return False, "Failed to track click", None

        increment_counter("affiliate_clicks_total")
        return True, "Click tracked", affiliate

    def stats(self, user_id: int) -> Tuple[bool, str, Optional[Dict[str, Any]]]:
        affiliate = self.db.query(Affiliate).filter_by(userID=user_id).first()
        if not affiliate:
            return False, "Affiliate not found. Please sign up for an affiliate account first.", None

        sales: List[AffiliateSale] = (
            self.db.query(AffiliateSale)
            .options(selectinload(AffiliateSale.order))
            .filter(AffiliateSale.affiliateID == affiliate.affiliateID)
            .order_by(AffiliateSale.created_at.desc())
            .limit(self.config.AFFILIATE_SALES_PAGE_SIZE)
            .all()
        )
        return True, "OK", {"affiliate": affiliate, "sales": sales}

    def list_affiliates(self, status: Optional[str] = None) -> List[Affiliate]:
        query = self.db.query(Affiliate)
        if status:
            try:
                query = query.filter(Affiliate.status == AffiliateStatus(status))
            except ValueError:
                return []
        return query.order_by(Affiliate.created_at.desc()).all()
