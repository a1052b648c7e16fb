from __future__ import annotations

import logging
import re
from decimal import Decimal
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.config import Config
from storefront.models import Affiliate, AffiliateSale, AffiliateSaleStatus, to_money
from storefront.observability import increment_counter, record_event

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def is_valid_affiliate_id(value: Optional[str]) -> bool:
    return bool(value) and isinstance(value, str) and bool(_UUID_RE.match(value.strip()))


class CommissionService:
    """Records the referral commission for an affiliate-attributed order."""

    def __init__(
        self,
        db_session: Session,
        rate: Optional[Decimal] = None,
        config: type[Config] = Config,
    ) -> None:
        self.db = db_session
        self.rate = Decimal(str(rate if rate is not None else config.AFFILIATE_COMMISSION_RATE))
        self.logger = logging.getLogger(__name__)

    def resolve_affiliate(self, affiliate_id: Optional[str]) -> Optional[str]:
        """
        Return the attributable affiliate id, or None.

        Malformed ids and ids of affiliates that are not approved are dropped
        without error so the order proceeds unattributed.
        """
        if not is_valid_affiliate_id(affiliate_id):
            if affiliate_id:
                self.logger.info("Ignoring malformed affiliate id", extra={"affiliate_id": affiliate_id})
                increment_counter("affiliate_attribution_dropped_total", labels={"reason": "malformed"})
            return None

        affiliate_id = affiliate_id.strip().lower()
        affiliate = self.db.query(Affiliate).filter_by(affiliateID=affiliate_id).first()
        if affiliate is None or not affiliate.is_approved:
            self.logger.info("Ignoring unknown or unapproved affiliate", extra={"affiliate_id": affiliate_id})
            increment_counter("affiliate_attribution_dropped_total", labels={"reason": "not_approved"})
            return None
        return affiliate.affiliateID

    def commission_for(self, order_total: Decimal) -> Decimal:
        return to_money(to_money(order_total) * self.rate)

    def record_commission(
        self,
        affiliate_id: Optional[str],
        order_id: str,
        order_total: Decimal,
    ) -> Optional[AffiliateSale]:
        """
        Insert the pending AffiliateSale and bump the affiliate's aggregates.

        Malformed affiliate ids are skipped silently. Database failures are
        logged and swallowed: the order they belong to is already committed.
        """
        if not is_valid_affiliate_id(affiliate_id):
            return None

        commission = self.commission_for(order_total)
        sale = AffiliateSale(
            affiliateID=affiliate_id,
            orderID=order_id,
            commission_rate=self.rate,
            commission_amount=commission,
            status=AffiliateSaleStatus.PENDING,
        )
        try:
            self.db.add(sale)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            self.logger.error(
                "Error creating affiliate sale: %s",
                exc,
                extra={"affiliate_id": affiliate_id, "order_id": order_id},
            )
            increment_counter("commission_failures_total", labels={"stage": "sale"})
            return None

        try:
            self.db.execute(
                update(Affiliate)
                .where(Affiliate.affiliateID == affiliate_id)
                .values(
                    total_sales=Affiliate.total_sales + 1,
                    total_earnings=Affiliate.total_earnings + commission,
                )
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            self.logger.error(
                "Error updating affiliate stats: %s",
                exc,
                extra={"affiliate_id": affiliate_id, "order_id": order_id},
            )
            increment_counter("commission_failures_total", labels={"stage": "stats"})
            return sale

        increment_counter("commissions_recorded_total")
        record_event(
            "commission_recorded",
            {
                "affiliate_id": affiliate_id,
                "order_id": order_id,
                "commission": str(commission),
            },
        )
        self.logger.info(
            "Commission %s recorded for affiliate %s",
            commission,
            affiliate_id,
            extra={"order_id": order_id},
        )
        return sale
