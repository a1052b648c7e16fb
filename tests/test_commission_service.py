from __future__ import annotations

from decimal import Decimal
from uuid import uuid4

from conftest import ADDRESS
from storefront.models import Affiliate, AffiliateSale, AffiliateSaleStatus, Order
from storefront.observability.metrics import registry
from storefront.services.commission_service import CommissionService, is_valid_affiliate_id


def _order(db_session, total="18.00", affiliate_id=None):
    order = Order(
        order_number=f"ORD-TEST-{uuid4().hex[:8].upper()}",
        email="buyer@example.com",
        subtotal=Decimal(total),
        discount_amount=Decimal("0.00"),
        total=Decimal(total),
        shipping_address=ADDRESS,
        billing_address=ADDRESS,
        courier="UPS",
        affiliateID=affiliate_id,
    )
    db_session.add(order)
    db_session.commit()
    return order


def test_commission_is_fifteen_percent_by_default(db_session):
    assert CommissionService(db_session).commission_for(Decimal("18.00")) == Decimal("2.70")
    assert CommissionService(db_session).commission_for(Decimal("33.33")) == Decimal("5.00")


def test_rate_can_be_injected(db_session):
    assert CommissionService(db_session, rate=Decimal("0.2")).commission_for(Decimal("50")) == Decimal("10.00")


def test_record_commission_creates_pending_sale_and_updates_totals(db_session, approved_affiliate):
    order = _order(db_session, total="100.00", affiliate_id=approved_affiliate.affiliateID)

    sale = CommissionService(db_session).record_commission(
        approved_affiliate.affiliateID, order.orderID, Decimal("100.00")
    )

    assert sale is not None
    db_session.expire_all()
    stored = db_session.query(AffiliateSale).one()
    assert stored.status == AffiliateSaleStatus.PENDING
    assert stored.commission_amount == Decimal("15.00")
    assert stored.commission_rate == Decimal("0.15")

    affiliate = db_session.get(Affiliate, approved_affiliate.affiliateID)
    assert affiliate.total_sales == 1
    assert affiliate.total_earnings == Decimal("15.00")
    assert registry.counter_value("commissions_recorded_total") == 1


def test_earnings_accumulate_across_orders(db_session, approved_affiliate):
    service = CommissionService(db_session)
    for total in ("10.00", "20.00"):
        order = _order(db_session, total=total, affiliate_id=approved_affiliate.affiliateID)
        service.record_commission(approved_affiliate.affiliateID, order.orderID, Decimal(total))

    db_session.expire_all()
    affiliate = db_session.get(Affiliate, approved_affiliate.affiliateID)
    assert affiliate.total_sales == 2
    assert affiliate.total_earnings == Decimal("4.50")


def test_malformed_affiliate_id_is_skipped(db_session, approved_affiliate):
    order = _order(db_session)
    assert CommissionService(db_session).record_commission("abc123", order.orderID, Decimal("18.00")) is None
    assert db_session.query(AffiliateSale).count() == 0


def test_duplicate_sale_is_logged_and_swallowed(db_session, approved_affiliate):
    order = _order(db_session, affiliate_id=approved_affiliate.affiliateID)
    service = CommissionService(db_session)

    assert service.record_commission(approved_affiliate.affiliateID, order.orderID, Decimal("18.00"))
    assert service.record_commission(approved_affiliate.affiliateID, order.orderID, Decimal("18.00")) is None

    db_session.expire_all()
    assert db_session.query(AffiliateSale).count() == 1
    assert db_session.get(Affiliate, approved_affiliate.affiliateID).total_sales == 1
    assert registry.counter_value("commission_failures_total", {"stage": "sale"}) == 1


def test_resolve_affiliate_requires_approval(db_session, approved_affiliate, pending_affiliate):
    service = CommissionService(db_session)

    assert service.resolve_affiliate(approved_affiliate.affiliateID) == approved_affiliate.affiliateID
    assert service.resolve_affiliate(approved_affiliate.affiliateID.upper()) == approved_affiliate.affiliateID
    assert service.resolve_affiliate(pending_affiliate.affiliateID) is None
    assert service.resolve_affiliate(str(uuid4())) is None
    assert service.resolve_affiliate("PAWSOME") is None
    assert service.resolve_affiliate(None) is None


def test_uuid_shape_check():
    assert is_valid_affiliate_id(str(uuid4()))
    assert not is_valid_affiliate_id("")
    assert not is_valid_affiliate_id(None)
    assert not is_valid_affiliate_id("1234")
    assert not is_valid_affiliate_id(42)
