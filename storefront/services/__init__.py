from .cart_service import CartValidator
from .coupon_service import CouponService
from .payment_service import PayPalClient, PaymentVerifier
from .order_service import OrderService
from .inventory_service import InventoryService
from .commission_service import CommissionService
from .checkout_service import CheckoutService

# Storefront management flows
from .affiliate_service import AffiliateService
from .catalog_service import CatalogService

__all__ = [
    "CartValidator",
    "CouponService",
    "PayPalClient",
    "PaymentVerifier",
    "OrderService",
    "InventoryService",
    "CommissionService",
    "CheckoutService",
    "AffiliateService",
    "CatalogService",
]
