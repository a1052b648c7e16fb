# storefront/models.py
from enum import Enum
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from uuid import uuid4

from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    DateTime,
    ForeignKey,
    Text,
    JSON,
    UniqueConstraint,
    CheckConstraint,
    Enum as SAEnum,
)
from sqlalchemy.orm import relationship

# Single shared Base so every model lands in the same metadata
from storefront.database import Base

CENT = Decimal("0.01")
# Largest value a Numeric(10, 2) column holds
MONEY_LIMIT = Decimal("99999999.99")


def to_money(value) -> Decimal:
    """Coerce a numeric value to a Decimal rounded to cents."""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def parse_money(value) -> Decimal:
    """
    Parse a client-supplied amount into cents.

    Raises ``ValueError`` for anything that is not a finite number a
    ``Numeric(10, 2)`` column can store.
    """
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {value!r}")
    if not amount.is_finite() or abs(amount) > MONEY_LIMIT:
        raise ValueError(f"Amount out of range: {value!r}")
    amount = to_money(amount)
    if abs(amount) > MONEY_LIMIT:
        raise ValueError(f"Amount out of range: {value!r}")
    return amount


def _utcnow():
    return datetime.now(timezone.utc)


def _uuid_str():
    return str(uuid4())


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class CouponStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class AffiliateStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class AffiliateSaleStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


class VariantKind(str, Enum):
    SIZE = "size"
    COLOR = "color"


class PayoutMethod(str, Enum):
    PAYPAL = "paypal"
    BANK_TRANSFER = "bank_transfer"


class User(Base):
    __tablename__ = 'User'
    userID = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False)
    full_name = Column(String(255))
    role = Column(String(50), default='customer', nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    orders = relationship("Order", back_populates="user")
    affiliate = relationship("Affiliate", uselist=False, back_populates="user")

    @property
    def is_admin(self) -> bool:
        return (self.role or '').lower() == 'admin'


class Product(Base):
    __tablename__ = 'Product'
    __table_args__ = (CheckConstraint('stock >= 0', name='ck_product_stock_non_negative'),)

    productID = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True)
    description = Column(Text)
    price = Column(Numeric(10, 2), nullable=False)
    stock = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    variants = relationship(
        "ProductVariant",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductVariant.variantID",
    )

    def variants_of(self, kind: VariantKind):
        return [variant for variant in self.variants if variant.kind == kind]

    def find_variant(self, kind: VariantKind, name: str):
        for variant in self.variants_of(kind):
            if variant.name == name:
                return variant
        return None


class ProductVariant(Base):
    __tablename__ = 'ProductVariant'
    __table_args__ = (
        UniqueConstraint('productID', 'kind', 'name', name='uq_product_variant'),
        CheckConstraint('stock >= 0', name='ck_variant_stock_non_negative'),
    )

    variantID = Column(Integer, primary_key=True, autoincrement=True)
    productID = Column(Integer, ForeignKey('Product.productID', ondelete="CASCADE"), nullable=False)
    kind = Column(
        SAEnum(VariantKind, name="variant_kind", native_enum=False, validate_strings=True),
        nullable=False,
    )
    name = Column(String(100), nullable=False)
    stock = Column(Integer, nullable=False, default=0)
    price_override = Column(Numeric(10, 2))

    product = relationship("Product", back_populates="variants")

    def unit_price(self) -> Decimal:
        if self.price_override is not None:
            return to_money(self.price_override)
        return to_money(self.product.price)


class Coupon(Base):
    __tablename__ = 'Coupon'

    couponID = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(64), unique=True, nullable=False)
    discount_type = Column(
        SAEnum(DiscountType, name="discount_type", native_enum=False, validate_strings=True),
        nullable=False,
    )
    discount_value = Column(Numeric(10, 2), nullable=False)
    min_purchase = Column(Numeric(10, 2))
    max_discount = Column(Numeric(10, 2))
    usage_limit = Column(Integer)
    used_count = Column(Integer, nullable=False, default=0)
    valid_from = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    valid_until = Column(DateTime(timezone=True))
    status = Column(
        SAEnum(CouponStatus, name="coupon_status", native_enum=False, validate_strings=True),
        nullable=False,
        default=CouponStatus.ACTIVE,
    )
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    def is_within_window(self, now: datetime) -> bool:
        valid_from = _as_utc(self.valid_from)
        valid_until = _as_utc(self.valid_until)
        if valid_from and now < valid_from:
            return False
        if valid_until and now > valid_until:
            return False
        return True

    def has_remaining_uses(self) -> bool:
        if self.usage_limit is None:
            return True
        return (self.used_count or 0) < self.usage_limit

    def meets_minimum(self, subtotal: Decimal) -> bool:
        if self.min_purchase is None:
            return True
        return subtotal >= to_money(self.min_purchase)

    def compute_discount(self, subtotal: Decimal) -> Decimal:
        if self.discount_type == DiscountType.PERCENTAGE:
            discount = subtotal * to_money(self.discount_value) / Decimal(100)
            if self.max_discount is not None:
                discount = min(discount, to_money(self.max_discount))
        else:
            discount = to_money(self.discount_value)
        # The recorded discount can never exceed what is being paid for
        return to_money(min(discount, subtotal))


class Order(Base):
    __tablename__ = 'Order'

    orderID = Column(String(36), primary_key=True, default=_uuid_str)
    order_number = Column(String(40), unique=True, nullable=False)
    userID = Column(Integer, ForeignKey('User.userID'))
    email = Column(String(255), nullable=False)
    status = Column(
        SAEnum(OrderStatus, name="order_status", native_enum=False, validate_strings=True),
        nullable=False,
        default=OrderStatus.PROCESSING,
    )
    subtotal = Column(Numeric(10, 2), nullable=False)
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0)
    total = Column(Numeric(10, 2), nullable=False)
    shipping_address = Column(JSON, nullable=False)
    billing_address = Column(JSON, nullable=False)
    coupon_code = Column(String(64))
    affiliateID = Column(String(36), ForeignKey('Affiliate.affiliateID'))
    courier = Column(String(120), nullable=False)
    payment_reference = Column(String(64))
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    user = relationship("User", back_populates="orders")
    affiliate = relationship("Affiliate")
    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.orderItemID",
    )
    affiliate_sale = relationship("AffiliateSale", uselist=False, back_populates="order")

    def items_total(self) -> Decimal:
        return to_money(sum((to_money(item.subtotal) for item in self.items), Decimal("0")))


class OrderItem(Base):
    __tablename__ = 'OrderItem'

    orderItemID = Column(Integer, primary_key=True, autoincrement=True)
    orderID = Column(String(36), ForeignKey('Order.orderID', ondelete="CASCADE"), nullable=False)
    productID = Column(Integer, ForeignKey('Product.productID'), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    subtotal = Column(Numeric(10, 2), nullable=False)
    size = Column(String(100))
    color = Column(String(100))

    order = relationship("Order", back_populates="items")
    product = relationship("Product")


class Affiliate(Base):
    __tablename__ = 'Affiliate'

    affiliateID = Column(String(36), primary_key=True, default=_uuid_str)
    userID = Column(Integer, ForeignKey('User.userID'), unique=True, nullable=False)
    affiliate_code = Column(String(64), unique=True, nullable=False)
    status = Column(
        SAEnum(AffiliateStatus, name="affiliate_status", native_enum=False, validate_strings=True),
        nullable=False,
        default=AffiliateStatus.PENDING,
    )
    country = Column(String(100))
    address = Column(Text)
    phone_number = Column(String(50))
    traffic_source = Column(String(100))
    traffic_source_other = Column(Text)
    payment_method = Column(
        SAEnum(PayoutMethod, name="payout_method", native_enum=False, validate_strings=True),
    )
    paypal_email = Column(String(255))
    bank_name = Column(String(255))
    bank_account_number = Column(String(64))
    bank_routing_number = Column(String(64))
    bank_account_holder_name = Column(String(255))
    total_clicks = Column(Integer, nullable=False, default=0)
    total_sales = Column(Integer, nullable=False, default=0)
    total_earnings = Column(Numeric(12, 2), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    user = relationship("User", back_populates="affiliate")
    sales = relationship("AffiliateSale", back_populates="affiliate")

    @property
    def is_approved(self) -> bool:
        return self.status == AffiliateStatus.APPROVED


class AffiliateSale(Base):
    __tablename__ = 'AffiliateSale'

    affiliateSaleID = Column(Integer, primary_key=True, autoincrement=True)
    affiliateID = Column(String(36), ForeignKey('Affiliate.affiliateID'), nullable=False)
    orderID = Column(String(36), ForeignKey('Order.orderID'), unique=True, nullable=False)
    commission_rate = Column(Numeric(5, 4), nullable=False)
    commission_amount = Column(Numeric(10, 2), nullable=False)
    status = Column(
        SAEnum(AffiliateSaleStatus, name="affiliate_sale_status", native_enum=False, validate_strings=True),
        nullable=False,
        default=AffiliateSaleStatus.PENDING,
    )
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    affiliate = relationship("Affiliate", back_populates="sales")
    order = relationship("Order", back_populates="affiliate_sale")


class ClickEvent(Base):
    __tablename__ = 'ClickEvent'

    clickID = Column(Integer, primary_key=True, autoincrement=True)
    affiliateID = Column(String(36), ForeignKey('Affiliate.affiliateID'), nullable=False)
    productID = Column(Integer, ForeignKey('Product.productID'))
    referrer_url = Column(String(512))
    user_agent = Column(String(512))
    created_at = Column(DateTime(timezone=True), default=_utcnow)


def _as_utc(value):
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
