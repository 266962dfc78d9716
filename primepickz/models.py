# primepickz/models.py
from enum import Enum
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Column,
    Integer,
    String,
    Numeric,
    DateTime,
    ForeignKey,
    Boolean,
    Text,
    UniqueConstraint,
    Enum as SAEnum,
)
from sqlalchemy.orm import relationship

# Use a single, shared Base for all models
# This ensures all models use the same SQLAlchemy metadata, preventing conflicts.
from primepickz.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid4())


class UserRole(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    EXPIRED = "expired"
    FAILED = "failed"
    REFUNDED = "refunded"


class SyncStatus(str, Enum):
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"
    DELETED = "deleted"


class SyncOperation(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    RECONCILE = "RECONCILE"


class SyncLogStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    PENDING = "PENDING"
    QUEUED = "QUEUED"
    PARTIAL = "PARTIAL"


# ==============================================
# STOREFRONT
# ==============================================

class Product(Base):
    __tablename__ = 'Product'
    productID = Column(String(36), primary_key=True, default=_uuid)
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    original_price = Column(Numeric(10, 2))
    discount = Column(Integer, default=0)
    category = Column(String(255), nullable=False)
    image_url = Column(Text, nullable=False)
    additional_images = Column(JSON, default=list)
    rating = Column(Numeric(2, 1), default=0)
    review_count = Column(Integer, default=0)
    in_stock = Column(Boolean, default=True)
    stock_count = Column(Integer)
    tags = Column(JSON, default=list)
    badge = Column(String(100))
    free_shipping = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    reviews = relationship("Review", back_populates="product", cascade="all, delete-orphan")

    @property
    def is_available(self) -> bool:
        return bool(self.in_stock) and (self.stock_count is None or self.stock_count > 0)

    def decrement_stock(self, quantity: int) -> None:
        """Reduce stock without going negative; untracked stock stays untracked."""
        if self.stock_count is None:
            return
        self.stock_count = max(0, self.stock_count - quantity)
        if self.stock_count == 0:
            self.in_stock = False


class Category(Base):
    __tablename__ = 'Category'
    categoryID = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, nullable=False)
    image_url = Column(Text, nullable=False)
    description = Column(Text)


class Deal(Base):
    __tablename__ = 'Deal'
    dealID = Column(Integer, primary_key=True, autoincrement=True)
    productID = Column(String(36), ForeignKey('Product.productID', ondelete="CASCADE"), nullable=False)
    title = Column(String(255), nullable=False)
    ends_at = Column(DateTime(timezone=True), nullable=False)
    view_count = Column(Integer, default=0)
    is_active = Column(Boolean, default=True)

    product = relationship("Product")


class Review(Base):
    __tablename__ = 'Review'
    reviewID = Column(Integer, primary_key=True, autoincrement=True)
    productID = Column(String(36), ForeignKey('Product.productID', ondelete="CASCADE"), nullable=False)
    customer_name = Column(String(255), nullable=False)
    customer_location = Column(String(255))
    rating = Column(Integer, nullable=False)
    title = Column(String(255))
    comment = Column(Text, nullable=False)
    image_url = Column(Text)
    date = Column(String(10), nullable=False)
    verified = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    product = relationship("Product", back_populates="reviews")


class CartItem(Base):
    __tablename__ = 'CartItem'
    cartItemID = Column(Integer, primary_key=True, autoincrement=True)
    productID = Column(String(36), ForeignKey('Product.productID', ondelete="CASCADE"), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    session_id = Column(String(255), nullable=False, index=True)

    product = relationship("Product")


class PurchaseNotification(Base):
    __tablename__ = 'PurchaseNotification'
    notificationID = Column(Integer, primary_key=True, autoincrement=True)
    customer_name = Column(String(255), nullable=False)
    location = Column(String(255), nullable=False)
    product_name = Column(Text, nullable=False)
    timestamp = Column(String(64), nullable=False)


# ==============================================
# ACCOUNTS & ORDERS
# ==============================================

class User(Base):
    __tablename__ = 'User'
    userID = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(120))
    last_name = Column(String(120))
    role = Column(
        SAEnum(UserRole, name="user_role", native_enum=False, validate_strings=True),
        default=UserRole.CUSTOMER,
        nullable=False,
    )
    email_verified = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    addresses = relationship("Address", back_populates="user", cascade="all, delete-orphan")
    wishlist_items = relationship("WishlistItem", back_populates="user", cascade="all, delete-orphan")

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class WishlistItem(Base):
    __tablename__ = 'WishlistItem'
    __table_args__ = (UniqueConstraint('userID', 'productID', name='uq_wishlist_user_product'),)

    wishlistItemID = Column(Integer, primary_key=True, autoincrement=True)
    userID = Column(Integer, ForeignKey('User.userID', ondelete="CASCADE"), nullable=False)
    productID = Column(String(36), ForeignKey('Product.productID', ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    user = relationship("User", back_populates="wishlist_items")
    product = relationship("Product")


class Address(Base):
    __tablename__ = 'Address'
    addressID = Column(Integer, primary_key=True, autoincrement=True)
    # Guest checkouts store the cart session id here instead of a user id
    owner_key = Column(String(255), nullable=False, index=True)
    userID = Column(Integer, ForeignKey('User.userID', ondelete="CASCADE"))
    full_name = Column(String(255), nullable=False)
    phone = Column(String(50))
    address_line1 = Column(String(255), nullable=False)
    address_line2 = Column(String(255), default='')
    city = Column(String(120), nullable=False)
    state = Column(String(120), nullable=False)
    pincode = Column(String(20), nullable=False)
    country = Column(String(80), default='US')
    is_default = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    user = relationship("User", back_populates="addresses")

    def belongs_to(self, user_id) -> bool:
        return self.userID is not None and self.userID == user_id


class Order(Base):
    __tablename__ = 'Order'
    orderID = Column(Integer, primary_key=True, autoincrement=True)
    userID = Column(Integer, ForeignKey('User.userID'))
    email = Column(String(255), index=True)
    order_number = Column(String(64), unique=True, nullable=False)
    status = Column(
        SAEnum(OrderStatus, name="order_status", native_enum=False, validate_strings=True),
        default=OrderStatus.PENDING,
        nullable=False,
    )
    payment_status = Column(
        SAEnum(PaymentStatus, name="payment_status", native_enum=False, validate_strings=True),
        default=PaymentStatus.PENDING,
        nullable=False,
    )
    payment_method = Column(String(255))
    total_amount = Column(Numeric(10, 2), nullable=False)
    addressID = Column(Integer, ForeignKey('Address.addressID', ondelete="SET NULL"))
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")
    shipping_address = relationship("Address")

    def mark_paid(self, payment_reference: str) -> None:
        self.status = OrderStatus.CONFIRMED
        self.payment_status = PaymentStatus.PAID
        self.payment_method = payment_reference
        self.updated_at = _utcnow()

    def mark_expired(self) -> None:
        self.status = OrderStatus.CANCELLED
        self.payment_status = PaymentStatus.EXPIRED
        self.updated_at = _utcnow()


class OrderItem(Base):
    __tablename__ = 'OrderItem'
    orderItemID = Column(Integer, primary_key=True, autoincrement=True)
    orderID = Column(Integer, ForeignKey('Order.orderID', ondelete="CASCADE"), nullable=False)
    # Snapshot columns; the product may later be deleted
    productID = Column(String(36), nullable=False)
    product_name = Column(Text, nullable=False)
    product_image_url = Column(Text)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)

    order = relationship("Order", back_populates="items")

    @property
    def line_total(self) -> float:
        return round(float(self.price) * self.quantity, 2)


# Audit Log Model (admin back-office actions)
class AuditLog(Base):
    __tablename__ = 'AuditLog'
    auditID = Column(Integer, primary_key=True, autoincrement=True)
    event_type = Column(String(50), nullable=False)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(64))
    actor = Column(String(255))
    action = Column(String(100), nullable=False)
    details = Column(JSON)
    timestamp = Column(DateTime(timezone=True), default=_utcnow)
    success = Column(Boolean, default=True)
    error_message = Column(Text)


# ==============================================
# META CATALOG SYNC
# ==============================================

class MetaCatalogSync(Base):
    """Sync state of one product in the Meta catalog."""

    __tablename__ = 'MetaCatalogSync'
    syncID = Column(Integer, primary_key=True, autoincrement=True)
    productID = Column(String(36), unique=True, nullable=False)
    retailer_id = Column(String(255), unique=True, nullable=False)
    meta_product_id = Column(String(255))
    sync_status = Column(
        SAEnum(SyncStatus, name="sync_status", native_enum=False, validate_strings=True),
        default=SyncStatus.PENDING,
        nullable=False,
    )
    last_synced_at = Column(DateTime(timezone=True))
    last_error = Column(Text)
    retry_count = Column(Integer, default=0, nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def mark_synced(self, meta_product_id: str | None = None) -> None:
        self.sync_status = SyncStatus.SYNCED
        self.last_error = None
        self.retry_count = 0
        self.last_synced_at = _utcnow()
        if meta_product_id:
            self.meta_product_id = meta_product_id
        self.updated_at = _utcnow()

    def mark_failed(self, error: str) -> None:
        self.sync_status = SyncStatus.FAILED
        self.last_error = error
        self.retry_count = (self.retry_count or 0) + 1
        self.updated_at = _utcnow()

    def mark_pending(self) -> None:
        self.sync_status = SyncStatus.PENDING
        self.retry_count = 0
        self.is_deleted = False
        self.updated_at = _utcnow()

    def mark_deleted(self) -> None:
        self.sync_status = SyncStatus.DELETED
        self.is_deleted = True
        self.updated_at = _utcnow()


class MetaSyncLog(Base):
    __tablename__ = 'MetaSyncLog'
    logID = Column(Integer, primary_key=True, autoincrement=True)
    productID = Column(String(36), index=True)
    retailer_id = Column(String(255))
    operation = Column(
        SAEnum(SyncOperation, name="sync_operation", native_enum=False, validate_strings=True),
        nullable=False,
    )
    status = Column(
        SAEnum(SyncLogStatus, name="sync_log_status", native_enum=False, validate_strings=True),
        nullable=False,
    )
    request_payload = Column(Text)  # JSON
    response_payload = Column(Text)  # JSON
    error_message = Column(Text)
    error_code = Column(String(50))
    duration_ms = Column(Integer)
    created_at = Column(DateTime(timezone=True), default=_utcnow, index=True)


class MetaSyncDeadLetter(Base):
    __tablename__ = 'MetaSyncDeadLetter'
    deadLetterID = Column(Integer, primary_key=True, autoincrement=True)
    productID = Column(String(36), nullable=False, index=True)
    retailer_id = Column(String(255))
    operation = Column(
        SAEnum(SyncOperation, name="sync_operation", native_enum=False, validate_strings=True),
        nullable=False,
    )
    payload = Column(Text)  # JSON
    error_message = Column(Text)
    error_code = Column(String(50))
    retry_count = Column(Integer, default=0, nullable=False)
    max_retries = Column(Integer, default=5, nullable=False)
    last_attempt_at = Column(DateTime(timezone=True))
    resolved = Column(Boolean, default=False, nullable=False)
    resolved_at = Column(DateTime(timezone=True))
    resolved_by = Column(String(255))
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    def mark_resolved(self, resolved_by: str | None = None) -> None:
        self.resolved = True
        self.resolved_at = _utcnow()
        self.resolved_by = resolved_by
