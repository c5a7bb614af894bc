"""
Database models for the coffee shop
-----------------------------------
Tech stack:
- FastAPI
- SQLAlchemy ORM
- SQLite by default, any SQLAlchemy URL via DATABASE_URL

This file contains:
- User model (single aggregate for customers and admins)
- Product model
- Cart & CartItem models
- Order, OrderItem & TrackingStep models
- Coupon model
- Reward & Redemption models
"""

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Text,
    UniqueConstraint,
    Enum as SQLEnum
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def generate_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    # Naive UTC, which is what SQLite hands back
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class RoleEnum(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"


class StockStatusEnum(str, Enum):
    IN_STOCK = "In Stock"
    LOW_STOCK = "Low Stock"
    OUT_OF_STOCK = "Out of Stock"


class OrderStatusEnum(str, Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    OUT_FOR_DELIVERY = "Out for Delivery"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


class PaymentStatusEnum(str, Enum):
    PAID = "Paid"
    PENDING = "Pending"


class CouponTypeEnum(str, Enum):
    PERCENTAGE = "Percentage"
    FIXED = "Fixed"



# User

class User(Base):
    """
    Represents a shop account, customer or admin.
    Holds the one authoritative loyalty balance and order history.
    """

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_id)

    # Login credential
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)

    full_name = Column(String(100), nullable=False)
    phone = Column(String(30), nullable=True)
    address = Column(Text, nullable=True)

    loyalty_points = Column(Integer, default=0, nullable=False)

    role = Column(
        SQLEnum(RoleEnum, values_callable=_enum_values),
        default=RoleEnum.CUSTOMER,
        nullable=False
    )

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # One-to-one cart
    cart = relationship(
        "Cart",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan"
    )

    # Orders survive the user (user_id is nulled)
    orders = relationship(
        "Order",
        back_populates="user",
        order_by="Order.date.desc()"
    )

    redemptions = relationship(
        "Redemption",
        back_populates="user",
        cascade="all, delete-orphan",
        order_by="Redemption.redeemed_at.desc()"
    )

    @property
    def order_ids(self):
        return [order.id for order in self.orders]

    @property
    def is_admin(self):
        return self.role == RoleEnum.ADMIN

    def __str__(self):
        return self.full_name or self.email



# Product

class Product(Base):
    """
    Represents a menu item on sale.
    """

    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=generate_id)

    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=False, default="")

    price = Column(Float, nullable=False)
    # Pre-discount price shown struck through on offers
    original_price = Column(Float, nullable=True)

    image = Column(String, nullable=False, default="")
    category = Column(String(50), index=True, nullable=False)

    stock = Column(
        SQLEnum(StockStatusEnum, values_callable=_enum_values),
        default=StockStatusEnum.IN_STOCK,
        nullable=False
    )

    is_popular = Column(Boolean, default=False)
    is_new = Column(Boolean, default=False)
    offer_tag = Column(String(50), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now()
    )

    def __str__(self):
        return self.name



# Cart

class Cart(Base):
    """
    Shopping cart belonging to a user. At most one per user.
    """

    __tablename__ = "carts"

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False
    )

    user = relationship("User", back_populates="cart")

    # Items inside this cart, in the order they were added
    items = relationship(
        "CartItem",
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartItem.id"
    )

    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def total_price(self):
        return sum(item.total_price for item in self.items)

    def __str__(self):
        return str(self.id)


# CartItem

class CartItem(Base):
    """
    Snapshot of a product inside a cart. One row per product id.
    """

    __tablename__ = "cart_items"
    __table_args__ = (
        UniqueConstraint("cart_id", "product_id", name="uq_cart_product"),
    )

    id = Column(Integer, primary_key=True, index=True)

    cart_id = Column(
        Integer,
        ForeignKey("carts.id", ondelete="CASCADE"),
        nullable=False
    )

    product_id = Column(String(36), nullable=False)
    name = Column(String(100), nullable=False)
    price = Column(Float, nullable=False)
    original_price = Column(Float, nullable=True)
    image = Column(String, nullable=False, default="")

    quantity = Column(Integer, nullable=False, default=1)

    cart = relationship("Cart", back_populates="items")

    @property
    def total_price(self):
        return self.price * self.quantity

    def __str__(self):
        return f"{self.product_id} ({self.name})"



# Order

class Order(Base):
    """
    Represents a placed order.
    Created at checkout, status and tracking moved along by admins.
    """

    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=generate_id)

    # Customer snapshot at time of order
    customer = Column(String(100), nullable=False)
    email = Column(String, index=True, nullable=False)

    date = Column(DateTime, default=utcnow, index=True, nullable=False)

    subtotal = Column(Float, nullable=False, default=0.0)
    delivery_fee = Column(Float, nullable=False, default=0.0)
    discount = Column(Float, nullable=False, default=0.0)
    promo_code = Column(String(50), nullable=True)
    total = Column(Float, nullable=False)

    status = Column(
        SQLEnum(OrderStatusEnum, values_callable=_enum_values),
        default=OrderStatusEnum.PENDING,
        index=True,
        nullable=False
    )

    payment_status = Column(
        SQLEnum(PaymentStatusEnum, values_callable=_enum_values),
        default=PaymentStatusEnum.PENDING,
        nullable=False
    )
    payment_method = Column(String(50), nullable=False, default="Cash on Delivery")

    # Delivery address snapshot
    location = Column(String(255), nullable=False, default="")

    loyalty_points = Column(Integer, nullable=False, default=0)

    # Owning account, if any
    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="SET NULL"),
        index=True,
        nullable=True
    )

    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="orders")

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id"
    )

    tracking_steps = relationship(
        "TrackingStep",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="TrackingStep.position"
    )

    def __str__(self):
        return f"Order No {self.id}"


class OrderItem(Base):
    """
    Individual product entry inside an order.
    Stores snapshot price for order history.
    """

    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)

    order_id = Column(
        String(36),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False
    )

    product_id = Column(String(36), nullable=False)
    name = Column(String(100), nullable=False)

    # Snapshot price at time of order
    price = Column(Float, nullable=False)
    quantity = Column(Integer, nullable=False)
    total = Column(Float, nullable=False)

    order = relationship("Order", back_populates="items")

    def __str__(self):
        return f"OrderItem {self.id}"


class TrackingStep(Base):
    """
    One of the five fulfilment milestones of an order.
    """

    __tablename__ = "tracking_steps"

    id = Column(Integer, primary_key=True, index=True)

    order_id = Column(
        String(36),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False
    )

    position = Column(Integer, nullable=False)
    title = Column(String(50), nullable=False)
    description = Column(String(255), nullable=False, default="")

    # When the step was first completed
    time = Column(DateTime, nullable=True)
    completed = Column(Boolean, default=False, nullable=False)

    order = relationship("Order", back_populates="tracking_steps")



# Coupon

class Coupon(Base):
    """
    Discount code managed from the offers back-office.
    """

    __tablename__ = "coupons"

    id = Column(String(36), primary_key=True, default=generate_id)

    # Always stored uppercase
    code = Column(String(50), unique=True, index=True, nullable=False)

    type = Column(
        SQLEnum(CouponTypeEnum, values_callable=_enum_values),
        default=CouponTypeEnum.PERCENTAGE,
        nullable=False
    )
    # Percentage (0-100) or fixed amount
    value = Column(Float, nullable=False)

    min_purchase = Column(Float, nullable=True)

    # Validity window
    valid_from = Column(DateTime, nullable=False)
    valid_to = Column(DateTime, nullable=False)

    # Usage limits (None = unlimited)
    max_uses = Column(Integer, nullable=True)
    current_uses = Column(Integer, default=0, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now()
    )

    def __str__(self):
        return self.code



# Reward

class Reward(Base):
    """
    Item a customer can exchange loyalty points for.
    """

    __tablename__ = "rewards"

    id = Column(String(36), primary_key=True, default=generate_id)

    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)

    # Cost in loyalty points
    points = Column(Integer, nullable=False)

    image = Column(String, nullable=False, default="")
    active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=utcnow)

    def __str__(self):
        return self.name


class Redemption(Base):
    """
    Permanent record of points exchanged for a reward.
    Never updated or deleted on its own.
    """

    __tablename__ = "redemptions"

    id = Column(String(36), primary_key=True, default=generate_id)

    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
        nullable=False
    )

    # Plain copy so history survives reward deletion
    reward_id = Column(String(36), nullable=False)
    reward_name = Column(String(100), nullable=False)

    points_used = Column(Integer, nullable=False)
    redeemed_at = Column(DateTime, default=utcnow, nullable=False)

    user = relationship("User", back_populates="redemptions")
