from pydantic import BaseModel, Field, field_validator, model_validator
from datetime import datetime
from typing import List

from .models import (
    CouponTypeEnum,
    OrderStatusEnum,
    PaymentStatusEnum,
    StockStatusEnum,
)

# ---------- PRODUCT ----------

class ProductBase(BaseModel):
    name: str
    description: str = ""
    price: float = Field(..., ge=0)
    original_price: float | None = Field(None, ge=0)
    image: str | None = None
    category: str
    stock: StockStatusEnum = StockStatusEnum.IN_STOCK
    is_popular: bool = False
    is_new: bool = False
    offer_tag: str | None = None


class ProductCreate(ProductBase):
    pass


class ProductUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    price: float | None = Field(None, ge=0)
    original_price: float | None = Field(None, ge=0)
    image: str | None = None
    category: str | None = None
    stock: StockStatusEnum | None = None
    is_popular: bool | None = None
    is_new: bool | None = None
    offer_tag: str | None = None

    # Omit a field to keep it; only the optional columns may be cleared
    @field_validator(
        "name", "description", "price", "category", "stock", "is_popular", "is_new",
        mode="before",
    )
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("This field cannot be null")
        return v


class StockUpdate(BaseModel):
    stock: StockStatusEnum


class ProductOut(ProductBase):
    id: str
    image: str
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


# =========================
# CartItem Schemas
# =========================

# Every field is optional here so the cart store can report
# missing properties itself.
class CartItemCreate(BaseModel):
    id: str | None = None
    name: str | None = None
    price: float | None = None
    original_price: float | None = None
    image: str | None = None
    quantity: int | None = None


class CartItemUpdate(BaseModel):
    quantity: int


class CartItemResponse(BaseModel):
    id: str
    name: str
    price: float
    original_price: float | None = None
    image: str
    quantity: int


class CartResponse(BaseModel):
    items: List[CartItemResponse]
    subtotal: float


# =========================
# Order Schemas
# =========================

class OrderItemIn(BaseModel):
    id: str
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)


class OrderItemOut(BaseModel):
    id: str
    name: str
    price: float
    quantity: int
    total: float


class TrackingStepSchema(BaseModel):
    title: str
    description: str = ""
    time: datetime | None = None
    completed: bool = False

    class Config:
        from_attributes = True


class OrderCreate(BaseModel):
    customer: str
    email: str
    date: datetime | None = None
    items: List[OrderItemIn]
    subtotal: float = 0
    delivery_fee: float = 0
    discount: float = 0
    promo_code: str | None = None
    total: float
    status: OrderStatusEnum = OrderStatusEnum.PENDING
    payment_status: PaymentStatusEnum = PaymentStatusEnum.PENDING
    payment_method: str = "Cash on Delivery"
    location: str = ""
    loyalty_points: int = 0
    tracking_steps: List[TrackingStepSchema] | None = None


class OrderOut(BaseModel):
    id: str
    customer: str
    email: str
    date: datetime
    items: List[OrderItemOut]
    subtotal: float
    delivery_fee: float
    discount: float
    promo_code: str | None = None
    total: float
    status: OrderStatusEnum
    payment_status: PaymentStatusEnum
    payment_method: str
    location: str
    loyalty_points: int
    tracking_steps: List[TrackingStepSchema]


class OrderStatusUpdate(BaseModel):
    status: OrderStatusEnum


class PaymentStatusUpdate(BaseModel):
    payment_status: PaymentStatusEnum


# =========================
# Coupon Schemas
# =========================

class CouponBase(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    type: CouponTypeEnum = CouponTypeEnum.PERCENTAGE
    value: float = Field(..., ge=0)
    min_purchase: float | None = Field(None, ge=0)
    valid_from: datetime
    valid_to: datetime
    max_uses: int | None = Field(None, ge=1)
    is_active: bool = True


class CouponCreate(CouponBase):
    current_uses: int = Field(0, ge=0)

    @model_validator(mode="after")
    def window_is_ordered(self):
        if self.valid_to < self.valid_from:
            raise ValueError("valid_to must not be before valid_from")
        return self


class CouponUpdate(BaseModel):
    code: str | None = Field(None, min_length=1, max_length=50)
    type: CouponTypeEnum | None = None
    value: float | None = Field(None, ge=0)
    min_purchase: float | None = Field(None, ge=0)
    valid_from: datetime | None = None
    valid_to: datetime | None = None
    max_uses: int | None = Field(None, ge=1)
    current_uses: int | None = Field(None, ge=0)
    is_active: bool | None = None

    @field_validator(
        "code", "type", "value", "valid_from", "valid_to", "current_uses", "is_active",
        mode="before",
    )
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("This field cannot be null")
        return v


class CouponOut(CouponBase):
    id: str
    current_uses: int

    class Config:
        from_attributes = True


class CouponValidateRequest(BaseModel):
    code: str
    purchase_amount: float = Field(..., ge=0)


class CouponValidation(BaseModel):
    valid: bool
    discount: float = 0
    message: str | None = None


# =========================
# Reward Schemas
# =========================

class RewardCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = None
    points: int = Field(..., ge=1)
    image: str = ""
    active: bool = True


class RewardUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = None
    points: int | None = Field(None, ge=1)
    image: str | None = None
    active: bool | None = None

    @field_validator("name", "points", "image", "active", mode="before")
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("This field cannot be null")
        return v


class RewardOut(RewardCreate):
    id: str

    class Config:
        from_attributes = True


class RedemptionOut(BaseModel):
    id: str
    user_id: str
    reward_id: str
    reward_name: str
    points_used: int
    redeemed_at: datetime

    class Config:
        from_attributes = True
