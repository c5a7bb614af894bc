import random
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import structlog

from .cart import cart_subtotal, clear_cart, get_cart_items
from .config import DEFAULT_DELIVERY_FEE
from .coupon import increment_coupon_use, normalize_code, validate_coupon
from .dependencies import get_db, get_current_user
from .loyalty import credit_points, points_earned
from .models import User
from .order import create_order, get_order_by_id, link_order_to_user, order_to_dict
from .store_schema import OrderCreate, OrderItemIn, OrderOut

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/checkout", tags=["checkout"])


# Range of the fee quoted when the customer shares their location
GPS_DELIVERY_FEE_RANGE = (100, 300)


# =====================================================
# Pydantic Schemas
# =====================================================

class CheckoutRequest(BaseModel):
    location: str = Field(..., max_length=255)
    payment_method: str = "Cash on Delivery"
    promo_code: str | None = None
    delivery_method: Literal["manual", "gps"] = "manual"


class CheckoutQuote(BaseModel):
    subtotal: float
    delivery_fee: float
    discount: float
    promo_code: str | None = None
    total: float
    loyalty_points: int


# =====================================================
# Service Logic
# =====================================================

def delivery_fee_for(delivery_method: str) -> float:
    if delivery_method == "gps":
        # Not geocoded; the fee is only indicative
        return float(random.randint(*GPS_DELIVERY_FEE_RANGE))
    return DEFAULT_DELIVERY_FEE


def quote_checkout(
    db: Session,
    items: list[dict],
    promo_code: str | None = None,
    delivery_method: str = "manual",
) -> CheckoutQuote:
    """
    Work out the totals for a cart:
    total = subtotal + delivery fee - coupon discount.

    An unusable promo code is a 400 carrying the validator's message.
    The discount is capped at the subtotal so a Fixed coupon can't push
    the order below the delivery fee.
    """
    subtotal = round(cart_subtotal(items), 2)
    delivery_fee = delivery_fee_for(delivery_method)

    discount = 0.0
    code = normalize_code(promo_code) or None
    if code:
        result = validate_coupon(db, code, subtotal)
        if not result.valid:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=result.message or "Invalid promo code"
            )
        discount = round(min(result.discount, subtotal), 2)

    total = round(subtotal + delivery_fee - discount, 2)

    return CheckoutQuote(
        subtotal=subtotal,
        delivery_fee=delivery_fee,
        discount=discount,
        promo_code=code,
        total=total,
        loyalty_points=points_earned(total),
    )


def place_order(
    db: Session,
    order_data: OrderCreate,
    user_email: str,
    promo_code: str | None = None,
    cart_owner: User | None = None,
) -> str:
    """
    Record an order and everything that hangs off it:

    1. award floor(total / 115) loyalty points on the order
    2. create the order
    3. credit the points to the account with `user_email` and add the
       order to its history (a missing account is logged, not an error)
    4. count a use of `promo_code`, if one was applied
    5. empty `cart_owner`'s cart

    All steps share one transaction: if any of them fails nothing is
    kept and the caller gets a retryable error.
    """
    loyalty_points = points_earned(order_data.total)

    try:
        order_id = create_order(
            db,
            order_data.model_copy(update={"loyalty_points": loyalty_points}),
            commit=False,
        )

        user = db.query(User).filter(User.email == user_email).first()
        if user:
            credit_points(db, user.id, loyalty_points, commit=False)
            link_order_to_user(db, user, order_id, commit=False)
        else:
            logger.warning("checkout_customer_not_found", email=user_email, order_id=order_id)

        if promo_code and not increment_coupon_use(db, promo_code):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="This coupon has reached maximum usage"
            )

        if cart_owner is not None:
            clear_cart(db, cart_owner, commit=False)

        db.commit()

    except HTTPException:
        db.rollback()
        raise
    except SQLAlchemyError:
        db.rollback()
        logger.exception("order_placement_failed", email=user_email)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Order placement failed. Please try again."
        )

    logger.info(
        "order_placed",
        order_id=order_id,
        email=user_email,
        total=order_data.total,
        loyalty_points=loyalty_points,
        promo_code=promo_code,
    )
    return order_id


# =====================================================
# API Routes
# =====================================================

@router.get("/quote", response_model=CheckoutQuote)
def preview_checkout(
    promo_code: str | None = None,
    delivery_method: Literal["manual", "gps"] = "manual",
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    items = get_cart_items(db, current_user)
    return quote_checkout(db, items, promo_code, delivery_method)


@router.post("", response_model=OrderOut, status_code=status.HTTP_201_CREATED)
def checkout(
    data: CheckoutRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if not data.location.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Please provide a delivery address before checkout."
        )

    items = get_cart_items(db, current_user)
    if not items:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cart is empty"
        )

    quote = quote_checkout(db, items, data.promo_code, data.delivery_method)

    order_data = OrderCreate(
        customer=current_user.full_name,
        email=current_user.email,
        items=[
            OrderItemIn(
                id=item["id"],
                name=item["name"],
                price=item["price"],
                quantity=item["quantity"],
            )
            for item in items
        ],
        subtotal=quote.subtotal,
        delivery_fee=quote.delivery_fee,
        discount=quote.discount,
        promo_code=quote.promo_code,
        total=quote.total,
        payment_method=data.payment_method,
        location=data.location.strip(),
    )

    order_id = place_order(
        db,
        order_data,
        current_user.email,
        promo_code=quote.promo_code,
        cart_owner=current_user,
    )

    return order_to_dict(get_order_by_id(db, order_id))
