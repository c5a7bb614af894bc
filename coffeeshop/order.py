from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.exc import SQLAlchemyError
import structlog

from .models import (
    Order,
    OrderItem,
    OrderStatusEnum,
    PaymentStatusEnum,
    TrackingStep,
    User,
    utcnow,
)
from .database import commit_or_500
from .dependencies import (
    get_db,
    get_current_user,
    has_capability,
    require_capability,
    MANAGE_ORDERS,
)
from .store_schema import (
    OrderCreate,
    OrderOut,
    OrderStatusUpdate,
    PaymentStatusUpdate,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])
admin_router = APIRouter(prefix="/admin/orders", tags=["admin"])


# =====================================================
# Tracking
# =====================================================

TRACKING_STEPS = [
    ("Order Placed", "Your order has been received"),
    ("Payment Confirmed", "Payment has been confirmed"),
    ("Preparing", "Your order is being prepared"),
    ("Out for Delivery", "Your order is on the way"),
    ("Delivered", "Your order has been delivered"),
]

_TITLES = [title for title, _ in TRACKING_STEPS]

# Steps that count as completed once an order reaches a status.
# Each entry is a prefix of the canonical sequence.
STATUS_STEPS = {
    OrderStatusEnum.PENDING: _TITLES[:1],
    OrderStatusEnum.PROCESSING: _TITLES[:3],
    OrderStatusEnum.OUT_FOR_DELIVERY: _TITLES[:4],
    OrderStatusEnum.DELIVERED: _TITLES[:5],
    OrderStatusEnum.CANCELLED: [],
}


def default_tracking_steps(placed_at) -> List[TrackingStep]:
    return [
        TrackingStep(
            position=position,
            title=title,
            description=description,
            time=placed_at if position == 0 else None,
            completed=position == 0,
        )
        for position, (title, description) in enumerate(TRACKING_STEPS)
    ]


# =====================================================
# Serialization
# =====================================================

def order_to_dict(order: Order) -> dict:
    return {
        "id": order.id,
        "customer": order.customer,
        "email": order.email,
        "date": order.date,
        "items": [
            {
                "id": item.product_id,
                "name": item.name,
                "price": item.price,
                "quantity": item.quantity,
                "total": item.total,
            }
            for item in order.items
        ],
        "subtotal": order.subtotal,
        "delivery_fee": order.delivery_fee,
        "discount": order.discount,
        "promo_code": order.promo_code,
        "total": order.total,
        "status": order.status,
        "payment_status": order.payment_status,
        "payment_method": order.payment_method,
        "location": order.location,
        "loyalty_points": order.loyalty_points,
        "tracking_steps": [
            {
                "title": step.title,
                "description": step.description,
                "time": step.time,
                "completed": step.completed,
            }
            for step in order.tracking_steps
        ],
    }


# =====================================================
# Service Logic
# =====================================================

def _orders_query(db: Session):
    return db.query(Order).options(
        selectinload(Order.items),
        selectinload(Order.tracking_steps),
    )


def create_order(db: Session, data: OrderCreate, commit: bool = True) -> str:
    """
    Persist a new order and return its id.

    Tracking steps supplied by the caller are stored as given;
    otherwise the five canonical steps are seeded with "Order Placed"
    already completed at creation time.
    """
    placed_at = data.date or utcnow()

    order = Order(
        customer=data.customer,
        email=data.email,
        date=placed_at,
        subtotal=data.subtotal,
        delivery_fee=data.delivery_fee,
        discount=data.discount,
        promo_code=data.promo_code,
        total=data.total,
        status=data.status,
        payment_status=data.payment_status,
        payment_method=data.payment_method,
        location=data.location,
        loyalty_points=data.loyalty_points,
    )

    order.items = [
        OrderItem(
            product_id=item.id,
            name=item.name,
            price=item.price,
            quantity=item.quantity,
            total=item.price * item.quantity,
        )
        for item in data.items
    ]

    if data.tracking_steps is not None:
        order.tracking_steps = [
            TrackingStep(
                position=position,
                title=step.title,
                description=step.description,
                time=step.time,
                completed=step.completed,
            )
            for position, step in enumerate(data.tracking_steps)
        ]
    else:
        order.tracking_steps = default_tracking_steps(placed_at)

    db.add(order)
    db.flush()  # get order.id

    if commit:
        commit_or_500(db, "create_order", order_id=order.id)

    logger.info("order_created", order_id=order.id, email=order.email, total=order.total)
    return order.id


def get_order_by_id(db: Session, order_id: str) -> Order | None:
    return _orders_query(db).filter(Order.id == order_id).first()


def get_orders(db: Session) -> List[Order]:
    return _orders_query(db).order_by(Order.date.desc()).all()


def get_recent_orders(db: Session, limit: int = 5) -> List[Order]:
    return _orders_query(db).order_by(Order.date.desc()).limit(limit).all()


def get_orders_by_customer(db: Session, email: str) -> List[Order]:
    return (
        _orders_query(db)
        .filter(Order.email == email)
        .order_by(Order.date.desc())
        .all()
    )


def get_orders_by_status(db: Session, order_status: OrderStatusEnum) -> List[Order]:
    return (
        _orders_query(db)
        .filter(Order.status == order_status)
        .order_by(Order.date.desc())
        .all()
    )


def _get_order_or_404(db: Session, order_id: str) -> Order:
    order = get_order_by_id(db, order_id)
    if not order:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Order with ID {order_id} not found"
        )
    return order


def update_order_status(db: Session, order_id: str, new_status: OrderStatusEnum) -> Order:
    """
    Move an order to `new_status` and recompute every tracking step.

    A step becoming complete is stamped with the current time; a step
    that was already complete keeps its original time. Steps outside
    the new status's prefix are marked incomplete.
    """
    order = _get_order_or_404(db, order_id)

    completed_titles = STATUS_STEPS.get(new_status, [])
    now = utcnow()

    for step in order.tracking_steps:
        is_completed = step.title in completed_titles
        if is_completed and not step.completed:
            step.time = now
        step.completed = is_completed

    order.status = new_status

    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("order_status_update_failed", order_id=order_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update order status. Please try again."
        )

    db.refresh(order)
    logger.info("order_status_updated", order_id=order_id, status=new_status.value)
    return order


def update_payment_status(db: Session, order_id: str, payment_status: PaymentStatusEnum) -> Order:
    order = _get_order_or_404(db, order_id)
    order.payment_status = payment_status
    commit_or_500(db, "update_payment_status", order_id=order_id)
    db.refresh(order)
    return order


def delete_order(db: Session, order_id: str):
    """
    Hard-delete an order. The owner's order list is derived from
    orders.user_id, so it drops the order in the same commit.
    """
    order = _get_order_or_404(db, order_id)
    db.delete(order)
    commit_or_500(db, "delete_order", order_id=order_id)
    logger.info("order_deleted", order_id=order_id)


def link_order_to_user(db: Session, user: User, order_id: str, commit: bool = True):
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")

    # Already on the user's list
    if order.user_id == user.id:
        return

    order.user_id = user.id
    if commit:
        commit_or_500(db, "link_order", order_id=order_id)


def remove_order_from_user(db: Session, user: User, order_id: str, commit: bool = True):
    order = db.query(Order).filter(Order.id == order_id).first()
    if order is None or order.user_id != user.id:
        return

    order.user_id = None
    if commit:
        commit_or_500(db, "unlink_order", order_id=order_id)


# =====================================================
# API Routes
# =====================================================

@router.get("", response_model=List[OrderOut])
def my_orders(current_user: User = Depends(get_current_user)):
    # The account's own order list, newest first
    return [order_to_dict(o) for o in current_user.orders]


@router.get("/{order_id}", response_model=OrderOut)
def track_order(
    order_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    order = _get_order_or_404(db, order_id)

    if order.user_id != current_user.id and not has_capability(current_user, MANAGE_ORDERS):
        # Don't reveal other customers' order ids
        raise HTTPException(status_code=404, detail=f"Order with ID {order_id} not found")

    return order_to_dict(order)


@admin_router.get("", response_model=List[OrderOut])
def list_orders(
    order_status: OrderStatusEnum | None = Query(None, alias="status"),
    db: Session = Depends(get_db),
    _admin=Depends(require_capability(MANAGE_ORDERS)),
):
    orders = get_orders_by_status(db, order_status) if order_status else get_orders(db)
    return [order_to_dict(o) for o in orders]


@admin_router.patch("/{order_id}/status", response_model=OrderOut)
def change_order_status(
    order_id: str,
    data: OrderStatusUpdate,
    db: Session = Depends(get_db),
    _admin=Depends(require_capability(MANAGE_ORDERS)),
):
    return order_to_dict(update_order_status(db, order_id, data.status))


@admin_router.patch("/{order_id}/payment", response_model=OrderOut)
def change_payment_status(
    order_id: str,
    data: PaymentStatusUpdate,
    db: Session = Depends(get_db),
    _admin=Depends(require_capability(MANAGE_ORDERS)),
):
    return order_to_dict(update_payment_status(db, order_id, data.payment_status))


@admin_router.delete("/{order_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_order(
    order_id: str,
    db: Session = Depends(get_db),
    _admin=Depends(require_capability(MANAGE_ORDERS)),
):
    delete_order(db, order_id)
