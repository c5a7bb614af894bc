from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
import structlog

from .database import commit_or_500
from .dependencies import (
    get_db,
    require_capability,
    MANAGE_CUSTOMERS,
    MANAGE_ORDERS,
)
from .models import Order, Product, RoleEnum, User
from .order import get_recent_orders, order_to_dict
from .schemas import CustomerOut, CustomerUpdate
from .store_schema import OrderOut

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


class DashboardStats(BaseModel):
    total_revenue: float
    total_orders: int
    active_customers: int
    product_inventory: int
    recent_orders: List[OrderOut]


def user_to_customer(user: User) -> CustomerOut:
    return CustomerOut(
        id=user.id,
        name=user.full_name,
        email=user.email,
        phone=user.phone,
        address=user.address,
        loyalty_points=user.loyalty_points,
        registered_on=user.created_at,
        orders=user.order_ids,
    )


def _get_customer_or_404(db: Session, customer_id: str) -> User:
    user = (
        db.query(User)
        .filter(User.id == customer_id, User.role == RoleEnum.CUSTOMER)
        .first()
    )
    if not user:
        raise HTTPException(status_code=404, detail="Customer not found")
    return user


@router.get("/customers", response_model=List[CustomerOut])
def list_customers(
    db: Session = Depends(get_db),
    _admin=Depends(require_capability(MANAGE_CUSTOMERS)),
):
    users = (
        db.query(User)
        .filter(User.role == RoleEnum.CUSTOMER)
        .order_by(User.created_at.desc())
        .all()
    )
    return [user_to_customer(u) for u in users]


@router.get("/customers/{customer_id}", response_model=CustomerOut)
def read_customer(
    customer_id: str,
    db: Session = Depends(get_db),
    _admin=Depends(require_capability(MANAGE_CUSTOMERS)),
):
    return user_to_customer(_get_customer_or_404(db, customer_id))


@router.put("/customers/{customer_id}", response_model=CustomerOut)
def update_customer(
    customer_id: str,
    data: CustomerUpdate,
    db: Session = Depends(get_db),
    _admin=Depends(require_capability(MANAGE_CUSTOMERS)),
):
    user = _get_customer_or_404(db, customer_id)

    for key, value in data.model_dump(exclude_unset=True).items():
        setattr(user, key, value)

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=400, detail="Email already registered")
    except SQLAlchemyError:
        db.rollback()
        logger.exception("db_write_failed", action="update_customer", user_id=customer_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save changes. Please try again."
        )

    db.refresh(user)
    return user_to_customer(user)


@router.delete("/customers/{customer_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_customer(
    customer_id: str,
    db: Session = Depends(get_db),
    _admin=Depends(require_capability(MANAGE_CUSTOMERS)),
):
    """
    Remove a customer with their cart and redemptions.
    Their orders stay on record, detached from the account.
    """
    user = _get_customer_or_404(db, customer_id)

    db.delete(user)
    commit_or_500(db, "delete_customer", user_id=customer_id)
    logger.info("customer_deleted", user_id=customer_id)


@router.get("/dashboard", response_model=DashboardStats)
def dashboard(
    db: Session = Depends(get_db),
    _admin=Depends(require_capability(MANAGE_ORDERS)),
):
    total_revenue = db.query(func.coalesce(func.sum(Order.total), 0.0)).scalar()

    return DashboardStats(
        total_revenue=total_revenue,
        total_orders=db.query(Order).count(),
        active_customers=db.query(User).filter(User.role == RoleEnum.CUSTOMER).count(),
        product_inventory=db.query(Product).count(),
        recent_orders=[order_to_dict(o) for o in get_recent_orders(db, 5)],
    )
