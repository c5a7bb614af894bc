from datetime import datetime, timezone
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
import structlog

from .dependencies import get_db, require_capability, MANAGE_OFFERS
from .models import Coupon, CouponTypeEnum, utcnow
from .store_schema import (
    CouponCreate,
    CouponOut,
    CouponUpdate,
    CouponValidateRequest,
    CouponValidation,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/coupons", tags=["offers"])
admin_router = APIRouter(prefix="/admin/coupons", tags=["admin"])


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def get_coupon_by_code(db: Session, code: str) -> Coupon | None:
    return db.query(Coupon).filter(Coupon.code == normalize_code(code)).first()


# =====================================================
# Validation
# =====================================================

def validate_coupon(db: Session, code: str, purchase_amount: float) -> CouponValidation:
    """
    Check a promo code against the stored coupon and work out the discount.

    Failures are reported in the result, not raised. A Fixed coupon's
    discount is returned as-is even when it exceeds `purchase_amount`.
    """
    coupon = get_coupon_by_code(db, code)

    if not coupon:
        return CouponValidation(valid=False, message="Invalid coupon code")

    if not coupon.is_active:
        return CouponValidation(valid=False, message="This coupon is inactive")

    now = utcnow()
    if now < _naive_utc(coupon.valid_from) or now > _naive_utc(coupon.valid_to):
        return CouponValidation(valid=False, message="This coupon has expired")

    if coupon.max_uses is not None and coupon.current_uses >= coupon.max_uses:
        return CouponValidation(
            valid=False,
            message="This coupon has reached maximum usage"
        )

    if coupon.min_purchase and purchase_amount < coupon.min_purchase:
        return CouponValidation(
            valid=False,
            message=f"Minimum purchase of KES {coupon.min_purchase:g} required"
        )

    if coupon.type == CouponTypeEnum.PERCENTAGE:
        discount = (coupon.value / 100) * purchase_amount
    else:
        discount = coupon.value

    return CouponValidation(valid=True, discount=discount)


def increment_coupon_use(db: Session, code: str) -> bool:
    """
    Count one redemption of `code`.

    Done as a single guarded UPDATE so the usage cap holds even when
    two checkouts race for the last use. Returns False when no row
    was updated (unknown code or cap already reached). Does not commit.
    """
    result = db.execute(
        update(Coupon)
        .where(Coupon.code == normalize_code(code))
        .where(
            or_(
                Coupon.max_uses.is_(None),
                Coupon.current_uses < Coupon.max_uses,
            )
        )
        .values(current_uses=Coupon.current_uses + 1, updated_at=utcnow())
        .execution_options(synchronize_session="fetch")
    )

    if result.rowcount == 0:
        logger.warning("coupon_increment_skipped", code=normalize_code(code))
        return False
    return True


# =====================================================
# Admin service logic
# =====================================================

def _get_coupon_or_404(db: Session, coupon_id: str) -> Coupon:
    coupon = db.query(Coupon).filter(Coupon.id == coupon_id).first()
    if not coupon:
        raise HTTPException(status_code=404, detail="Coupon not found")
    return coupon


def _commit(db: Session, action: str):
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="A coupon with this code already exists"
        )
    except SQLAlchemyError:
        db.rollback()
        logger.exception("coupon_write_failed", action=action)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save coupon. Please try again."
        )


def create_coupon(db: Session, data: CouponCreate) -> Coupon:
    values = data.model_dump()
    values["code"] = normalize_code(values["code"])
    values["valid_from"] = _naive_utc(values["valid_from"])
    values["valid_to"] = _naive_utc(values["valid_to"])

    coupon = Coupon(**values)
    db.add(coupon)
    _commit(db, "create")
    db.refresh(coupon)
    logger.info("coupon_created", code=coupon.code, type=coupon.type.value)
    return coupon


def update_coupon(db: Session, coupon_id: str, data: CouponUpdate) -> Coupon:
    coupon = _get_coupon_or_404(db, coupon_id)
    values = data.model_dump(exclude_unset=True)

    if "code" in values:
        values["code"] = normalize_code(values["code"])
    for key in ("valid_from", "valid_to"):
        if key in values:
            values[key] = _naive_utc(values[key])

    valid_from = values.get("valid_from", coupon.valid_from)
    valid_to = values.get("valid_to", coupon.valid_to)
    if valid_to < valid_from:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="valid_to must not be before valid_from"
        )

    for key, value in values.items():
        setattr(coupon, key, value)

    _commit(db, "update")
    db.refresh(coupon)
    return coupon


def toggle_coupon(db: Session, coupon_id: str) -> Coupon:
    coupon = _get_coupon_or_404(db, coupon_id)
    coupon.is_active = not coupon.is_active
    _commit(db, "toggle")
    db.refresh(coupon)
    return coupon


def delete_coupon(db: Session, coupon_id: str):
    coupon = _get_coupon_or_404(db, coupon_id)
    db.delete(coupon)
    _commit(db, "delete")


# =====================================================
# API Routes
# =====================================================

@router.post("/validate", response_model=CouponValidation)
def check_coupon(payload: CouponValidateRequest, db: Session = Depends(get_db)):
    return validate_coupon(db, payload.code, payload.purchase_amount)


@admin_router.get("", response_model=List[CouponOut])
def list_coupons(
    db: Session = Depends(get_db),
    _admin=Depends(require_capability(MANAGE_OFFERS)),
):
    return db.query(Coupon).order_by(Coupon.code).all()


@admin_router.post("", response_model=CouponOut, status_code=status.HTTP_201_CREATED)
def add_coupon(
    data: CouponCreate,
    db: Session = Depends(get_db),
    _admin=Depends(require_capability(MANAGE_OFFERS)),
):
    return create_coupon(db, data)


@admin_router.get("/{coupon_id}", response_model=CouponOut)
def read_coupon(
    coupon_id: str,
    db: Session = Depends(get_db),
    _admin=Depends(require_capability(MANAGE_OFFERS)),
):
    return _get_coupon_or_404(db, coupon_id)


@admin_router.put("/{coupon_id}", response_model=CouponOut)
def edit_coupon(
    coupon_id: str,
    data: CouponUpdate,
    db: Session = Depends(get_db),
    _admin=Depends(require_capability(MANAGE_OFFERS)),
):
    return update_coupon(db, coupon_id, data)


@admin_router.patch("/{coupon_id}/toggle", response_model=CouponOut)
def toggle_coupon_active(
    coupon_id: str,
    db: Session = Depends(get_db),
    _admin=Depends(require_capability(MANAGE_OFFERS)),
):
    return toggle_coupon(db, coupon_id)


@admin_router.delete("/{coupon_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_coupon(
    coupon_id: str,
    db: Session = Depends(get_db),
    _admin=Depends(require_capability(MANAGE_OFFERS)),
):
    delete_coupon(db, coupon_id)
