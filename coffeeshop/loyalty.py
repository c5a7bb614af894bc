from math import floor
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import structlog

from .dependencies import (
    get_db,
    get_current_user,
    require_capability,
    MANAGE_LOYALTY,
)
from .database import commit_or_500
from .models import Redemption, Reward, RoleEnum, User, utcnow
from .store_schema import (
    RedemptionOut,
    RewardCreate,
    RewardOut,
    RewardUpdate,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/loyalty", tags=["loyalty"])
admin_router = APIRouter(prefix="/admin", tags=["admin"])


# One point per this many currency units spent
POINTS_RATE = 115

# (tier, lower bound) from the top down
TIERS = [
    ("Gold", 500),
    ("Silver", 200),
    ("Bronze", 0),
]

# Next tier name and the points needed to reach it, per tier.
# Diamond is only a progress-bar ceiling.
NEXT_TIER = {
    "Bronze": ("Silver", 200),
    "Silver": ("Gold", 500),
    "Gold": ("Diamond", 1000),
}


# =====================================================
# Pydantic Schemas
# =====================================================

class TierProgress(BaseModel):
    tier: str
    next_tier: str
    next_threshold: int
    points_to_next: int
    progress: float


class LoyaltySummary(TierProgress):
    points: int
    order_count: int


class LoyaltyMember(BaseModel):
    id: str
    name: str
    email: str
    points: int
    tier: str


class PointsCredit(BaseModel):
    points: int


# =====================================================
# Ledger
# =====================================================

def points_earned(total: float) -> int:
    return floor(total / POINTS_RATE)


def tier(points: int) -> str:
    for name, lower_bound in TIERS:
        if points >= lower_bound:
            return name
    return "Bronze"


def tier_progress(points: int) -> TierProgress:
    current = tier(points)
    next_tier, threshold = NEXT_TIER[current]
    return TierProgress(
        tier=current,
        next_tier=next_tier,
        next_threshold=threshold,
        points_to_next=threshold - points,
        progress=points / threshold * 100,
    )


def credit_points(db: Session, user_id: str, points: int, commit: bool = True):
    """
    Add `points` to a user's balance with a single UPDATE, so
    concurrent credits don't overwrite each other. Any integer is
    accepted, negative included.
    """
    result = db.execute(
        update(User)
        .where(User.id == user_id)
        .values(
            loyalty_points=User.loyalty_points + points,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount == 0:
        raise HTTPException(status_code=404, detail="User not found")

    if commit:
        commit_or_500(db, "credit_points", user_id=user_id)

    logger.info("loyalty_points_credited", user_id=user_id, points=points)


def redeem_reward(db: Session, user: User, reward_id: str) -> Redemption:
    """
    Exchange points for a reward. The debit and the redemption record
    are committed together or not at all.
    """
    reward = db.query(Reward).filter(Reward.id == reward_id).first()
    if not reward or not reward.active:
        raise HTTPException(status_code=404, detail="Reward not found")

    # Guarded debit: only succeeds while the balance covers the cost
    result = db.execute(
        update(User)
        .where(User.id == user.id)
        .where(User.loyalty_points >= reward.points)
        .values(
            loyalty_points=User.loyalty_points - reward.points,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount == 0:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Insufficient points"
        )

    redemption = Redemption(
        user_id=user.id,
        reward_id=reward.id,
        reward_name=reward.name,
        points_used=reward.points,
    )
    db.add(redemption)

    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("reward_redemption_failed", user_id=user.id, reward_id=reward_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to redeem reward. Please try again."
        )

    db.refresh(redemption)
    logger.info(
        "reward_redeemed",
        user_id=user.id,
        reward=reward.name,
        points_used=reward.points,
    )
    return redemption


# =====================================================
# Rewards admin
# =====================================================

def _get_reward_or_404(db: Session, reward_id: str) -> Reward:
    reward = db.query(Reward).filter(Reward.id == reward_id).first()
    if not reward:
        raise HTTPException(status_code=404, detail="Reward not found")
    return reward


def create_reward(db: Session, data: RewardCreate) -> Reward:
    reward = Reward(**data.model_dump())
    db.add(reward)
    commit_or_500(db, "create_reward")
    db.refresh(reward)
    return reward


def update_reward(db: Session, reward_id: str, data: RewardUpdate) -> Reward:
    reward = _get_reward_or_404(db, reward_id)
    for key, value in data.model_dump(exclude_unset=True).items():
        setattr(reward, key, value)
    commit_or_500(db, "update_reward", reward_id=reward_id)
    db.refresh(reward)
    return reward


def delete_reward(db: Session, reward_id: str):
    reward = _get_reward_or_404(db, reward_id)
    db.delete(reward)
    commit_or_500(db, "delete_reward", reward_id=reward_id)


# =====================================================
# API Routes
# =====================================================

@router.get("/me", response_model=LoyaltySummary)
def my_loyalty(current_user: User = Depends(get_current_user)):
    progress = tier_progress(current_user.loyalty_points)
    return LoyaltySummary(
        points=current_user.loyalty_points,
        order_count=len(current_user.orders),
        **progress.model_dump(),
    )


@router.get("/rewards", response_model=List[RewardOut])
def available_rewards(db: Session = Depends(get_db)):
    return (
        db.query(Reward)
        .filter(Reward.active.is_(True))
        .order_by(Reward.points)
        .all()
    )


@router.post(
    "/rewards/{reward_id}/redeem",
    response_model=RedemptionOut,
    status_code=status.HTTP_201_CREATED,
)
def redeem(
    reward_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return redeem_reward(db, current_user, reward_id)


@router.get("/redemptions", response_model=List[RedemptionOut])
def my_redemptions(current_user: User = Depends(get_current_user)):
    return current_user.redemptions


@admin_router.get("/rewards", response_model=List[RewardOut])
def list_rewards(
    db: Session = Depends(get_db),
    _admin=Depends(require_capability(MANAGE_LOYALTY)),
):
    return db.query(Reward).order_by(Reward.points).all()


@admin_router.post("/rewards", response_model=RewardOut, status_code=status.HTTP_201_CREATED)
def add_reward(
    data: RewardCreate,
    db: Session = Depends(get_db),
    _admin=Depends(require_capability(MANAGE_LOYALTY)),
):
    return create_reward(db, data)


@admin_router.put("/rewards/{reward_id}", response_model=RewardOut)
def edit_reward(
    reward_id: str,
    data: RewardUpdate,
    db: Session = Depends(get_db),
    _admin=Depends(require_capability(MANAGE_LOYALTY)),
):
    return update_reward(db, reward_id, data)


@admin_router.delete("/rewards/{reward_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_reward(
    reward_id: str,
    db: Session = Depends(get_db),
    _admin=Depends(require_capability(MANAGE_LOYALTY)),
):
    delete_reward(db, reward_id)


@admin_router.get("/redemptions", response_model=List[RedemptionOut])
def list_redemptions(
    db: Session = Depends(get_db),
    _admin=Depends(require_capability(MANAGE_LOYALTY)),
):
    return db.query(Redemption).order_by(Redemption.redeemed_at.desc()).all()


@admin_router.get("/loyalty/members", response_model=List[LoyaltyMember])
def loyalty_members(
    db: Session = Depends(get_db),
    _admin=Depends(require_capability(MANAGE_LOYALTY)),
):
    users = (
        db.query(User)
        .filter(User.role == RoleEnum.CUSTOMER)
        .order_by(User.loyalty_points.desc())
        .all()
    )
    return [
        LoyaltyMember(
            id=u.id,
            name=u.full_name,
            email=u.email,
            points=u.loyalty_points,
            tier=tier(u.loyalty_points),
        )
        for u in users
    ]


@admin_router.post("/loyalty/{user_id}/credit", status_code=status.HTTP_204_NO_CONTENT)
def adjust_points(
    user_id: str,
    data: PointsCredit,
    db: Session = Depends(get_db),
    _admin=Depends(require_capability(MANAGE_LOYALTY)),
):
    credit_points(db, user_id, data.points)
