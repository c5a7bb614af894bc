from fastapi import APIRouter, status, HTTPException, Depends
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
import structlog

from .database import commit_or_500
from .dependencies import get_db, get_current_user
from .models import RoleEnum, User
from .schemas import ProfileUpdate, UserCreate, UserLogin, UserOut
from .security import create_access_token, hash_password, verify_password

logger = structlog.get_logger(__name__)

app = APIRouter()


@app.post("/register", response_model=UserOut, status_code=status.HTTP_201_CREATED)
def register_user(user_in: UserCreate, db: Session = Depends(get_db)):
    # check existing user
    if db.query(User).filter(User.email == user_in.email).first():
        raise HTTPException(status_code=400, detail="Email already registered")

    # Signup never grants admin; see createsuperuser
    user = User(
        full_name=user_in.full_name,
        email=user_in.email,
        hashed_password=hash_password(user_in.password),
        phone=user_in.phone,
        address=user_in.address,
        role=RoleEnum.CUSTOMER,
    )

    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=400, detail="Email already registered")
    except SQLAlchemyError:
        db.rollback()
        logger.exception("db_write_failed", action="register", email=user_in.email)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save changes. Please try again."
        )
    db.refresh(user)

    logger.info("user_registered", user_id=user.id)
    return user


@app.post("/login", status_code=status.HTTP_200_OK)
def login_user(user_in: UserLogin, db: Session = Depends(get_db)):

    user = db.query(User).filter(User.email == user_in.email).first()

    # User not found or password incorrect
    if not user or not verify_password(user_in.password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password"
        )

    access_token = create_access_token(
        data={
            "sub": user.email,
            "user_id": user.id
        }
    )

    return {
        "message": "Login successful",
        "access_token": access_token,
        "token_type": "bearer",
        "user": {
            "id": user.id,
            "full_name": user.full_name,
            "email": user.email,
            "role": user.role.value,
        }
    }


@app.post("/logout", status_code=status.HTTP_200_OK)
def logout_user():
    return {"message": "Logout successful"}


@app.get("/me", response_model=UserOut)
def read_me(current_user: User = Depends(get_current_user)):
    return current_user


@app.put("/me", response_model=UserOut)
def update_me(
    data: ProfileUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    for key, value in data.model_dump(exclude_unset=True).items():
        setattr(current_user, key, value)

    commit_or_500(db, "update_profile", user_id=current_user.id)
    db.refresh(current_user)
    return current_user
