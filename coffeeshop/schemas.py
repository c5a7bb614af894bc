# coffeeshop/schemas.py
from datetime import datetime
from typing import List

from pydantic import BaseModel, EmailStr, field_validator, Field

from .models import RoleEnum


class UserCreate(BaseModel):
    full_name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(min_length=8)
    confirm_password: str
    phone: str | None = None
    address: str | None = None

    @field_validator("confirm_password")
    @classmethod
    def passwords_match(cls, v, info):
        if v != info.data.get("password"):
            raise ValueError("Passwords do not match")
        return v


class UserOut(BaseModel):
    id: str
    full_name: str
    email: EmailStr
    phone: str | None = None
    address: str | None = None
    loyalty_points: int
    role: RoleEnum
    created_at: datetime

    class Config:
        from_attributes = True


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class ProfileUpdate(BaseModel):
    full_name: str | None = Field(None, min_length=1, max_length=100)
    phone: str | None = None
    address: str | None = None

    @field_validator("full_name", mode="before")
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("This field cannot be null")
        return v


# Admin-facing view of a user, including their order history ids
class CustomerOut(BaseModel):
    id: str
    name: str
    email: EmailStr
    phone: str | None = None
    address: str | None = None
    loyalty_points: int
    registered_on: datetime
    orders: List[str]


class CustomerUpdate(BaseModel):
    full_name: str | None = Field(None, min_length=1, max_length=100)
    email: EmailStr | None = None
    phone: str | None = None
    address: str | None = None
    loyalty_points: int | None = Field(None, ge=0)

    @field_validator("full_name", "email", "loyalty_points", mode="before")
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("This field cannot be null")
        return v
