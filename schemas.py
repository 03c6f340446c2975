"""
Database Schemas for the Shop Backend

Each Pydantic model corresponds to one MongoDB collection (products, orders,
users) or to a request body against one. Field names are the JSON wire names.
Unknown fields in a request body are ignored.
"""
from datetime import datetime, timezone
from typing import ClassVar, List, Literal, Optional, Tuple

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

OrderStatus = Literal["pending", "shipped", "delivered", "cancelled"]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PartialUpdate(BaseModel):
    """Body of a partial update. Fields listed in `not_nullable` may be
    omitted but never set to null."""

    not_nullable: ClassVar[Tuple[str, ...]] = ()

    @model_validator(mode="after")
    def reject_nulls(self):
        cleared = [f for f in self.not_nullable if f in self.model_fields_set and getattr(self, f) is None]
        if cleared:
            raise ValueError(f"{', '.join(cleared)} cannot be null")
        return self


class Product(BaseModel):
    name: str
    price: float
    category: str
    stock: int = Field(..., ge=0)
    description: Optional[str] = None
    images: List[str] = []


class ProductUpdate(PartialUpdate):
    not_nullable: ClassVar[Tuple[str, ...]] = ("name", "price", "category", "stock")

    name: Optional[str] = None
    price: Optional[float] = None
    category: Optional[str] = None
    # negative values are rejected by the update handler, not here
    stock: Optional[int] = None
    description: Optional[str] = None
    images: Optional[List[str]] = None


class OrderItem(BaseModel):
    """Snapshot of a product at checkout time."""
    id: Optional[int] = None
    name: Optional[str] = None
    price: Optional[float] = None
    quantity: Optional[int] = None
    images: List[str] = []


class ShippingAddress(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    pincode: Optional[str] = None


class Order(BaseModel):
    userId: Optional[str] = None
    items: List[OrderItem] = []
    total: float
    status: OrderStatus = "pending"
    date: datetime = Field(default_factory=_utc_now)
    shippingAddress: Optional[ShippingAddress] = None

    @field_validator("date")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        return v if v.tzinfo else v.replace(tzinfo=timezone.utc)


class OrderUpdate(PartialUpdate):
    not_nullable: ClassVar[Tuple[str, ...]] = ("total", "status", "date")

    userId: Optional[str] = None
    items: Optional[List[OrderItem]] = None
    total: Optional[float] = None
    status: Optional[OrderStatus] = None
    date: Optional[datetime] = None
    shippingAddress: Optional[ShippingAddress] = None

    @field_validator("date")
    @classmethod
    def assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is None or v.tzinfo:
            return v
        return v.replace(tzinfo=timezone.utc)


class User(BaseModel):
    name: str
    email: EmailStr
    password: str = Field(..., description="bcrypt hash, never plaintext")
    role: Literal["user", "admin"] = "user"


class RegisterBody(BaseModel):
    name: str
    email: EmailStr
    password: str


class LoginBody(BaseModel):
    # same normalisation as registration, so lookups match the stored address
    email: EmailStr
    password: str
