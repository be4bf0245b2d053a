"""
Database Schemas for the Milk Distributor backend

Each Pydantic model corresponds to one MongoDB collection.
Collection name is the lowercase of the class name:
- User -> "user"
- Product -> "product"
- Order -> "order" (web, crate based)
- MobileOrder -> "mobileorder" (mobile app, item based)
- Inventory -> "inventory" (one document per date)
"""
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from order_status import (
    MobileOrderStatus,
    MobilePaymentStatus,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)

# field -> (label, price per crate)
CRATE_TYPES = {
    "amul_taaza_crates": ("Amul Taaza", 633.24),
    "amul_gold_crates": ("Amul Gold", 633.0),
    "amul_buffalo_crates": ("Amul Buffalo", 812.4),
    "gokul_cow_crates": ("Gokul Cow", 36.0),
    "gokul_buffalo_crates": ("Gokul Buffalo", 36.0),
    "gokul_full_cream_crates": ("Gokul Full Cream", 72.0),
    "mahananda_crates": ("Mahananda", 56.0),
}
CRATE_FIELDS = list(CRATE_TYPES)

DELIVERY_TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


def crate_total(counts: dict) -> float:
    """Price a set of crate counts with the per-crate price list."""
    total = sum(int(counts.get(field) or 0) * price for field, (_, price) in CRATE_TYPES.items())
    return round(total, 2)


class CrateCounts(BaseModel):
    amul_taaza_crates: int = Field(0, ge=0)
    amul_gold_crates: int = Field(0, ge=0)
    amul_buffalo_crates: int = Field(0, ge=0)
    gokul_cow_crates: int = Field(0, ge=0)
    gokul_buffalo_crates: int = Field(0, ge=0)
    gokul_full_cream_crates: int = Field(0, ge=0)
    mahananda_crates: int = Field(0, ge=0)

    def crate_counts(self) -> dict:
        return {field: getattr(self, field) for field in CRATE_FIELDS}


class User(BaseModel):
    name: str = Field(..., min_length=1, description="Full name")
    email: EmailStr
    password_hash: str = Field(..., description="BCrypt hash of the password")
    role: Literal["customer", "admin"] = "customer"
    phone: str = ""
    address: str = ""


class NutritionalInfo(BaseModel):
    fat: Optional[float] = Field(None, ge=0)
    protein: Optional[float] = Field(None, ge=0)
    carbohydrates: Optional[float] = Field(None, ge=0)
    calories: Optional[float] = Field(None, ge=0)


class Product(BaseModel):
    name: str = Field(..., min_length=1)
    brand: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: float = Field(..., ge=0, description="Price per piece")
    price_per_crate: float = Field(..., ge=0)
    pack_size: int = Field(12, ge=1, description="Pieces per crate")
    unit: Literal["piece", "liter", "kg", "ml"] = "piece"
    category: str = "milk"
    available: bool = True
    is_active: bool = True
    stock_quantity: int = Field(0, ge=0)
    min_stock_level: int = Field(10, ge=0)
    image: Optional[str] = None
    nutritional_info: Optional[NutritionalInfo] = None
    created_by: Optional[str] = None


class Order(CrateCounts):
    model_config = ConfigDict(use_enum_values=True, str_strip_whitespace=True)

    customer: str = Field(..., description="Reference to user _id")
    shop_name: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    delivery_time: str = Field(..., pattern=DELIVERY_TIME_PATTERN, description="HH:mm")
    delivery_date: datetime = Field(..., description="Delivery day at midnight")
    payment_screenshot: str = Field(..., min_length=1, description="Path of the uploaded payment proof")
    payment_method: PaymentMethod = PaymentMethod.ONLINE
    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    total_amount: float = Field(..., ge=0)
    status_locked: bool = Field(False, description="Set by admin overrides; the scheduler skips locked orders")


class MobileOrder(BaseModel):
    model_config = ConfigDict(use_enum_values=True, str_strip_whitespace=True)

    customer: str
    order_group_id: Optional[str] = Field(None, description="Shared by the items of one cart")
    product_id: str = Field(..., min_length=1)
    product_name: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)
    unit_type: Literal["liter", "crate"] = "liter"
    unit_price: float = Field(..., ge=0)
    pack_size: int = Field(1, ge=1)
    total_pieces: int = Field(..., ge=1)
    total_amount: float = Field(..., ge=0)
    start_date: str = Field(..., min_length=1)
    order_type: str = "daily"
    status: MobileOrderStatus = MobileOrderStatus.PENDING_VERIFICATION
    payment_status: MobilePaymentStatus = MobilePaymentStatus.PAID_PENDING_VERIFICATION
    payment_method: Literal["cash", "upi", "card", "wallet", "UPI/Google Pay"] = "upi"
    payment_proof: str = Field(..., min_length=1, description="URL or path of the payment proof")
    customer_name: str = Field(..., min_length=1)
    customer_phone: str = Field(..., min_length=1)
    delivery_address: str = Field(..., min_length=1)
    needs_admin_verification: bool = True
    registered_from: str = "mobile-app"


class Inventory(CrateCounts):
    date: datetime = Field(..., description="Calendar day at midnight")
