import asyncio
import logging
import re
import uuid
from contextlib import asynccontextmanager, suppress
from datetime import datetime
from typing import List, Literal, Optional

from bson.objectid import ObjectId
from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, EmailStr, Field, ValidationError
from pymongo.errors import PyMongoError

import database
from auth import (
    create_token,
    get_current_user,
    hash_password,
    is_admin,
    require_admin,
    verify_password,
)
from config import (
    ADMIN_EMAIL,
    ADMIN_PASSWORD,
    CORS_ORIGINS,
    ENABLE_SCHEDULER,
    LOG_LEVEL,
    LOGIN_TOKEN_DAYS,
    LOW_STOCK_THRESHOLD,
    PORT,
    REGISTER_TOKEN_DAYS,
    UPLOAD_DIR,
)
from database import create_document, get_documents, oid, require_db, serialize_doc, with_customer_info
from inventory import low_stock_items, normalize_date
from order_status import (
    ACTIVE_STATUSES,
    CLOSED_STATUSES,
    MobileOrderStatus,
    MobilePaymentStatus,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    can_customer_modify,
    delivery_datetime,
)
from reports import customer_mobile_dashboard, dashboard_stats, deliveries_csv, monthly_summary, render_invoice_html
from scheduler import run_scheduler
from schemas import (
    CRATE_FIELDS,
    DELIVERY_TIME_PATTERN,
    CrateCounts,
    Inventory as InventorySchema,
    MobileOrder as MobileOrderSchema,
    NutritionalInfo,
    Order as OrderSchema,
    Product as ProductSchema,
    User as UserSchema,
    crate_total,
)
from uploads import discard_payment_proof, save_payment_proof

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("milk_distributor")


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler_task = None
    if database.db is None:
        logger.warning("No database configured; order status scheduler disabled")
    else:
        try:
            database.db.command("ping")
        except PyMongoError:
            logger.critical("Cannot connect to MongoDB", exc_info=True)
            raise SystemExit(1)
        if ENABLE_SCHEDULER:
            scheduler_task = asyncio.create_task(run_scheduler())
    yield
    if scheduler_task is not None:
        scheduler_task.cancel()
        with suppress(asyncio.CancelledError):
            await scheduler_task


app = FastAPI(title="Milk Distributor API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount("/uploads", StaticFiles(directory=UPLOAD_DIR, check_dir=False), name="uploads")


# ----------------------- Errors -----------------------
@app.exception_handler(RequestValidationError)
async def request_validation_handler(request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


@app.exception_handler(ValidationError)
async def schema_validation_handler(request, exc: ValidationError):
    errors = exc.errors(include_url=False, include_context=False)
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(errors)})


@app.exception_handler(PyMongoError)
async def database_error_handler(request, exc: PyMongoError):
    logger.error("Database error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Database error"})


# ----------------------- Utils -----------------------
def public_user(user: dict) -> dict:
    return {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "phone": user.get("phone") or "",
        "address": user.get("address") or "",
        "role": user.get("role", "customer"),
    }


def parse_day(value: str) -> datetime:
    try:
        return normalize_date(value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def parse_delivery(delivery_date: datetime, delivery_time: str) -> datetime:
    try:
        return delivery_datetime(delivery_date, delivery_time)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def with_stock_status(product: dict) -> dict:
    item = serialize_doc(product)
    stock = item.get("stock_quantity", 0)
    if stock <= 0:
        item["stock_status"] = "out_of_stock"
    elif stock <= item.get("min_stock_level", 0):
        item["stock_status"] = "low_stock"
    else:
        item["stock_status"] = "in_stock"
    item["is_orderable"] = bool(item.get("available")) and stock > 0
    return item


# ----------------------- Models -----------------------
class RegisterBody(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=1)
    confirm_password: Optional[str] = None
    phone: str = ""
    address: str = ""


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class ProfileUpdateBody(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    phone: Optional[str] = None
    address: Optional[str] = None


class OrderUpdateBody(BaseModel):
    shop_name: Optional[str] = Field(None, min_length=1)
    address: Optional[str] = Field(None, min_length=1)
    delivery_time: Optional[str] = Field(None, pattern=DELIVERY_TIME_PATTERN, description="HH:mm")
    delivery_date: Optional[str] = None
    amul_taaza_crates: Optional[int] = Field(None, ge=0)
    amul_gold_crates: Optional[int] = Field(None, ge=0)
    amul_buffalo_crates: Optional[int] = Field(None, ge=0)
    gokul_cow_crates: Optional[int] = Field(None, ge=0)
    gokul_buffalo_crates: Optional[int] = Field(None, ge=0)
    gokul_full_cream_crates: Optional[int] = Field(None, ge=0)
    mahananda_crates: Optional[int] = Field(None, ge=0)


class MobileOrderItem(BaseModel):
    product_id: str
    product_name: str
    quantity: int = Field(..., ge=1)
    unit_price: float = Field(..., ge=0)
    unit_type: Literal["liter", "crate"] = "liter"
    pack_size: int = Field(1, ge=1)


class MobileOrderBody(BaseModel):
    items: Optional[List[MobileOrderItem]] = None
    # single-item orders send the item fields at the top level
    product_id: Optional[str] = None
    product_name: Optional[str] = None
    quantity: Optional[int] = Field(None, ge=1)
    unit_price: Optional[float] = Field(None, ge=0)
    unit_type: Literal["liter", "crate"] = "liter"
    pack_size: int = Field(1, ge=1)

    start_date: Optional[str] = None
    order_type: str = "daily"
    payment_method: Literal["cash", "upi", "card", "wallet", "UPI/Google Pay"] = "upi"
    payment_proof: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    delivery_address: Optional[str] = None


class OrderStatusBody(BaseModel):
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    locked: Optional[bool] = Field(None, description="Defaults to true when status is set; false hands the order back to the scheduler")


class MobileOrderStatusBody(BaseModel):
    status: Optional[MobileOrderStatus] = None
    payment_status: Optional[MobilePaymentStatus] = None


class InventoryBody(CrateCounts):
    date: str


class InventoryUpdateBody(BaseModel):
    amul_taaza_crates: Optional[int] = Field(None, ge=0)
    amul_gold_crates: Optional[int] = Field(None, ge=0)
    amul_buffalo_crates: Optional[int] = Field(None, ge=0)
    gokul_cow_crates: Optional[int] = Field(None, ge=0)
    gokul_buffalo_crates: Optional[int] = Field(None, ge=0)
    gokul_full_cream_crates: Optional[int] = Field(None, ge=0)
    mahananda_crates: Optional[int] = Field(None, ge=0)


class ProductCreateBody(BaseModel):
    name: str = Field(..., min_length=1)
    brand: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    price_per_crate: float = Field(..., ge=0)
    pack_size: int = Field(12, ge=1)
    unit: Literal["piece", "liter", "kg", "ml"] = "piece"
    category: str = "milk"
    stock_quantity: int = Field(0, ge=0)
    min_stock_level: int = Field(10, ge=0)
    image: Optional[str] = None
    nutritional_info: Optional[NutritionalInfo] = None


class ProductUpdateBody(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    brand: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    price_per_crate: Optional[float] = Field(None, ge=0)
    pack_size: Optional[int] = Field(None, ge=1)
    unit: Optional[Literal["piece", "liter", "kg", "ml"]] = None
    category: Optional[str] = None
    available: Optional[bool] = None
    stock_quantity: Optional[int] = Field(None, ge=0)
    min_stock_level: Optional[int] = Field(None, ge=0)
    image: Optional[str] = None
    nutritional_info: Optional[NutritionalInfo] = None


class StockUpdate(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=0)
    operation: Literal["set", "add", "subtract"] = "set"


class BulkStockBody(BaseModel):
    updates: List[StockUpdate] = Field(..., min_length=1)


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"message": "Milk Distributor API is running"}


@app.get("/api/health")
def health():
    return {"status": "OK", "timestamp": datetime.now().isoformat()}


@app.get("/test")
def test_database():
    db = database.db
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if database.DATABASE_URL else "❌ Not Set",
        "database_name": "✅ Set" if database.DATABASE_NAME else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        if db is not None:
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
            response["collections"] = db.list_collection_names()[:10]
    except PyMongoError as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ----------------------- Auth -----------------------
@app.post("/api/auth/register", status_code=201)
def register(body: RegisterBody):
    db = require_db()
    if body.confirm_password is not None and body.confirm_password != body.password:
        raise HTTPException(status_code=400, detail="Passwords do not match")
    email = body.email.lower()
    if db["user"].find_one({"email": email}):
        raise HTTPException(status_code=400, detail="User already exists")

    role = "admin" if ADMIN_EMAIL and email == ADMIN_EMAIL.lower() else "customer"
    user = UserSchema(
        name=body.name,
        email=email,
        password_hash=hash_password(body.password),
        role=role,
        phone=body.phone,
        address=body.address,
    )
    user_id = create_document("user", user)
    doc = {"_id": user_id, **user.model_dump()}
    logger.info("Registered %s user %s", role, email)
    return {"token": create_token(doc, days=REGISTER_TOKEN_DAYS), "user": public_user(doc)}


@app.post("/api/auth/login")
def login(body: LoginBody):
    db = require_db()
    user = db["user"].find_one({"email": body.email.lower()})
    if not user or not verify_password(body.password, user.get("password_hash")):
        logger.info("Failed login for %s", body.email)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    role = "admin" if is_admin(user) else user.get("role", "customer")
    return {
        "token": create_token(user, days=LOGIN_TOKEN_DAYS),
        "user": public_user(user),
        "role": role,
        "redirect_to": "/admin-dashboard/home" if role == "admin" else "/customer-dashboard",
    }


@app.post("/api/auth/logout")
def logout():
    # tokens are stateless; the client drops its copy
    return {"message": "Logged out successfully"}


# ----------------------- User -----------------------
@app.get("/api/user/profile")
def get_profile(user=Depends(get_current_user)):
    return {"user": public_user(user)}


@app.put("/api/user/profile")
def update_profile(body: ProfileUpdateBody, user=Depends(get_current_user)):
    update = body.model_dump(exclude_none=True)
    if update:
        update["updated_at"] = datetime.now()
        require_db()["user"].update_one({"_id": user["_id"]}, {"$set": update})
        user = {**user, **update}
    return {"message": "Profile updated successfully", "user": public_user(user)}


# ----------------------- Products -----------------------
@app.get("/api/products")
def list_products(q: Optional[str] = None, category: Optional[str] = None):
    filt = {"is_active": True}
    if q:
        filt["name"] = {"$regex": re.escape(q), "$options": "i"}
    if category:
        filt["category"] = category
    products = [with_stock_status(p) for p in require_db()["product"].find(filt).sort([("brand", 1), ("name", 1)])]
    by_brand = {}
    for p in products:
        by_brand.setdefault(p["brand"], []).append(p)
    return {"products": products, "products_by_brand": by_brand, "brands": list(by_brand), "count": len(products)}


@app.get("/api/products/brand/{brand}")
def list_products_by_brand(brand: str):
    filt = {"is_active": True, "brand": {"$regex": f"^{re.escape(brand)}$", "$options": "i"}}
    products = [with_stock_status(p) for p in require_db()["product"].find(filt).sort("name", 1)]
    return {"brand": brand, "products": products, "count": len(products)}


@app.get("/api/products/{product_id}")
def get_product(product_id: str):
    product = require_db()["product"].find_one({"_id": oid(product_id), "is_active": True})
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return with_stock_status(product)


# ----------------------- Web orders -----------------------
def get_owned_order(order_id: str, user: dict) -> dict:
    order = require_db()["order"].find_one({"_id": oid(order_id)})
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    if order.get("customer") != str(user["_id"]) and not is_admin(user):
        raise HTTPException(status_code=403, detail="Not allowed")
    return order


def ensure_customer_can_modify(order: dict):
    if order.get("status") != OrderStatus.PENDING.value:
        raise HTTPException(status_code=400, detail=f"Order is {order.get('status')} and can no longer be changed")
    delivery_at = parse_delivery(order["delivery_date"], order["delivery_time"])
    if not can_customer_modify(delivery_at, datetime.now()):
        raise HTTPException(status_code=400, detail="Orders can only be changed up to 2 hours before delivery")


@app.post("/api/orders/place", status_code=201)
def place_order(
    shop_name: str = Form(...),
    address: str = Form(...),
    delivery_time: str = Form(...),
    delivery_date: str = Form(...),
    amul_taaza_crates: int = Form(0, ge=0),
    amul_gold_crates: int = Form(0, ge=0),
    amul_buffalo_crates: int = Form(0, ge=0),
    gokul_cow_crates: int = Form(0, ge=0),
    gokul_buffalo_crates: int = Form(0, ge=0),
    gokul_full_cream_crates: int = Form(0, ge=0),
    mahananda_crates: int = Form(0, ge=0),
    payment_method: PaymentMethod = Form(PaymentMethod.ONLINE),
    payment_screenshot: Optional[UploadFile] = File(None),
    user=Depends(get_current_user),
):
    if not shop_name.strip() or not address.strip():
        raise HTTPException(status_code=400, detail="Shop name and address are required")
    day = parse_day(delivery_date)
    if parse_delivery(day, delivery_time) <= datetime.now():
        raise HTTPException(status_code=400, detail="Delivery time must be in the future")
    crates = {
        "amul_taaza_crates": amul_taaza_crates,
        "amul_gold_crates": amul_gold_crates,
        "amul_buffalo_crates": amul_buffalo_crates,
        "gokul_cow_crates": gokul_cow_crates,
        "gokul_buffalo_crates": gokul_buffalo_crates,
        "gokul_full_cream_crates": gokul_full_cream_crates,
        "mahananda_crates": mahananda_crates,
    }
    if sum(crates.values()) == 0:
        raise HTTPException(status_code=400, detail="Order at least one crate")

    delivery_time = delivery_time.strip()
    if not re.match(DELIVERY_TIME_PATTERN, delivery_time):
        raise HTTPException(status_code=400, detail="Delivery time must be HH:mm")

    proof = save_payment_proof(payment_screenshot)
    try:
        order = OrderSchema(
            customer=str(user["_id"]),
            shop_name=shop_name,
            address=address,
            delivery_time=delivery_time,
            delivery_date=day,
            payment_screenshot=proof,
            payment_method=payment_method,
            total_amount=crate_total(crates),
            **crates,
        )
        order_id = create_document("order", order)
    except (ValidationError, PyMongoError):
        discard_payment_proof(proof)
        raise
    logger.info("Order %s placed by %s for %s %s (%.2f)", order_id, user["email"], day.date(), delivery_time,
                order.total_amount)
    created = require_db()["order"].find_one({"_id": oid(order_id)})
    return {"message": "Order placed successfully", "order": serialize_doc(created)}


@app.get("/api/orders/ongoing")
def ongoing_orders(user=Depends(get_current_user)):
    cursor = require_db()["order"].find({
        "customer": str(user["_id"]),
        "status": {"$in": [s.value for s in ACTIVE_STATUSES]},
    }).sort([("delivery_date", 1), ("delivery_time", 1)])
    return [serialize_doc(o) for o in cursor]


@app.get("/api/orders/history")
def order_history(user=Depends(get_current_user)):
    cursor = require_db()["order"].find({
        "customer": str(user["_id"]),
        "status": {"$in": [s.value for s in CLOSED_STATUSES]},
    }).sort([("delivery_date", -1), ("delivery_time", -1)])
    return [serialize_doc(o) for o in cursor]


@app.get("/api/orders/summary")
def customer_summary(user=Depends(get_current_user)):
    orders = list(require_db()["order"].find({"customer": str(user["_id"])}))
    billable = [o for o in orders if o.get("status") != OrderStatus.CANCELLED.value]
    crates = {field: sum(o.get(field, 0) for o in billable) for field in CRATE_FIELDS}
    return {
        "total_orders": len(orders),
        "active_orders": sum(1 for o in orders if o.get("status") in [s.value for s in ACTIVE_STATUSES]),
        "delivered_orders": sum(1 for o in orders if o.get("status") == OrderStatus.DELIVERED.value),
        "cancelled_orders": len(orders) - len(billable),
        "total_spent": round(sum(o.get("total_amount", 0) for o in billable), 2),
        "total_crates": sum(crates.values()),
        "crate_breakdown": crates,
    }


@app.get("/api/orders/invoice/{order_id}", response_class=HTMLResponse)
def order_invoice(order_id: str, user=Depends(get_current_user)):
    return render_invoice_html(get_owned_order(order_id, user))


@app.put("/api/orders/{order_id}")
def update_order(order_id: str, body: OrderUpdateBody, user=Depends(get_current_user)):
    order = get_owned_order(order_id, user)
    ensure_customer_can_modify(order)

    update = body.model_dump(exclude_none=True)
    if "delivery_date" in update:
        update["delivery_date"] = parse_day(update["delivery_date"])
    merged = {**order, **update}
    if parse_delivery(merged["delivery_date"], merged["delivery_time"]) <= datetime.now():
        raise HTTPException(status_code=400, detail="Delivery time must be in the future")
    crates = {field: merged.get(field, 0) for field in CRATE_FIELDS}
    if sum(crates.values()) == 0:
        raise HTTPException(status_code=400, detail="Order at least one crate")

    update["total_amount"] = crate_total(crates)
    update["updated_at"] = datetime.now()
    res = require_db()["order"].update_one(
        {"_id": order["_id"], "status": OrderStatus.PENDING.value}, {"$set": update})
    if res.matched_count == 0:
        raise HTTPException(status_code=409, detail="Order status changed, please reload")
    logger.info("Order %s updated by %s", order_id, user["email"])
    return serialize_doc(require_db()["order"].find_one({"_id": order["_id"]}))


@app.put("/api/orders/{order_id}/cancel")
def cancel_order(order_id: str, user=Depends(get_current_user)):
    order = get_owned_order(order_id, user)
    ensure_customer_can_modify(order)
    res = require_db()["order"].update_one(
        {"_id": order["_id"], "status": OrderStatus.PENDING.value},
        {"$set": {"status": OrderStatus.CANCELLED.value, "updated_at": datetime.now()}},
    )
    if res.matched_count == 0:
        raise HTTPException(status_code=409, detail="Order status changed, please reload")
    logger.info("Order %s cancelled by %s", order_id, user["email"])
    return {"message": "Order cancelled successfully", "id": order_id, "status": OrderStatus.CANCELLED.value}


@app.delete("/api/orders/{order_id}")
def delete_order(order_id: str, user=Depends(get_current_user)):
    order = get_owned_order(order_id, user)
    ensure_customer_can_modify(order)
    res = require_db()["order"].delete_one({"_id": order["_id"], "status": OrderStatus.PENDING.value})
    if res.deleted_count == 0:
        raise HTTPException(status_code=409, detail="Order status changed, please reload")
    logger.info("Order %s deleted by %s", order_id, user["email"])
    return {"message": "Order deleted successfully", "id": order_id}


# ----------------------- Mobile orders -----------------------
def price_from_catalog(item: MobileOrderItem) -> MobileOrderItem:
    """Replace the client's price with the catalog price when the item names a stored product."""
    if not ObjectId.is_valid(item.product_id):
        return item
    product = require_db()["product"].find_one({"_id": ObjectId(item.product_id)})
    if not product or not product.get("is_active", True) or not product.get("available", True):
        raise HTTPException(status_code=400, detail=f"Product {item.product_id} is not available")
    if item.unit_type == "crate":
        return item.model_copy(update={
            "product_name": product["name"],
            "unit_price": product["price_per_crate"],
            "pack_size": product.get("pack_size", item.pack_size),
        })
    return item.model_copy(update={"product_name": product["name"], "unit_price": product["price"], "pack_size": 1})


@app.post("/api/customer/orders", status_code=201)
def place_mobile_order(body: MobileOrderBody, user=Depends(get_current_user)):
    if body.items:
        items = body.items
    else:
        if not (body.product_id and body.product_name and body.quantity and body.unit_price is not None):
            raise HTTPException(
                status_code=400,
                detail="Missing required fields: product_id, product_name, quantity, unit_price",
            )
        items = [MobileOrderItem(
            product_id=body.product_id,
            product_name=body.product_name,
            quantity=body.quantity,
            unit_price=body.unit_price,
            unit_type=body.unit_type,
            pack_size=body.pack_size,
        )]
    items = [price_from_catalog(item) for item in items]

    if not (body.payment_proof or "").strip():
        raise HTTPException(status_code=400, detail="Payment proof is required")
    address = body.delivery_address or user.get("address")
    phone = body.customer_phone or user.get("phone")
    if not address or not phone:
        raise HTTPException(status_code=400, detail="Delivery address and phone are required")

    group_id = uuid.uuid4().hex if len(items) > 1 else None
    orders = [
        MobileOrderSchema(
            customer=str(user["_id"]),
            order_group_id=group_id,
            product_id=item.product_id,
            product_name=item.product_name,
            quantity=item.quantity,
            unit_type=item.unit_type,
            unit_price=item.unit_price,
            pack_size=item.pack_size,
            total_pieces=item.quantity * item.pack_size if item.unit_type == "crate" else item.quantity,
            total_amount=round(item.quantity * item.unit_price, 2),
            start_date=body.start_date or datetime.now().strftime("%Y-%m-%d"),
            order_type=body.order_type,
            payment_method=body.payment_method,
            payment_proof=body.payment_proof,
            customer_name=body.customer_name or user.get("name"),
            customer_phone=phone,
            delivery_address=address,
        )
        for item in items
    ]
    ids = [create_document("mobileorder", o) for o in orders]
    total = round(sum(o.total_amount for o in orders), 2)
    logger.info("Mobile order %s placed by %s: %d item(s), %.2f", group_id or ids[0], user["email"], len(ids), total)
    created = require_db()["mobileorder"].find({"_id": {"$in": [oid(i) for i in ids]}})
    return {
        "message": "Order placed successfully",
        "order_group_id": group_id,
        "total_amount": total,
        "orders": [serialize_doc(o) for o in created],
    }


@app.get("/api/customer/dashboard")
def mobile_dashboard(user=Depends(get_current_user)):
    cursor = require_db()["mobileorder"].find({"customer": str(user["_id"])}).sort("created_at", -1)
    return customer_mobile_dashboard(list(cursor))


@app.get("/api/customer/orders")
def list_mobile_orders(user=Depends(get_current_user)):
    cursor = require_db()["mobileorder"].find({"customer": str(user["_id"])}).sort("created_at", -1)
    return [serialize_doc(o) for o in cursor]


@app.get("/api/customer/orders/{order_id}")
def get_mobile_order(order_id: str, user=Depends(get_current_user)):
    order = require_db()["mobileorder"].find_one({"_id": oid(order_id), "customer": str(user["_id"])})
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return serialize_doc(order)


# ----------------------- Inventory -----------------------
def upsert_inventory(body: InventoryBody, admin: dict, create_only: bool):
    db = require_db()
    day = parse_day(body.date)
    counts = body.crate_counts()
    existing = db["inventory"].find_one({"date": day})
    if existing and create_only:
        raise HTTPException(status_code=400, detail="Inventory already exists for this date")
    if existing:
        db["inventory"].update_one({"_id": existing["_id"]}, {"$set": {**counts, "updated_at": datetime.now()}})
        logger.info("Inventory for %s updated by %s", day.date(), admin["email"])
        return JSONResponse(status_code=200, content={
            "message": "Inventory updated",
            "inventory": serialize_doc(db["inventory"].find_one({"_id": existing["_id"]})),
        })
    inventory_id = create_document("inventory", InventorySchema(date=day, **counts))
    logger.info("Inventory for %s created by %s", day.date(), admin["email"])
    return JSONResponse(status_code=201, content={
        "message": "Inventory created",
        "inventory": serialize_doc(db["inventory"].find_one({"_id": oid(inventory_id)})),
    })


def find_inventory(date: str) -> dict:
    inventory = require_db()["inventory"].find_one({"date": parse_day(date)})
    if not inventory:
        raise HTTPException(status_code=404, detail="Inventory not found for this date")
    return inventory


@app.post("/api/inventory", status_code=201)
def create_inventory(body: InventoryBody, admin=Depends(require_admin)):
    return upsert_inventory(body, admin, create_only=True)


@app.get("/api/inventory/warnings/{date}")
def inventory_warnings(date: str, threshold: int = Query(LOW_STOCK_THRESHOLD, ge=0),
                       user=Depends(get_current_user)):
    inventory = find_inventory(date)
    return {
        "date": inventory["date"].strftime("%Y-%m-%d"),
        "threshold": threshold,
        "low_stock": low_stock_items(inventory, threshold),
    }


@app.get("/api/inventory/{date}")
def get_inventory(date: str, user=Depends(get_current_user)):
    return serialize_doc(find_inventory(date))


@app.put("/api/inventory/{date}")
def update_inventory(date: str, body: InventoryUpdateBody, admin=Depends(require_admin)):
    inventory = find_inventory(date)
    update = body.model_dump(exclude_none=True)
    update["updated_at"] = datetime.now()
    require_db()["inventory"].update_one({"_id": inventory["_id"]}, {"$set": update})
    logger.info("Inventory for %s updated by %s", inventory["date"].date(), admin["email"])
    return {
        "message": "Inventory updated",
        "inventory": serialize_doc(require_db()["inventory"].find_one({"_id": inventory["_id"]})),
    }


# ----------------------- Admin -----------------------
@app.get("/api/admin/dashboard")
def admin_dashboard(admin=Depends(require_admin)):
    return dashboard_stats(require_db(), datetime.now())


@app.get("/api/admin/orders")
def admin_orders(
    shop_name: Optional[str] = None,
    delivery_date: Optional[str] = None,
    payment_status: Optional[PaymentStatus] = None,
    status: Optional[OrderStatus] = None,
    admin=Depends(require_admin),
):
    filt = {}
    if shop_name:
        filt["shop_name"] = {"$regex": re.escape(shop_name), "$options": "i"}
    if delivery_date:
        filt["delivery_date"] = parse_day(delivery_date)
    if payment_status:
        filt["payment_status"] = payment_status.value
    if status:
        filt["status"] = status.value
    cursor = require_db()["order"].find(filt).sort([("delivery_date", 1), ("delivery_time", 1)])
    return with_customer_info(cursor)


@app.get("/api/admin/mobile-orders")
def admin_mobile_orders(
    status: Optional[MobileOrderStatus] = None,
    payment_status: Optional[MobilePaymentStatus] = None,
    limit: int = Query(50, ge=1, le=500),
    admin=Depends(require_admin),
):
    filt = {}
    if status:
        filt["status"] = status.value
    if payment_status:
        filt["payment_status"] = payment_status.value
    cursor = require_db()["mobileorder"].find(filt).sort("created_at", -1).limit(limit)
    orders = with_customer_info(cursor, fields=("name", "email", "phone"))
    return {"orders": orders, "count": len(orders)}


@app.patch("/api/admin/orders/{order_id}/status")
def admin_update_order_status(order_id: str, body: OrderStatusBody, admin=Depends(require_admin)):
    if body.status is None and body.payment_status is None and body.locked is None:
        raise HTTPException(status_code=400, detail="Either status or payment_status must be provided")
    db = require_db()
    order = db["order"].find_one({"_id": oid(order_id)})
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")

    update = {"updated_at": datetime.now()}
    if body.payment_status is not None:
        update["payment_status"] = body.payment_status.value
    if body.status is not None:
        update["status"] = body.status.value
        # an explicit admin status wins over the scheduler from now on
        update["status_locked"] = True if body.locked is None else body.locked
    elif body.locked is not None:
        update["status_locked"] = body.locked
    db["order"].update_one({"_id": order["_id"]}, {"$set": update})
    logger.info("Admin %s set order %s: %s", admin["email"], order_id,
                {k: v for k, v in update.items() if k != "updated_at"})
    return serialize_doc(db["order"].find_one({"_id": order["_id"]}))


@app.patch("/api/admin/mobile-orders/{order_id}/status")
def admin_update_mobile_order_status(order_id: str, body: MobileOrderStatusBody, admin=Depends(require_admin)):
    update = {k: v.value for k, v in body if v is not None}
    if not update:
        raise HTTPException(status_code=400, detail="Either status or payment_status must be provided")
    update["updated_at"] = datetime.now()
    db = require_db()
    res = db["mobileorder"].update_one({"_id": oid(order_id)}, {"$set": update})
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="Mobile order not found")
    logger.info("Admin %s set mobile order %s: %s", admin["email"], order_id,
                {k: v for k, v in update.items() if k != "updated_at"})
    return serialize_doc(db["mobileorder"].find_one({"_id": oid(order_id)}))


@app.get("/api/admin/users")
def admin_users(role: Optional[Literal["customer", "admin"]] = None, limit: int = Query(100, ge=1, le=1000),
                admin=Depends(require_admin)):
    filt = {"role": role} if role else {}
    users = [serialize_doc(u) for u in get_documents("user", filt, limit=limit, sort=[("created_at", -1)])]
    return {"users": users, "count": len(users)}


@app.get("/api/admin/products")
def admin_products(admin=Depends(require_admin)):
    cursor = require_db()["product"].find({"is_active": True}).sort([("brand", 1), ("name", 1)])
    products = [with_stock_status(p) for p in cursor]
    return {"products": products, "count": len(products)}


@app.post("/api/admin/products", status_code=201)
def create_product(body: ProductCreateBody, admin=Depends(require_admin)):
    product = ProductSchema(**body.model_dump(), created_by=str(admin["_id"]))
    product_id = create_document("product", product)
    logger.info("Product %s (%s %s) created by %s", product_id, product.brand, product.name, admin["email"])
    return with_stock_status(require_db()["product"].find_one({"_id": oid(product_id)}))


@app.put("/api/admin/products/bulk-stock")
def bulk_update_stock(body: BulkStockBody, admin=Depends(require_admin)):
    db = require_db()
    results, errors = [], []
    for change in body.updates:
        if not ObjectId.is_valid(change.product_id):
            errors.append({"product_id": change.product_id, "error": "Invalid id format"})
            continue
        product = db["product"].find_one({"_id": oid(change.product_id)})
        if not product:
            errors.append({"product_id": change.product_id, "error": "Product not found"})
            continue
        old = product.get("stock_quantity", 0)
        if change.operation == "add":
            new = old + change.quantity
        elif change.operation == "subtract":
            new = max(0, old - change.quantity)
        else:
            new = change.quantity
        db["product"].update_one({"_id": product["_id"]}, {"$set": {"stock_quantity": new, "updated_at": datetime.now()}})
        results.append({"product_id": change.product_id, "name": product.get("name"), "old_quantity": old,
                        "new_quantity": new, "operation": change.operation})
    logger.info("Bulk stock update by %s: %d ok, %d failed", admin["email"], len(results), len(errors))
    return {"results": results, "errors": errors}


@app.put("/api/admin/products/{product_id}")
def update_product(product_id: str, body: ProductUpdateBody, admin=Depends(require_admin)):
    update = body.model_dump(exclude_none=True)
    update["updated_at"] = datetime.now()
    db = require_db()
    res = db["product"].update_one({"_id": oid(product_id)}, {"$set": update})
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    return with_stock_status(db["product"].find_one({"_id": oid(product_id)}))


@app.delete("/api/admin/products/{product_id}")
def delete_product(product_id: str, admin=Depends(require_admin)):
    res = require_db()["product"].update_one(
        {"_id": oid(product_id)},
        {"$set": {"is_active": False, "available": False, "updated_at": datetime.now()}},
    )
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    logger.info("Product %s deactivated by %s", product_id, admin["email"])
    return {"message": "Product deleted successfully", "id": product_id}


@app.get("/api/admin/deliveries/csv")
def admin_deliveries_csv(date: Optional[str] = None, admin=Depends(require_admin)):
    day = parse_day(date) if date else normalize_date(datetime.now())
    filename = f"daily-deliveries-{day.strftime('%Y-%m-%d')}.csv"
    return Response(
        content=deliveries_csv(require_db(), day),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/api/admin/monthly-summary")
def admin_monthly_summary(admin=Depends(require_admin)):
    return monthly_summary(require_db(), datetime.now())


@app.post("/api/admin/inventory")
def admin_set_inventory(body: InventoryBody, admin=Depends(require_admin)):
    return upsert_inventory(body, admin, create_only=False)


@app.get("/api/admin/inventory/{date}")
def admin_get_inventory(date: str, admin=Depends(require_admin)):
    return serialize_doc(find_inventory(date))


# ----------------------- Seed Data -----------------------
DEFAULT_PRODUCTS = [
    {
        "name": "Full Cream Milk 1L",
        "brand": "Amul",
        "description": "Rich and creamy whole milk with high fat content",
        "price": 60,
        "price_per_crate": 720,
        "stock_quantity": 100,
        "min_stock_level": 20,
        "nutritional_info": {"fat": 6.0, "protein": 3.2, "carbohydrates": 4.7, "calories": 67},
    },
    {
        "name": "Toned Milk 1L",
        "brand": "Amul",
        "description": "Reduced fat milk with great taste and nutrition",
        "price": 50,
        "price_per_crate": 600,
        "stock_quantity": 150,
        "min_stock_level": 30,
        "nutritional_info": {"fat": 3.0, "protein": 3.2, "carbohydrates": 4.7, "calories": 48},
    },
    {
        "name": "Gold Milk 1L",
        "brand": "Amul",
        "description": "Premium quality standardised milk",
        "price": 65,
        "price_per_crate": 780,
        "stock_quantity": 90,
        "min_stock_level": 18,
    },
    {
        "name": "Buffalo Milk 1L",
        "brand": "Gokul",
        "description": "Pure buffalo milk with high fat content and rich taste",
        "price": 70,
        "price_per_crate": 840,
        "stock_quantity": 80,
        "min_stock_level": 15,
        "nutritional_info": {"fat": 7.5, "protein": 4.3, "carbohydrates": 5.2, "calories": 100},
    },
    {
        "name": "Cow Milk 1L",
        "brand": "Gokul",
        "description": "Fresh and pure cow milk for daily consumption",
        "price": 55,
        "price_per_crate": 660,
        "stock_quantity": 120,
        "min_stock_level": 25,
        "nutritional_info": {"fat": 4.5, "protein": 3.4, "carbohydrates": 4.8, "calories": 62},
    },
    {
        "name": "Organic Milk 1L",
        "brand": "Mahananda",
        "description": "Certified organic milk from grass-fed cows",
        "price": 80,
        "price_per_crate": 960,
        "stock_quantity": 60,
        "min_stock_level": 12,
    },
]


@app.post("/seed")
def seed():
    db = require_db()
    seeded_products = 0
    if db["product"].count_documents({}) == 0:
        for p in DEFAULT_PRODUCTS:
            create_document("product", ProductSchema(**p))
            seeded_products += 1
    admin_created = False
    if not (ADMIN_EMAIL and ADMIN_PASSWORD):
        logger.warning("ADMIN_EMAIL/ADMIN_PASSWORD not set; no admin account seeded")
    elif not db["user"].find_one({"email": ADMIN_EMAIL.lower()}):
        admin = UserSchema(name="Admin", email=ADMIN_EMAIL.lower(), password_hash=hash_password(ADMIN_PASSWORD),
                           role="admin")
        create_document("user", admin)
        admin_created = True
    logger.info("Seeded %d products, admin created: %s", seeded_products, admin_created)
    return {"seeded_products": seeded_products, "admin_created": admin_created,
            "products": db["product"].count_documents({})}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
