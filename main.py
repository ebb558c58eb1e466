import os
import re
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError
from datetime import datetime, timezone

import orders
from database import Database, serialize_doc, to_object_id
from errors import Conflict, NotFound, StoreError
from pricing import format_money
from reviews import add_review
from schemas import User, Product, OrderLine, ShippingAddress, PaymentResult, PaymentBill

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

PAGE_SIZE = 6


@asynccontextmanager
async def lifespan(app: FastAPI):
    # A database attached before startup (tests) is left to its owner.
    owned = getattr(app.state, "db", None) is None
    if owned:
        app.state.db = Database.from_env()
    yield
    if owned and app.state.db is not None:
        app.state.db.close()
        app.state.db = None


app = FastAPI(title="Bookstore API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    # body and query validation failures are InvalidRequest (400)
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError):
    logger.error("Database error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "Database error"})


def get_database(request: Request) -> Database:
    db = getattr(request.app.state, "db", None)
    if db is None:
        raise HTTPException(status_code=500, detail="Database not available")
    return db


@app.get("/")
def read_root():
    return {"message": "Bookstore Backend Ready"}


@app.get("/test")
def test_database(request: Request):
    db = getattr(request.app.state, "db", None)
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if db is not None:
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
            response["collections"] = db.list_collection_names()[:10]
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# Users
@app.post("/api/users", status_code=201)
def create_user(user: User, db: Database = Depends(get_database)):
    if db["user"].find_one({"$or": [{"username": user.username}, {"email": user.email}]}):
        raise Conflict("User already exists")
    return serialize_doc(db.create_document("user", user))


@app.get("/api/users/{user_id}")
def get_user(user_id: str, db: Database = Depends(get_database)):
    user = db.find_by_id("user", user_id)
    if not user:
        raise NotFound("User not found")
    return serialize_doc(user)


# Products
class ProductIn(BaseModel):
    name: str
    brand: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    image: Optional[str] = None
    price: float = Field(..., ge=0)
    count_in_stock: int = Field(0, ge=0, alias="countInStock")

    model_config = ConfigDict(populate_by_name=True)


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    brand: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    image: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    count_in_stock: Optional[int] = Field(None, ge=0, alias="countInStock")

    model_config = ConfigDict(populate_by_name=True)


@app.get("/api/products")
def list_products(
    keyword: Optional[str] = None,
    page: int = Query(1, ge=1),
    db: Database = Depends(get_database),
):
    filt = {}
    if keyword and keyword.strip():
        filt["name"] = {"$regex": re.escape(keyword.strip()), "$options": "i"}
    total = db["product"].count_documents(filt)
    cursor = (
        db["product"].find(filt)
        .sort([("created_at", -1), ("_id", -1)])
        .skip((page - 1) * PAGE_SIZE)
        .limit(PAGE_SIZE)
    )
    return {
        "products": [serialize_doc(x) for x in cursor],
        "page": page,
        "pages": (total + PAGE_SIZE - 1) // PAGE_SIZE,
        "total": total,
        "has_more": page * PAGE_SIZE < total,
    }


@app.post("/api/products", status_code=201)
def create_product(payload: ProductIn, db: Database = Depends(get_database)):
    prod = Product(**payload.model_dump())
    return serialize_doc(db.create_document("product", prod))


@app.get("/api/products/top")
def top_products(db: Database = Depends(get_database)):
    return [serialize_doc(x) for x in db["product"].find().sort("rating", -1).limit(4)]


@app.get("/api/products/new")
def new_products(db: Database = Depends(get_database)):
    return [serialize_doc(x) for x in db["product"].find().sort("_id", -1).limit(5)]


@app.get("/api/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_database)):
    item = db.find_by_id("product", product_id)
    if not item:
        raise NotFound("Product not found")
    return serialize_doc(item)


@app.put("/api/products/{product_id}")
def update_product(product_id: str, payload: ProductUpdate, db: Database = Depends(get_database)):
    update = payload.model_dump(exclude_none=True)
    update["updated_at"] = datetime.now(timezone.utc)
    item = db["product"].find_one_and_update(
        {"_id": to_object_id(product_id)}, {"$set": update}, return_document=ReturnDocument.AFTER
    )
    if not item:
        raise NotFound("Product not found")
    return serialize_doc(item)


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, db: Database = Depends(get_database)):
    res = db["product"].delete_one({"_id": to_object_id(product_id)})
    if res.deleted_count == 0:
        raise NotFound("Product not found")
    return {"message": "Product removed"}


# Reviews
class ReviewIn(BaseModel):
    user: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""


@app.post("/api/products/{product_id}/reviews", status_code=201)
def create_review(product_id: str, payload: ReviewIn, db: Database = Depends(get_database)):
    add_review(db, product_id, payload.user, payload.rating, payload.comment)
    return {"message": "Review added"}


# Payment bills
@app.post("/api/payment-bills", status_code=201)
def create_payment_bill(bill: PaymentBill, db: Database = Depends(get_database)):
    return serialize_doc(db.create_document("paymentbill", bill))


@app.get("/api/payment-bills")
def list_payment_bills(db: Database = Depends(get_database)):
    return [serialize_doc(x) for x in db.get_documents("paymentbill")]


@app.get("/api/payment-bills/{bill_id}")
def get_payment_bill(bill_id: str, db: Database = Depends(get_database)):
    bill = db.find_by_id("paymentbill", bill_id)
    if not bill:
        raise NotFound("Payment bill not found")
    return serialize_doc(bill)


# Orders
class CreateOrderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user: str
    order_items: List[OrderLine] = Field(default_factory=list, alias="orderItems")
    shipping_address: ShippingAddress = Field(..., alias="shippingAddress")
    payment_method: str = Field(..., alias="paymentMethod")
    payment_bill: str = Field(..., alias="paymentBill")


class Payer(BaseModel):
    email_address: Optional[str] = None


class PayRequest(BaseModel):
    id: Optional[str] = None
    status: Optional[str] = None
    update_time: Optional[str] = None
    payer: Payer = Payer()


@app.post("/api/orders", status_code=201)
def create_order(payload: CreateOrderRequest, db: Database = Depends(get_database)):
    order = orders.place_order(
        db,
        payload.user,
        payload.order_items,
        payload.shipping_address,
        payload.payment_method,
        payload.payment_bill,
    )
    return serialize_doc(order)


@app.get("/api/orders")
def list_orders(db: Database = Depends(get_database)):
    return [serialize_doc(x) for x in orders.list_orders(db)]


@app.get("/api/orders/total-orders")
def count_total_orders(db: Database = Depends(get_database)):
    return {"total_orders": orders.count_orders(db)}


@app.get("/api/orders/total-sales")
def calculate_total_sales(db: Database = Depends(get_database)):
    return {"total_sales": format_money(orders.total_sales(db))}


@app.get("/api/orders/total-sales-by-date")
def calculate_total_sales_by_date(db: Database = Depends(get_database)):
    return orders.total_sales_by_date(db)


@app.get("/api/orders/order-user/{user_id}")
def get_user_orders(user_id: str, db: Database = Depends(get_database)):
    return [serialize_doc(x) for x in orders.user_orders(db, user_id)]


@app.get("/api/orders/{order_id}")
def find_order_by_id(order_id: str, db: Database = Depends(get_database)):
    return serialize_doc(orders.get_order(db, order_id))


@app.put("/api/orders/{order_id}/pay")
def mark_order_as_paid(order_id: str, payload: PayRequest, db: Database = Depends(get_database)):
    result = PaymentResult(
        id=payload.id,
        status=payload.status,
        update_time=payload.update_time,
        email_address=payload.payer.email_address,
    )
    return serialize_doc(orders.mark_paid(db, order_id, result))


@app.put("/api/orders/{order_id}/deliver")
def mark_order_as_delivered(order_id: str, db: Database = Depends(get_database)):
    return serialize_doc(orders.mark_delivered(db, order_id))


# Order items (cart)
class CartItemIn(BaseModel):
    user: Optional[str] = None
    product: str
    qty: int = Field(1, ge=1)


class CartUpdate(BaseModel):
    qty: int = Field(..., ge=1)


@app.post("/api/order-items", status_code=201)
def add_order_item(item: CartItemIn, db: Database = Depends(get_database)):
    return serialize_doc(orders.add_cart_item(db, item.user, item.product, item.qty))


@app.get("/api/order-items")
def get_order_items(db: Database = Depends(get_database)):
    return [serialize_doc(x) for x in orders.list_order_items(db)]


@app.get("/api/order-items/{user_id}")
def get_order_items_by_user(user_id: str, db: Database = Depends(get_database)):
    return [serialize_doc(x) for x in orders.list_order_items(db, user_id)]


@app.put("/api/order-items/{item_id}")
def update_order_item(item_id: str, payload: CartUpdate, db: Database = Depends(get_database)):
    return serialize_doc(orders.update_order_item_qty(db, item_id, payload.qty))


@app.delete("/api/order-items/{item_id}")
def delete_order_item(item_id: str, db: Database = Depends(get_database)):
    orders.delete_order_item(db, item_id)
    return {"message": "Order item deleted"}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
