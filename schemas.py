"""
Database Schemas

MongoDB collection schemas for the bookstore, as Pydantic models.
Model name is converted to lowercase for the collection name:
- User -> "user" collection
- Product -> "product" collection
- OrderItem -> "orderitem" collection
- Order -> "order" collection
- PaymentBill -> "paymentbill" collection

References between collections are stored as ObjectIds. Monetary fields on
order items and orders are fixed 2-decimal strings.
"""

from pydantic import BaseModel, ConfigDict, Field, EmailStr
from typing import Optional, List
from datetime import datetime
from bson import ObjectId


class User(BaseModel):
    username: str = Field(..., min_length=3, max_length=32)
    email: EmailStr = Field(..., description="Email address")
    is_admin: bool = Field(False, description="Admin privileges")


class Review(BaseModel):
    """Embedded in Product.reviews, not a collection of its own."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str = Field(..., description="Reviewer username at review time")
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""
    user: ObjectId
    created_at: Optional[datetime] = None


class Product(BaseModel):
    name: str
    brand: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    image: Optional[str] = None
    price: float = Field(..., ge=0)
    count_in_stock: int = Field(0, ge=0)
    reviews: List[Review] = []
    num_reviews: int = 0
    rating: float = Field(0, ge=0, le=5)


class OrderLine(BaseModel):
    """One requested line of an order: a product id and a quantity."""
    id: str = Field(..., description="Product id")
    qty: int = Field(1, ge=1)


class OrderItem(BaseModel):
    """
    Collection: "orderitem"
    Snapshot of a product at order time. Cart-style items created through
    /api/order-items have `cart` set and may name their owner in `user`;
    items that belong to an order have neither.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    image: Optional[str] = None
    price: str
    qty: int = Field(..., ge=1)
    product: ObjectId
    user: Optional[ObjectId] = None
    cart: bool = False


class ShippingAddress(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    address: str
    city: str
    postal_code: str = Field(..., alias="postalCode")
    country: str
    phone_number: Optional[str] = Field(None, alias="phoneNumber")


class PaymentResult(BaseModel):
    id: Optional[str] = None
    status: Optional[str] = None
    update_time: Optional[str] = None
    email_address: Optional[str] = None


class Order(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    user: ObjectId
    payment_bill: ObjectId
    order_items: List[ObjectId]
    shipping_address: ShippingAddress
    payment_method: str
    items_price: str
    shipping_price: str
    tax_price: str
    total_price: str
    is_paid: bool = False
    paid_at: Optional[datetime] = None
    is_delivered: bool = False
    delivered_at: Optional[datetime] = None
    payment_result: Optional[PaymentResult] = None


class PaymentBill(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sender_name: str = Field(..., min_length=1, alias="senderName")
    sender_bank: str = Field(..., min_length=1, alias="senderBank")
    sender_account: str = Field(..., min_length=1, alias="senderAccount")
    receiver_name: str = Field(..., min_length=1, alias="receiverName")
    receiver_bank: str = Field(..., min_length=1, alias="receiverBank")
    receiver_account: str = Field(..., min_length=1, alias="receiverAccount")
    date: str = Field(..., min_length=1)
    amount: str = Field(..., min_length=1)
