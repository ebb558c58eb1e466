"""
Orders

Line-item assembly, order placement with stock decrement, paid/delivered
transitions, cart-style order items and the sales reports.

Placing an order has no multi-document transaction. Stock is taken with a
conditional `$inc` per line item that only matches while enough stock is
left, and a failed line undoes the decrements already applied and deletes
the order and its line items.
"""

import logging
from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from database import Database, to_object_id
from errors import Conflict, InvalidRequest, NotFound, StoreError
from pricing import calc_prices, format_money, to_money
from schemas import Order, OrderItem, OrderLine, PaymentResult, ShippingAddress

logger = logging.getLogger(__name__)


def _require(db: Database, collection_name: str, doc_id: Any, label: str) -> Dict[str, Any]:
    doc = db.find_by_id(collection_name, doc_id)
    if doc is None:
        raise NotFound(f"{label} not found")
    return doc


def _delete_items(db: Database, items: Sequence[Dict[str, Any]]) -> None:
    if items:
        db["orderitem"].delete_many({"_id": {"$in": [item["_id"] for item in items]}})


def assemble_order_items(db: Database, user_id: Any, lines: Sequence[OrderLine],
                         cart: bool = False) -> List[Dict[str, Any]]:
    """
    Snapshot each requested product into a new order item and persist it.

    Every product is looked up before anything is written, so a missing
    product leaves no order items behind. The result keeps the order of
    `lines`. With `cart` the items are cart-style: tied to the user when
    one is given, and `user_id` may be None.
    """
    owner = None
    if user_id is not None or not cart:
        owner = _require(db, "user", user_id, "User")["_id"]
    product_ids = [to_object_id(line.id) for line in lines]
    wanted = list(dict.fromkeys(product_ids))

    found = {p["_id"]: p for p in db["product"].find({"_id": {"$in": wanted}})}
    if len(found) != len(wanted):
        missing = ", ".join(str(pid) for pid in wanted if pid not in found)
        raise NotFound(f"Product not found: {missing}")

    items: List[Dict[str, Any]] = []
    try:
        for pid, line in zip(product_ids, lines):
            product = found[pid]
            item = OrderItem(
                name=product["name"],
                image=product.get("image"),
                price=format_money(to_money(product["price"])),
                qty=line.qty,
                product=pid,
                user=owner if cart else None,
                cart=cart,
            )
            items.append(db.create_document("orderitem", item))
    except PyMongoError:
        _delete_items(db, items)
        raise
    return items


def _decrement_stock(db: Database, items: Sequence[Dict[str, Any]]) -> None:
    applied: List[Dict[str, Any]] = []
    try:
        for item in items:
            updated = db["product"].find_one_and_update(
                {"_id": item["product"], "count_in_stock": {"$gte": item["qty"]}},
                {
                    "$inc": {"count_in_stock": -item["qty"]},
                    "$set": {"updated_at": datetime.now(timezone.utc)},
                },
            )
            if updated is None:
                if db["product"].count_documents({"_id": item["product"]}) == 0:
                    raise NotFound(f"Product not found: {item['product']}")
                raise Conflict(f"Insufficient stock for {item['name']}")
            applied.append(item)
    except (StoreError, PyMongoError):
        for item in reversed(applied):
            db["product"].update_one({"_id": item["product"]}, {"$inc": {"count_in_stock": item["qty"]}})
        raise


def place_order(db: Database, user_id: Any, lines: Sequence[OrderLine], shipping_address: ShippingAddress,
                payment_method: str, payment_bill_id: Any) -> Dict[str, Any]:
    if not lines:
        raise InvalidRequest("No order items provided")
    bill = _require(db, "paymentbill", payment_bill_id, "Payment bill")
    user = _require(db, "user", user_id, "User")

    items = assemble_order_items(db, user["_id"], lines)
    prices = calc_prices(items)

    order = Order(
        user=user["_id"],
        payment_bill=bill["_id"],
        order_items=[item["_id"] for item in items],
        shipping_address=shipping_address,
        payment_method=payment_method,
        **prices.as_document(),
    )
    try:
        created = db.create_document("order", order)
    except PyMongoError:
        _delete_items(db, items)
        raise

    try:
        _decrement_stock(db, items)
    except (StoreError, PyMongoError) as exc:
        logger.warning("Rolling back order %s: %s", created["_id"], exc)
        db["order"].delete_one({"_id": created["_id"]})
        _delete_items(db, items)
        raise

    logger.info("Placed order %s for user %s, total %s", created["_id"], user["_id"], created["total_price"])
    return created


def _attach_users(db: Database, orders: List[Dict[str, Any]], fields: Sequence[str]) -> List[Dict[str, Any]]:
    user_ids = list({order["user"] for order in orders if order.get("user") is not None})
    projection = {f: 1 for f in fields}
    users = {u["_id"]: u for u in db["user"].find({"_id": {"$in": user_ids}}, projection)}
    for order in orders:
        order["user"] = users.get(order.get("user"))
    return orders


def get_order(db: Database, order_id: Any) -> Dict[str, Any]:
    order = _require(db, "order", order_id, "Order")
    return _attach_users(db, [order], ("username", "email"))[0]


def list_orders(db: Database) -> List[Dict[str, Any]]:
    orders = list(db["order"].find({}).sort("created_at", -1))
    return _attach_users(db, orders, ("username",))


def user_orders(db: Database, user_id: Any) -> List[Dict[str, Any]]:
    user = _require(db, "user", user_id, "User")
    orders = list(db["order"].find({"user": user["_id"]}).sort("created_at", -1))
    if not orders:
        raise NotFound("No orders found for this user")
    return orders


def _set_flag_once(db: Database, order_id: Any, flag: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    # Flags only go from False to True; a repeat call returns the order as is.
    oid = to_object_id(order_id)
    updated = db["order"].find_one_and_update(
        {"_id": oid, flag: {"$ne": True}},
        {"$set": {flag: True, "updated_at": datetime.now(timezone.utc), **fields}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        updated = _require(db, "order", oid, "Order")
    return updated


def mark_paid(db: Database, order_id: Any, payment_result: PaymentResult) -> Dict[str, Any]:
    order = _set_flag_once(db, order_id, "is_paid", {
        "paid_at": datetime.now(timezone.utc),
        "payment_result": payment_result.model_dump(),
    })
    logger.info("Order %s marked as paid", order["_id"])
    return order


def mark_delivered(db: Database, order_id: Any) -> Dict[str, Any]:
    order = _set_flag_once(db, order_id, "is_delivered", {"delivered_at": datetime.now(timezone.utc)})
    logger.info("Order %s marked as delivered", order["_id"])
    return order


# Reports

def count_orders(db: Database) -> int:
    return db["order"].count_documents({})


def total_sales(db: Database) -> Decimal:
    return sum(
        (to_money(o.get("total_price", 0)) for o in db["order"].find({}, {"total_price": 1})),
        Decimal("0.00"),
    )


def total_sales_by_date(db: Database) -> List[Dict[str, str]]:
    """Total of paid orders per paid_at day (YYYY-MM-DD), oldest first."""
    totals: Dict[str, Decimal] = defaultdict(Decimal)
    for order in db["order"].find({"is_paid": True}, {"paid_at": 1, "total_price": 1}):
        paid_at = order.get("paid_at")
        if paid_at is None:
            continue
        totals[paid_at.strftime("%Y-%m-%d")] += to_money(order.get("total_price", 0))
    return [{"date": day, "total_sales": format_money(total)} for day, total in sorted(totals.items())]


# Cart-style order items

def add_cart_item(db: Database, user_id: Optional[Any], product_id: Any, qty: int) -> Dict[str, Any]:
    to_object_id(product_id)
    return assemble_order_items(db, user_id, [OrderLine(id=str(product_id), qty=qty)], cart=True)[0]


def list_order_items(db: Database, user_id: Optional[Any] = None) -> List[Dict[str, Any]]:
    if user_id is None:
        return list(db["orderitem"].find({}))
    user = _require(db, "user", user_id, "User")
    return list(db["orderitem"].find({"user": user["_id"]}))


def update_order_item_qty(db: Database, item_id: Any, qty: int) -> Dict[str, Any]:
    if qty < 1:
        raise InvalidRequest("Quantity must be at least 1")
    updated = db["orderitem"].find_one_and_update(
        {"_id": to_object_id(item_id), "cart": True},
        {"$set": {"qty": qty, "updated_at": datetime.now(timezone.utc)}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise NotFound("Order item not found")
    return updated


def delete_order_item(db: Database, item_id: Any) -> None:
    res = db["orderitem"].delete_one({"_id": to_object_id(item_id), "cart": True})
    if res.deleted_count == 0:
        raise NotFound("Order item not found")
