"""
Order placement and retrieval.

Placing an order turns the caller's cart into an order record. The sequence
is all-or-nothing:

1. every cart line is checked against the live product (exists, enough stock)
   before anything is written;
2. stock is taken with a conditional decrement per product
   (`stock >= quantity`), so two concurrent orders can never oversell;
3. the order is inserted;
4. the ordered lines are removed from the cart.

If step 2 loses a race or step 3 fails, every decrement already applied in
that call is put back before the error propagates, and the cart is left as
it was. Order placement is never retried automatically.
"""

import logging
import secrets
import string
from typing import List

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

import config
from auth import Principal
from database import collection, create_document, now_utc, serialize, to_object_id
from errors import (
    AppError,
    ConflictError,
    EmptyCartError,
    ForbiddenError,
    InsufficientStockError,
    InvalidStatusTransition,
    NotFoundError,
    ProductNotFoundError,
)
from notifications import notify, record_activity
from schemas import Order, OrderItem, ShippingAddress
from shopping import clear_cart

logger = logging.getLogger(__name__)

ORDER_NUMBER_ALPHABET = string.ascii_uppercase + string.digits
ORDER_NUMBER_LENGTH = 8
ORDER_NUMBER_ATTEMPTS = 5

ORDER_TRANSITIONS = {
    "pending": {"processing", "cancelled"},
    "processing": {"shipped", "cancelled"},
    "shipped": {"delivered"},
}
USER_SUMMARY_FIELDS = ("firstName", "lastName", "userName", "email")


def compute_totals(items: List[OrderItem]):
    """Return (subtotal, shippingCost, totalAmount) for a list of line items.

    Shipping is free only when the subtotal is strictly above the threshold.
    """
    subtotal = round(sum(i.price * i.quantity for i in items), 2)
    shipping_cost = 0.0 if subtotal > config.FREE_SHIPPING_THRESHOLD else config.SHIPPING_FEE
    return subtotal, shipping_cost, round(subtotal + shipping_cost, 2)


def generate_order_number() -> str:
    return "".join(secrets.choice(ORDER_NUMBER_ALPHABET) for _ in range(ORDER_NUMBER_LENGTH))


def assign_order_number() -> str:
    """Return an order number no stored order uses yet."""
    orders = collection("orders")
    for _ in range(ORDER_NUMBER_ATTEMPTS):
        number = generate_order_number()
        if not orders.find_one({"orderNumber": number}, {"_id": 1}):
            return number
    raise AppError("Could not allocate a unique order number")


def _insert_order(order_data: dict) -> str:
    # the unique index still catches a number taken between check and insert
    for _ in range(ORDER_NUMBER_ATTEMPTS):
        number = assign_order_number()
        try:
            return create_document("orders", Order(orderNumber=number, **order_data))
        except DuplicateKeyError:
            logger.warning("Order number %s collided on insert, retrying", number)
    raise AppError("Could not allocate a unique order number")


def _take_stock(product_id: str, quantity: int):
    return collection("products").find_one_and_update(
        {"_id": to_object_id(product_id), "stock": {"$gte": quantity}},
        {"$inc": {"stock": -quantity, "soldCount": quantity}},
        return_document=ReturnDocument.AFTER,
    )


def _return_stock(items: List[OrderItem]):
    for item in items:
        collection("products").update_one(
            {"_id": to_object_id(item.product)},
            {"$inc": {"stock": item.quantity, "soldCount": -item.quantity}},
        )


def place_order(principal: Principal, shipping_address: ShippingAddress, payment_method: str) -> dict:
    cart = collection("carts").find_one({"user": principal.id})
    items = [OrderItem(**i) for i in (cart or {}).get("items", [])]
    if not items:
        raise EmptyCartError()

    products = {}
    for item in items:
        product = collection("products").find_one({"_id": to_object_id(item.product)})
        if not product:
            logger.warning("Order by %s refers to missing product %s", principal.id, item.product)
            raise ProductNotFoundError(item.name)
        if product.get("stock", 0) < item.quantity:
            logger.warning("Insufficient stock for %s: wanted %d, have %d",
                           item.product, item.quantity, product.get("stock", 0))
            raise InsufficientStockError(product["name"], product.get("stock", 0))
        products[item.product] = product

    taken = []
    try:
        for item in items:
            if _take_stock(item.product, item.quantity) is None:
                current = collection("products").find_one({"_id": to_object_id(item.product)}) or {}
                raise InsufficientStockError(item.name, current.get("stock", 0))
            taken.append(item)

        subtotal, shipping_cost, total_amount = compute_totals(items)
        order_id = _insert_order({
            "user": principal.id,
            "items": items,
            "shippingAddress": shipping_address,
            "paymentMethod": payment_method,
            "subtotal": subtotal,
            "shippingCost": shipping_cost,
            "totalAmount": total_amount,
            "status": "processing",
        })
    except Exception:
        if taken:
            logger.warning("Order placement for %s failed, returning stock for %d item(s)", principal.id, len(taken))
            try:
                _return_stock(taken)
            except Exception:
                logger.exception("Could not return stock after failed order by %s: %s", principal.id,
                                 [(i.product, i.quantity) for i in taken])
        raise

    clear_cart(principal.id, [i.product for i in items])
    order = serialize(collection("orders").find_one({"_id": to_object_id(order_id)}))
    logger.info("Order %s placed by %s, total %.2f", order["orderNumber"], principal.id, total_amount)

    for item in items:
        agent_id = products[item.product].get("agent")
        if agent_id:
            notify(agent_id, "sale", f"{item.quantity} x {item.name} sold (order {order['orderNumber']})", item.product)
            record_activity(agent_id, "product_sold", f"Product sold: {item.name}", product_id=item.product,
                            related_user=principal.id, metadata={"quantity": item.quantity, "orderId": order_id})
    record_activity(principal.id, "user_purchased", f"Order {order['orderNumber']} placed",
                    metadata={"orderId": order_id, "totalAmount": total_amount})
    return order


def get_orders_for_user(principal: Principal) -> list:
    cursor = collection("orders").find({"user": principal.id}).sort([("created_at", -1), ("_id", -1)])
    return [serialize(o) for o in cursor]


def _user_summaries(user_ids) -> dict:
    oids = []
    for uid in set(user_ids):
        try:
            oids.append(to_object_id(uid))
        except AppError:
            continue
    summaries = {}
    for user in collection("users").find({"_id": {"$in": oids}}):
        summary = {"id": str(user["_id"])}
        summary.update({f: user.get(f) for f in USER_SUMMARY_FIELDS})
        summaries[summary["id"]] = summary
    return summaries


def get_all_orders(principal: Principal) -> list:
    if not principal.is_admin:
        raise ForbiddenError()
    orders = [serialize(o) for o in collection("orders").find({}).sort([("created_at", -1), ("_id", -1)])]
    users = _user_summaries(o["user"] for o in orders)
    for order in orders:
        order["userInfo"] = users.get(order["user"])
    return orders


def get_order(principal: Principal, order_id: str) -> dict:
    order = collection("orders").find_one({"_id": to_object_id(order_id)})
    if not order or (order["user"] != principal.id and not principal.is_admin):
        raise NotFoundError("Order not found")
    return serialize(order)


def update_order_status(principal: Principal, order_id: str, status: str) -> dict:
    if not principal.is_admin:
        raise ForbiddenError()
    oid = to_object_id(order_id)
    order = collection("orders").find_one({"_id": oid})
    if not order:
        raise NotFoundError("Order not found")

    current = order["status"]
    if status not in ORDER_TRANSITIONS.get(current, set()):
        raise InvalidStatusTransition(current, status)

    updated = collection("orders").find_one_and_update(
        {"_id": oid, "status": current},
        {"$set": {"status": status, "updated_at": now_utc()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise ConflictError("Order status changed concurrently, reload and try again")

    if status == "cancelled":
        _return_stock([OrderItem(**i) for i in order.get("items", [])])
        logger.info("Order %s cancelled, stock returned", order.get("orderNumber"))
    logger.info("Order %s status %s -> %s by admin %s", order.get("orderNumber"), current, status, principal.id)
    return serialize(updated)
