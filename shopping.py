"""
Per-user cart and wishlist.

Line items hold a snapshot of the product's name, image and price taken when
the item was first added. Later product edits do not touch them.
"""

import logging
from typing import List, Union

from auth import Principal
from catalog import find_product, is_publicly_visible
from database import collection, now_utc, serialize, to_object_id
from errors import ConflictError, InsufficientStockError, NotFoundError
from schemas import Cart, CartItem, LineItemSnapshot, Wishlist, WishlistItem

logger = logging.getLogger(__name__)


def snapshot_of(product: dict) -> LineItemSnapshot:
    return LineItemSnapshot(
        product=str(product["_id"]),
        name=product["name"],
        imageUrl=product.get("imageUrl") or "",
        price=product["price"],
    )


def _canonical_id(product_id: str) -> str:
    # ObjectId accepts upper-case hex; stored ids are lower-case
    return str(to_object_id(product_id))


def _purchasable_product(product_id: str) -> dict:
    product = find_product(product_id)
    if not is_publicly_visible(product):
        raise NotFoundError("Product not found")
    return product


def _save_items(collection_name: str, holder: Union[Cart, Wishlist]):
    stamp = now_utc()
    data = holder.model_dump()
    collection(collection_name).update_one(
        {"user": data["user"]},
        {"$set": {"items": data["items"], "updated_at": stamp}, "$setOnInsert": {"user": data["user"], "created_at": stamp}},
        upsert=True,
    )
    logger.debug("Saved %d item(s) to %s of user %s", len(data["items"]), collection_name, data["user"])


def _load(collection_name: str, user_id: str) -> dict:
    doc = collection(collection_name).find_one({"user": user_id})
    if not doc:
        return {"user": user_id, "items": []}
    return serialize(doc)


# ---------- Cart ----------

def get_cart(principal: Principal) -> dict:
    return _load("carts", principal.id)


def add_to_cart(principal: Principal, product_id: str, quantity: int = 1) -> dict:
    product = _purchasable_product(product_id)
    product_id = str(product["_id"])
    items = get_cart(principal)["items"]

    existing = next((i for i in items if i["product"] == product_id), None)
    wanted = quantity + (existing["quantity"] if existing else 0)
    if product.get("stock", 0) < wanted:
        raise InsufficientStockError(product["name"], product.get("stock", 0))

    if existing:
        existing["quantity"] = wanted
    else:
        items.append(CartItem(**snapshot_of(product).model_dump(), quantity=quantity).model_dump())

    _save_items("carts", Cart(user=principal.id, items=items))
    return get_cart(principal)


def update_cart_item(principal: Principal, product_id: str, quantity: int) -> dict:
    product_id = _canonical_id(product_id)
    cart = collection("carts").find_one({"user": principal.id})
    if not cart:
        raise NotFoundError("Cart not found for this user.")
    items = cart.get("items", [])
    item = next((i for i in items if i["product"] == product_id), None)
    if item is None:
        raise NotFoundError("Product not found in cart.")

    product = find_product(product_id)
    if product.get("stock", 0) < quantity:
        raise InsufficientStockError(product["name"], product.get("stock", 0))

    item["quantity"] = quantity
    _save_items("carts", Cart(user=principal.id, items=items))
    return get_cart(principal)


def remove_cart_item(principal: Principal, product_id: str) -> dict:
    product_id = _canonical_id(product_id)
    cart = collection("carts").find_one({"user": principal.id})
    if not cart:
        raise NotFoundError("Cart not found for this user.")
    items = [i for i in cart.get("items", []) if i["product"] != product_id]
    if len(items) == len(cart.get("items", [])):
        raise NotFoundError("Product not found in cart to remove.")
    _save_items("carts", Cart(user=principal.id, items=items))
    return get_cart(principal)


def clear_cart(user_id: str, product_ids: List[str]):
    # drops only the given lines; anything added meanwhile stays in the cart
    collection("carts").update_one(
        {"user": user_id},
        {"$pull": {"items": {"product": {"$in": product_ids}}}, "$set": {"updated_at": now_utc()}},
    )


# ---------- Wishlist ----------

def get_wishlist(principal: Principal) -> dict:
    return _load("wishlists", principal.id)


def add_to_wishlist(principal: Principal, product_id: str) -> dict:
    product = _purchasable_product(product_id)
    product_id = str(product["_id"])
    items = get_wishlist(principal)["items"]
    if any(i["product"] == product_id for i in items):
        raise ConflictError("Product already in wishlist.")
    items.append(WishlistItem(**snapshot_of(product).model_dump()).model_dump())
    _save_items("wishlists", Wishlist(user=principal.id, items=items))
    return get_wishlist(principal)


def remove_from_wishlist(principal: Principal, product_id: str) -> dict:
    product_id = _canonical_id(product_id)
    wishlist = collection("wishlists").find_one({"user": principal.id})
    if not wishlist:
        raise NotFoundError("Wishlist not found for this user.")
    items = [i for i in wishlist.get("items", []) if i["product"] != product_id]
    if len(items) == len(wishlist.get("items", [])):
        raise NotFoundError("Product not found in wishlist to remove.")
    _save_items("wishlists", Wishlist(user=principal.id, items=items))
    return get_wishlist(principal)
