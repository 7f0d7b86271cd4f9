"""
Product catalog: creation, editing, soft delete, moderation and the
role-based visibility rules used by list and detail lookups.

Moderation lifecycle::

    created by agent --> pending --review--> approved | rejected
    approved --owner edit--> pending
    approved <--review--> rejected

A product is publicly visible only while it is approved AND active.
"""

import logging
import math
import re
from typing import Optional

from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError

from auth import Principal
from database import collection, now_utc, serialize, to_object_id
from errors import (
    ConflictError,
    ForbiddenError,
    InvalidDecisionError,
    MissingReasonError,
    NotFoundError,
    ValidationFailed,
)
from notifications import notify, record_activity
from schemas import DEFAULT_IMAGE_URL, ImageRequest, Product, ProductCreate, ProductQuery, ProductUpdate

logger = logging.getLogger(__name__)

REVIEW_DECISIONS = ("approved", "rejected")
PUBLIC_FILTER = {"reviewStatus": "approved", "isActive": True}
# never taken from a client update payload
PROTECTED_FIELDS = ("agent", "reviewStatus", "rejectionReason", "soldCount")


def build_product_filter(principal: Optional[Principal], query: ProductQuery) -> dict:
    """Mongo filter for a product listing as seen by `principal`.

    Anonymous callers and plain users only ever get approved, active products,
    whatever status filters they pass. Agents are scoped to their own products
    and admins see everything; both may narrow by reviewStatus / isActive.
    """
    filt = {}
    if query.keyword:
        filt["name"] = {"$regex": re.escape(query.keyword), "$options": "i"}
    if query.category:
        filt["category"] = query.category
    if query.brand:
        filt["brand"] = query.brand
    for flag in ("isNew", "isTrending", "isPromotional"):
        value = getattr(query, flag)
        if value is not None:
            filt[flag] = value

    role = principal.role if principal else None
    if role in ("agent", "admin"):
        if role == "agent":
            filt["agent"] = principal.id
        if query.reviewStatus is not None:
            filt["reviewStatus"] = query.reviewStatus
        if query.isActive is not None:
            filt["isActive"] = query.isActive
    else:
        filt.update(PUBLIC_FILTER)
    return filt


def is_publicly_visible(product: dict) -> bool:
    return product.get("reviewStatus") == "approved" and product.get("isActive") is True


def is_visible_to(principal: Optional[Principal], product: dict) -> bool:
    if principal is not None:
        if principal.is_admin:
            return True
        if principal.role == "agent" and product.get("agent") == principal.id:
            return True
    return is_publicly_visible(product)


def list_products(principal: Optional[Principal], query: ProductQuery) -> dict:
    filt = build_product_filter(principal, query)
    products = collection("products")
    count = products.count_documents(filt)
    cursor = (
        products.find(filt)
        .sort([("created_at", -1), ("_id", -1)])
        .skip(query.pageSize * (query.pageNumber - 1))
        .limit(query.pageSize)
    )
    return {
        "products": [serialize(p) for p in cursor],
        "page": query.pageNumber,
        "pages": math.ceil(count / query.pageSize),
        "totalCount": count,
    }


def find_product(product_id: str) -> dict:
    product = collection("products").find_one({"_id": to_object_id(product_id)})
    if not product:
        raise NotFoundError("Product not found")
    return product


def get_product(principal: Optional[Principal], product_id: str) -> dict:
    product = find_product(product_id)
    if not is_visible_to(principal, product):
        raise NotFoundError("Product not found or not available for public viewing")
    return serialize(product)


def _require_editor(principal: Principal, product: dict, action: str):
    if not principal.is_admin and product.get("agent") != principal.id:
        logger.warning("User %s may not %s product %s", principal.id, action, product["_id"])
        raise ForbiddenError(f"Not authorized to {action} this product")


def _validated(data: dict) -> dict:
    try:
        return Product.model_validate(data).to_document()
    except ValidationError as e:
        err = e.errors()[0]
        field = ".".join(str(p) for p in err.get("loc", ()))
        raise ValidationFailed(f"{field}: {err['msg']}" if field else err["msg"], field=field or None)


def _check_sku_free(sku: Optional[str], exclude_id=None):
    if not sku:
        return
    existing = collection("products").find_one({"sku": sku})
    if existing and existing["_id"] != exclude_id:
        raise ConflictError(f"A product with SKU {sku} already exists")


def create_product(principal: Principal, payload: ProductCreate) -> dict:
    if principal.role not in ("agent", "admin"):
        raise ForbiddenError()

    data = payload.model_dump(exclude_none=True)
    data["imageUrl"] = payload.imageUrl or DEFAULT_IMAGE_URL
    data["images"] = payload.images or [data["imageUrl"]]
    data["agent"] = principal.id
    data["reviewStatus"] = "pending"
    data["rejectionReason"] = None
    doc = _validated(data)
    _check_sku_free(doc.get("sku"))

    stamp = now_utc()
    doc["created_at"] = stamp
    doc["updated_at"] = stamp
    try:
        inserted_id = collection("products").insert_one(doc).inserted_id
    except DuplicateKeyError:
        raise ConflictError(f"A product with SKU {doc.get('sku')} already exists")

    logger.info("Product %s created by %s, pending review", inserted_id, principal.id)
    record_activity(principal.id, "product_created", f"Product created: {doc['name']}",
                    product_id=str(inserted_id), status="pending_approval")
    return serialize(collection("products").find_one({"_id": inserted_id}))


def update_product(principal: Principal, product_id: str, changes: ProductUpdate) -> dict:
    product = find_product(product_id)
    _require_editor(principal, product, "update")

    update = changes.model_dump(exclude_unset=True)
    for field in PROTECTED_FIELDS:
        update.pop(field, None)
    # only these may be cleared explicitly
    update = {k: v for k, v in update.items() if v is not None or k in ("oldPrice", "sku")}

    merged = {k: v for k, v in product.items() if k not in ("_id", "created_at", "updated_at")}
    merged.update(update)
    if "imageUrl" in update and not update.get("images"):
        images = list(merged.get("images") or [])
        merged["images"] = [update["imageUrl"]] + images[1:]

    is_owner = product.get("agent") == principal.id
    if is_owner and not principal.is_admin and product.get("reviewStatus") == "approved":
        merged["reviewStatus"] = "pending"
        merged["rejectionReason"] = None
        logger.info("Product %s edited by its agent, back to pending review", product_id)

    doc = _validated(merged)
    _check_sku_free(doc.get("sku"), exclude_id=product["_id"])
    doc["created_at"] = product.get("created_at")
    doc["updated_at"] = now_utc()
    try:
        collection("products").replace_one({"_id": product["_id"]}, doc)
    except DuplicateKeyError:
        raise ConflictError(f"A product with SKU {doc.get('sku')} already exists")

    record_activity(principal.id, "product_updated", f"Product updated: {doc['name']}", product_id=product_id)
    return serialize(collection("products").find_one({"_id": product["_id"]}))


def soft_delete_product(principal: Principal, product_id: str):
    product = find_product(product_id)
    _require_editor(principal, product, "delete")
    collection("products").update_one({"_id": product["_id"]}, {"$set": {"isActive": False, "updated_at": now_utc()}})
    logger.info("Product %s deactivated by %s", product_id, principal.id)
    record_activity(principal.id, "product_deleted", f"Product deactivated: {product['name']}", product_id=product_id)


def add_product_image(principal: Principal, product_id: str, payload: ImageRequest) -> dict:
    product = find_product(product_id)
    _require_editor(principal, product, "upload images for")
    images = list(product.get("images") or [])
    if payload.imageUrl not in images:
        images.append(payload.imageUrl)
    collection("products").update_one(
        {"_id": product["_id"]},
        {"$set": {"images": images, "imageUrl": payload.imageUrl, "updated_at": now_utc()}},
    )
    return {"imageUrl": payload.imageUrl, "images": images}


def review_product(principal: Principal, product_id: str, decision: str, reason: Optional[str] = None) -> dict:
    """Approve or reject a product.

    Every check runs before the product is read or written, so a refused
    review never changes anything. Approving always re-activates the product
    and clears any previous rejection reason.
    """
    if not principal.is_admin:
        raise ForbiddenError()
    if decision not in REVIEW_DECISIONS:
        raise InvalidDecisionError(decision)
    reason = reason.strip() if reason else None
    if decision == "rejected" and not reason:
        raise MissingReasonError()

    product = find_product(product_id)
    update = {"reviewStatus": decision, "updated_at": now_utc()}
    if decision == "approved":
        update["rejectionReason"] = None
        update["isActive"] = True
    else:
        update["rejectionReason"] = reason
    collection("products").update_one({"_id": product["_id"]}, {"$set": update})
    logger.info("Product %s %s by admin %s", product_id, decision, principal.id)

    agent_id = product.get("agent")
    if decision == "approved":
        notify(agent_id, "approval", f'Your product "{product["name"]}" has been approved.', product_id)
        record_activity(agent_id, "product_approved", f"Product approved: {product['name']}",
                        product_id=product_id, related_user=principal.id, status="approved")
    else:
        notify(agent_id, "rejection", f'Your product "{product["name"]}" was rejected: {reason}', product_id)
        record_activity(agent_id, "product_updated", f"Product rejected: {product['name']}",
                        description=reason, product_id=product_id, related_user=principal.id, status="failed")

    return serialize(collection("products").find_one({"_id": product["_id"]}))
