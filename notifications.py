"""
Agent notifications and activity records.

`notify` and `record_activity` are called as side effects of product reviews
and sales; they log and swallow their own failures so the main operation is
never affected.
"""

import logging
import re
from typing import Optional

from pydantic import ValidationError
from pymongo.errors import PyMongoError

from auth import Principal
from database import collection, create_document, get_documents, serialize, to_object_id
from errors import AppError, ForbiddenError, NotFoundError
from schemas import Activity, Notification, NotificationCreate

logger = logging.getLogger(__name__)

NOTIFICATION_LIMIT = 20
SALES_TYPES = ["product_sold", "earnings_paid", "user_purchased"]
NEWEST_FIRST = [("created_at", -1), ("_id", -1)]


def notify(agent_id: str, type: str, message: str, product_id: Optional[str] = None):
    try:
        create_document("notifications", Notification(agent=agent_id, type=type, message=message, product=product_id))
    except (AppError, PyMongoError, ValidationError) as e:
        logger.warning("Could not notify agent %s (%s): %s", agent_id, type, e)


def record_activity(agent_id: str, type: str, title: str, description: Optional[str] = None,
                    product_id: Optional[str] = None, related_user: Optional[str] = None,
                    status: str = "completed", metadata: Optional[dict] = None):
    try:
        activity = Activity(
            agent=agent_id,
            relatedUser=related_user,
            type=type,
            title=title,
            description=description,
            status=status,
            metadata=metadata,
            productId=product_id,
        )
        create_document("activities", activity)
    except (AppError, PyMongoError, ValidationError) as e:
        logger.warning("Could not record %s activity for %s: %s", type, agent_id, e)


def list_agent_notifications(principal: Principal) -> list:
    return get_documents("notifications", {"agent": principal.id}, limit=NOTIFICATION_LIMIT, sort=NEWEST_FIRST)


def _owned_notification(principal: Principal, notification_id: str):
    oid = to_object_id(notification_id)
    notification = collection("notifications").find_one({"_id": oid})
    if not notification:
        raise NotFoundError("Notification not found")
    if notification["agent"] != principal.id:
        raise ForbiddenError("Not authorized to update this notification")
    return notification


def mark_notification_read(principal: Principal, notification_id: str) -> dict:
    notification = _owned_notification(principal, notification_id)
    collection("notifications").update_one({"_id": notification["_id"]}, {"$set": {"isRead": True}})
    notification["isRead"] = True
    return serialize(notification)


def delete_notification(principal: Principal, notification_id: str):
    notification = _owned_notification(principal, notification_id)
    collection("notifications").delete_one({"_id": notification["_id"]})


def create_notification(principal: Principal, payload: NotificationCreate) -> dict:
    if not principal.is_admin:
        raise ForbiddenError()
    to_object_id(payload.agentId)
    notification = Notification(agent=payload.agentId, type=payload.type, message=payload.message,
                                product=payload.productId)
    notification_id = create_document("notifications", notification)
    return serialize(collection("notifications").find_one({"_id": to_object_id(notification_id)}))


def list_activities(principal: Principal, activity_type: Optional[str] = None) -> list:
    query = {"agent": principal.id}
    if activity_type and activity_type != "all":
        if activity_type == "products":
            query["type"] = {"$regex": "^product_"}
        elif activity_type == "sales":
            query["type"] = {"$in": SALES_TYPES}
        else:
            query["type"] = activity_type
    return get_documents("activities", query, sort=NEWEST_FIRST)


def search_activities(principal: Principal, q: str) -> list:
    """Case-insensitive search over the title and description of the caller's own activities."""
    pattern = {"$regex": re.escape(q), "$options": "i"}
    query = {"agent": principal.id, "$or": [{"title": pattern}, {"description": pattern}]}
    return get_documents("activities", query, sort=NEWEST_FIRST)


def list_related_activities(principal: Principal) -> dict:
    # also includes activities where the caller is the subject, e.g. a buyer on a sale
    query = {"$or": [{"agent": principal.id}, {"relatedUser": principal.id}]}
    return {"activities": get_documents("activities", query, sort=NEWEST_FIRST)}
