from auth import Principal
from database import collection
from errors import ForbiddenError


def get_dashboard_stats(principal: Principal) -> dict:
    if not principal.is_admin:
        raise ForbiddenError()

    pipeline = [
        {"$match": {"status": {"$ne": "cancelled"}}},
        {"$group": {"_id": None, "revenue": {"$sum": "$totalAmount"}}},
    ]
    res = list(collection("orders").aggregate(pipeline))

    return {
        "totalUsers": collection("users").count_documents({}),
        "activeAgents": collection("users").count_documents({"role": "agent"}),
        "productsListed": collection("products").count_documents({}),
        "pendingReviews": collection("products").count_documents({"reviewStatus": "pending"}),
        "totalOrders": collection("orders").count_documents({}),
        "totalRevenue": round(res[0]["revenue"], 2) if res else 0,
    }
