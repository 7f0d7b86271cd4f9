import logging
import os
from contextlib import asynccontextmanager
from typing import Annotated, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import auth
import catalog
import config
import dashboard
import database
import notifications
import orders
import shopping
from auth import Principal, get_current_principal, get_optional_principal, require_roles
from errors import AppError
from schemas import (
    AddToCartRequest,
    AddToWishlistRequest,
    ImageRequest,
    LoginRequest,
    NotificationCreate,
    OrderStatusUpdate,
    PlaceOrderRequest,
    ProductCreate,
    ProductQuery,
    ProductUpdate,
    ProfileUpdate,
    QuantityUpdate,
    RegisterRequest,
    ReviewRequest,
    Role,
    RoleUpdate,
)

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        database.ensure_indexes()
    else:
        logger.warning("DATABASE_URL / DATABASE_NAME not set, running without a database")
    yield


app = FastAPI(title="Krystal Store API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

AnyUser = Annotated[Principal, Depends(get_current_principal)]
MaybeUser = Annotated[Optional[Principal], Depends(get_optional_principal)]
Seller = Annotated[Principal, Depends(require_roles("agent", "admin"))]
Agent = Annotated[Principal, Depends(require_roles("agent"))]
Admin = Annotated[Principal, Depends(require_roles("admin"))]


# Error translation

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# Routes
@app.get("/")
def root():
    return {"message": "Krystal Store API running"}


@app.get("/test")
def test_database():
    resp = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if database.db is not None:
            resp["collections"] = database.db.list_collection_names()[:10]
            resp["database"] = "✅ Connected & Working"
            resp["connection_status"] = "Connected"
    except Exception as e:
        resp["database"] = f"⚠️ Connected but error: {str(e)[:80]}"
    return resp


# Auth & users

@app.post("/auth/register", status_code=201)
def register(payload: RegisterRequest):
    return auth.register_user(payload)


@app.post("/auth/login")
def login(payload: LoginRequest):
    return auth.authenticate_user(payload.email, payload.password)


@app.get("/users/profile")
def read_profile(principal: AnyUser):
    return auth.get_profile(principal)


@app.put("/users/profile")
def edit_profile(payload: ProfileUpdate, principal: AnyUser):
    return auth.update_profile(principal, payload)


@app.get("/users")
def list_users(principal: Admin, role: Optional[Role] = None):
    return auth.list_users(principal, role)


@app.put("/users/{user_id}/role")
def change_role(user_id: str, payload: RoleUpdate, principal: Admin):
    return auth.set_user_role(principal, user_id, payload.role)


# Products

@app.get("/products")
def list_products(query: Annotated[ProductQuery, Query()], principal: MaybeUser):
    return catalog.list_products(principal, query)


@app.post("/products", status_code=201)
def create_product(payload: ProductCreate, principal: Seller):
    return catalog.create_product(principal, payload)


@app.get("/products/{product_id}")
def get_product(product_id: str, principal: MaybeUser):
    return catalog.get_product(principal, product_id)


@app.put("/products/{product_id}")
def update_product(product_id: str, payload: ProductUpdate, principal: Seller):
    return catalog.update_product(principal, product_id, payload)


@app.delete("/products/{product_id}")
def delete_product(product_id: str, principal: Seller):
    catalog.soft_delete_product(principal, product_id)
    return {"message": "Product marked as inactive (soft deleted)"}


@app.put("/products/{product_id}/review")
def review_product(product_id: str, payload: ReviewRequest, principal: Admin):
    return catalog.review_product(principal, product_id, payload.status, payload.reason)


@app.post("/products/{product_id}/images")
def add_product_image(product_id: str, payload: ImageRequest, principal: Seller):
    return catalog.add_product_image(principal, product_id, payload)


# Cart

@app.get("/cart")
def get_cart(principal: AnyUser):
    return shopping.get_cart(principal)


@app.post("/cart")
def add_to_cart(payload: AddToCartRequest, principal: AnyUser):
    return shopping.add_to_cart(principal, payload.productId, payload.quantity)


@app.put("/cart/{product_id}")
def update_cart_item(product_id: str, payload: QuantityUpdate, principal: AnyUser):
    return shopping.update_cart_item(principal, product_id, payload.quantity)


@app.delete("/cart/{product_id}")
def remove_cart_item(product_id: str, principal: AnyUser):
    return shopping.remove_cart_item(principal, product_id)


# Wishlist

@app.get("/wishlist")
def get_wishlist(principal: AnyUser):
    return shopping.get_wishlist(principal)


@app.post("/wishlist")
def add_to_wishlist(payload: AddToWishlistRequest, principal: AnyUser):
    return shopping.add_to_wishlist(principal, payload.productId)


@app.delete("/wishlist/{product_id}")
def remove_from_wishlist(product_id: str, principal: AnyUser):
    return shopping.remove_from_wishlist(principal, product_id)


# Orders

@app.post("/orders", status_code=201)
def place_order(payload: PlaceOrderRequest, principal: AnyUser):
    order = orders.place_order(principal, payload.shippingAddress, payload.paymentMethod)
    return {"message": "Order placed successfully!", "order": order}


@app.get("/orders")
def my_orders(principal: AnyUser):
    return orders.get_orders_for_user(principal)


@app.get("/orders/all")
def all_orders(principal: Admin):
    return orders.get_all_orders(principal)


@app.get("/orders/{order_id}")
def get_order(order_id: str, principal: AnyUser):
    return orders.get_order(principal, order_id)


@app.put("/orders/{order_id}/status")
def update_order_status(order_id: str, payload: OrderStatusUpdate, principal: Admin):
    return orders.update_order_status(principal, order_id, payload.status)


# Notifications & activities

@app.get("/notifications/agent")
def agent_notifications(principal: Agent):
    return notifications.list_agent_notifications(principal)


@app.put("/notifications/{notification_id}/read")
def read_notification(notification_id: str, principal: Agent):
    notification = notifications.mark_notification_read(principal, notification_id)
    return {"message": "Notification marked as read", "notification": notification}


@app.delete("/notifications/{notification_id}")
def delete_notification(notification_id: str, principal: Agent):
    notifications.delete_notification(principal, notification_id)
    return {"message": "Notification removed"}


@app.post("/notifications", status_code=201)
def create_notification(payload: NotificationCreate, principal: Admin):
    return notifications.create_notification(principal, payload)


@app.get("/activities")
def list_activities(principal: AnyUser, type: Optional[str] = None):
    return notifications.list_activities(principal, type)


@app.get("/activities/search")
def search_activities(principal: AnyUser, q: Annotated[str, Query(min_length=1)]):
    return notifications.search_activities(principal, q)


@app.get("/activities/data-by-agent-id")
def related_activities(principal: AnyUser):
    return notifications.list_related_activities(principal)


# Dashboard

@app.get("/dashboard/stats")
def dashboard_stats(principal: Admin):
    return dashboard.get_dashboard_stats(principal)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
