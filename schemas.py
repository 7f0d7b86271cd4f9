"""
Database Schemas for the Krystal Store

Each Pydantic model corresponds to a MongoDB collection. Field names are the
camelCase names used on the wire and in the stored documents.

- User -> "users"
- Product -> "products"
- Cart -> "carts"
- Wishlist -> "wishlists"
- Order -> "orders"
- Activity -> "activities"
- Notification -> "notifications"

Request bodies accepted by the API live at the bottom of the module.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

Role = Literal["user", "agent", "admin"]
ReviewStatus = Literal["pending", "approved", "rejected"]
OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]
PaymentMethod = Literal["mpesa", "card", "cash"]
NotificationType = Literal["approval", "sale", "rejection", "info", "product_update", "system"]
ActivityType = Literal[
    "product_created",
    "product_updated",
    "product_deleted",
    "product_sold",
    "product_approved",
    "product_viewed",
    "review_received",
    "message_received",
    "earnings_paid",
    "agent_login",
    "agent_profile_update",
    "user_registered",
    "user_purchased",
    "user_message_sent",
]
ActivityStatus = Literal["completed", "pending", "pending_approval", "approved", "info", "failed"]

DEFAULT_IMAGE_URL = "https://placehold.co/400x500/D81E05/FFFFFF?text=Product"
USERNAME_PATTERN = r"^[a-zA-Z0-9_.]+$"


class User(BaseModel):
    """Users collection schema"""
    firstName: str = Field(..., min_length=1, description="First name")
    lastName: str = Field(..., min_length=1, description="Last name")
    userName: str = Field(..., min_length=3, max_length=20, pattern=USERNAME_PATTERN)
    email: EmailStr = Field(..., description="Email address (stored lower-case)")
    phoneNumber: Optional[str] = Field(None, description="Phone number")
    address: Optional[str] = Field(None, max_length=200)
    passwordHash: str = Field(..., description="BCrypt password hash")
    role: Role = Field("user", description="Role: user, agent or admin")

    @field_validator("email")
    @classmethod
    def lower_email(cls, v):
        return v.lower()


class Product(BaseModel):
    """Products collection schema"""
    name: str = Field(..., min_length=3, max_length=200)
    description: str = Field(..., min_length=10)
    price: float = Field(..., ge=0)
    oldPrice: Optional[float] = Field(None, ge=0, description="Previous price, shown as savings")
    imageUrl: str = Field(DEFAULT_IMAGE_URL)
    images: List[str] = Field(default_factory=list)
    category: str = Field(..., min_length=1)
    brand: str = Field(..., min_length=1)
    stock: int = Field(0, ge=0)
    sku: Optional[str] = Field(None, description="Stock keeping unit, unique when present")
    tags: List[str] = Field(default_factory=list)
    specifications: Dict[str, Any] = Field(default_factory=dict)
    isNew: bool = False
    isTrending: bool = False
    isPromotional: bool = False
    isActive: bool = True
    rating: float = Field(0, ge=0, le=5)
    numReviews: int = Field(0, ge=0)
    soldCount: int = Field(0, ge=0)
    agent: str = Field(..., description="Id of the user who created the product")
    reviewStatus: ReviewStatus = "pending"
    rejectionReason: Optional[str] = None

    @field_validator("name", "category", "brand")
    @classmethod
    def strip_text(cls, v):
        return v.strip()

    @field_validator("sku")
    @classmethod
    def upper_sku(cls, v):
        if v is None:
            return v
        v = v.strip().upper()
        return v or None

    @field_validator("tags")
    @classmethod
    def normalize_tags(cls, v):
        return [t.strip().lower() for t in v if t.strip()]

    @model_validator(mode="after")
    def check_review_fields(self):
        if not self.images:
            self.images = [self.imageUrl]
        if self.reviewStatus == "rejected" and not self.rejectionReason:
            raise ValueError("rejectionReason is required when reviewStatus is rejected")
        if self.reviewStatus != "rejected":
            self.rejectionReason = None
        return self

    def to_document(self) -> dict:
        doc = self.model_dump()
        # sparse unique index: a missing sku must be absent, not null
        if doc.get("sku") is None:
            doc.pop("sku", None)
        return doc


class LineItemSnapshot(BaseModel):
    """Product display fields copied at the moment of the action"""
    product: str
    name: str
    imageUrl: str
    price: float = Field(..., ge=0)


class CartItem(LineItemSnapshot):
    quantity: int = Field(1, ge=1)


class Cart(BaseModel):
    user: str = Field(..., description="Owner user id")
    items: List[CartItem] = Field(default_factory=list)


class WishlistItem(LineItemSnapshot):
    pass


class Wishlist(BaseModel):
    user: str = Field(..., description="Owner user id")
    items: List[WishlistItem] = Field(default_factory=list)


class OrderItem(CartItem):
    pass


class ShippingAddress(BaseModel):
    firstName: str = Field(..., min_length=1)
    lastName: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    postalCode: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    email: EmailStr


class Order(BaseModel):
    """Orders collection schema. Only `status` changes after creation."""
    user: str
    orderNumber: str
    items: List[OrderItem]
    shippingAddress: ShippingAddress
    paymentMethod: PaymentMethod
    subtotal: float = Field(..., ge=0)
    shippingCost: float = Field(..., ge=0)
    totalAmount: float = Field(..., ge=0)
    status: OrderStatus = "processing"


class Activity(BaseModel):
    agent: str = Field(..., description="User who performed or is related to the activity")
    relatedUser: Optional[str] = None
    type: ActivityType
    title: str
    description: Optional[str] = None
    status: ActivityStatus = "completed"
    metadata: Optional[Dict[str, Any]] = None
    productId: Optional[str] = None


class Notification(BaseModel):
    agent: str = Field(..., description="Receiving user id")
    type: NotificationType
    message: str = Field(..., min_length=1)
    product: Optional[str] = None
    isRead: bool = False


# ---------- Request bodies ----------

class RegisterRequest(BaseModel):
    firstName: str = Field(..., min_length=1)
    lastName: str = Field(..., min_length=1)
    userName: str = Field(..., min_length=3, max_length=20, pattern=USERNAME_PATTERN)
    email: EmailStr
    phoneNumber: Optional[str] = None
    address: Optional[str] = Field(None, max_length=200)
    password: str = Field(..., min_length=6)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ProfileUpdate(BaseModel):
    firstName: Optional[str] = Field(None, min_length=1)
    lastName: Optional[str] = Field(None, min_length=1)
    userName: Optional[str] = Field(None, min_length=3, max_length=20, pattern=USERNAME_PATTERN)
    email: Optional[EmailStr] = None
    phoneNumber: Optional[str] = None
    address: Optional[str] = Field(None, max_length=200)
    password: Optional[str] = Field(None, min_length=6)


class RoleUpdate(BaseModel):
    role: Role


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=3, max_length=200)
    description: str = Field(..., min_length=10)
    price: float = Field(..., ge=0)
    oldPrice: Optional[float] = Field(None, ge=0)
    imageUrl: Optional[str] = None
    images: Optional[List[str]] = None
    category: str = Field(..., min_length=1)
    brand: str = Field(..., min_length=1)
    stock: int = Field(0, ge=0)
    sku: Optional[str] = None
    tags: Optional[List[str]] = None
    specifications: Optional[Dict[str, Any]] = None
    isNew: bool = False
    isTrending: bool = False
    isPromotional: bool = False
    isActive: bool = True


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=3, max_length=200)
    description: Optional[str] = Field(None, min_length=10)
    price: Optional[float] = Field(None, ge=0)
    oldPrice: Optional[float] = Field(None, ge=0)
    imageUrl: Optional[str] = None
    images: Optional[List[str]] = None
    category: Optional[str] = Field(None, min_length=1)
    brand: Optional[str] = Field(None, min_length=1)
    stock: Optional[int] = Field(None, ge=0)
    sku: Optional[str] = None
    tags: Optional[List[str]] = None
    specifications: Optional[Dict[str, Any]] = None
    rating: Optional[float] = Field(None, ge=0, le=5)
    numReviews: Optional[int] = Field(None, ge=0)
    isNew: Optional[bool] = None
    isTrending: Optional[bool] = None
    isPromotional: Optional[bool] = None
    isActive: Optional[bool] = None


class ReviewRequest(BaseModel):
    # any string; unknown decisions are rejected by catalog.review_product
    status: str
    reason: Optional[str] = None


class ImageRequest(BaseModel):
    imageUrl: str = Field(..., min_length=1)


class ProductQuery(BaseModel):
    category: Optional[str] = None
    brand: Optional[str] = None
    keyword: Optional[str] = None
    reviewStatus: Optional[ReviewStatus] = None
    isActive: Optional[bool] = None
    isNew: Optional[bool] = None
    isTrending: Optional[bool] = None
    isPromotional: Optional[bool] = None
    pageNumber: int = Field(1, ge=1)
    pageSize: int = Field(10, ge=1, le=100)


class AddToCartRequest(BaseModel):
    productId: str
    quantity: int = Field(1, ge=1)


class QuantityUpdate(BaseModel):
    quantity: int = Field(..., ge=1)


class AddToWishlistRequest(BaseModel):
    productId: str


class PlaceOrderRequest(BaseModel):
    shippingAddress: ShippingAddress
    paymentMethod: PaymentMethod


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class NotificationCreate(BaseModel):
    agentId: str
    type: NotificationType
    message: str = Field(..., min_length=1)
    productId: Optional[str] = None
