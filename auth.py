"""
Authentication, session tokens and user accounts.

Request handlers never read identity from ambient state: the dependencies at
the bottom of this module resolve the bearer token into a `Principal`, and
every service function receives that principal as an explicit argument.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext
from pydantic import BaseModel

import config
from database import collection, create_document, now_utc, serialize, to_object_id
from errors import AuthenticationError, ConflictError, ForbiddenError, InvalidIdError, NotFoundError
from schemas import ProfileUpdate, RegisterRequest, User

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=config.BCRYPT_ROUNDS)
bearer_scheme = HTTPBearer(auto_error=False)


class Principal(BaseModel):
    id: str
    role: str
    userName: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


def create_access_token(user_id: str) -> str:
    expires = datetime.now(timezone.utc) + timedelta(minutes=config.JWT_EXPIRES_MINUTES)
    return jwt.encode({"id": user_id, "exp": expires}, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> str:
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Not authorized, token expired")
    except jwt.InvalidTokenError as e:
        logger.debug("Token verification failed: %s", e)
        raise AuthenticationError("Not authorized, token failed")
    user_id = payload.get("id")
    if not user_id:
        raise AuthenticationError("Not authorized, token failed")
    return user_id


def public_user(doc) -> dict:
    """User document without its password hash."""
    user = serialize(doc)
    user.pop("passwordHash", None)
    return user


def principal_from_token(token: str) -> Principal:
    user_id = decode_access_token(token)
    try:
        oid = to_object_id(user_id)
    except InvalidIdError:
        raise AuthenticationError("Not authorized, token failed")
    user = collection("users").find_one({"_id": oid})
    if not user:
        logger.warning("Token refers to unknown user %s", user_id)
        raise AuthenticationError("Not authorized, user not found")
    logger.debug("Authenticated user %s with role %s", user_id, user.get("role"))
    return Principal(id=str(user["_id"]), role=user.get("role", "user"), userName=user.get("userName", ""))


# ---------- Accounts ----------

def _check_unique(email: Optional[str], user_name: Optional[str], exclude_id=None):
    users = collection("users")
    if email:
        existing = users.find_one({"email": email.lower()})
        if existing and existing["_id"] != exclude_id:
            raise ConflictError("User with this email already exists")
    if user_name:
        existing = users.find_one({"userName": user_name})
        if existing and existing["_id"] != exclude_id:
            raise ConflictError("User with this username already exists")


def _session_payload(doc) -> dict:
    user = public_user(doc)
    user["token"] = create_access_token(user["id"])
    return user


def register_user(payload: RegisterRequest) -> dict:
    _check_unique(payload.email, payload.userName)
    user = User(
        firstName=payload.firstName.strip(),
        lastName=payload.lastName.strip(),
        userName=payload.userName,
        email=payload.email,
        phoneNumber=payload.phoneNumber,
        address=payload.address,
        passwordHash=hash_password(payload.password),
        role="user",
    )
    user_id = create_document("users", user)
    logger.info("Registered user %s (%s)", user.userName, user_id)
    return _session_payload(collection("users").find_one({"_id": to_object_id(user_id)}))


def authenticate_user(email: str, password: str) -> dict:
    user = collection("users").find_one({"email": email.lower()})
    if not user or not verify_password(password, user.get("passwordHash", "")):
        logger.warning("Failed login for %s", email)
        raise AuthenticationError("Invalid email or password")
    return _session_payload(user)


def get_profile(principal: Principal) -> dict:
    user = collection("users").find_one({"_id": to_object_id(principal.id)})
    if not user:
        raise NotFoundError("User not found")
    return public_user(user)


def update_profile(principal: Principal, changes: ProfileUpdate) -> dict:
    oid = to_object_id(principal.id)
    users = collection("users")
    if not users.find_one({"_id": oid}):
        raise NotFoundError("User not found")

    update = changes.model_dump(exclude_unset=True, exclude_none=True)
    _check_unique(update.get("email"), update.get("userName"), exclude_id=oid)

    password = update.pop("password", None)
    if password:
        update["passwordHash"] = hash_password(password)
    if "email" in update:
        update["email"] = update["email"].lower()
    update["updated_at"] = now_utc()

    users.update_one({"_id": oid}, {"$set": update})
    logger.info("Profile updated for user %s", principal.id)
    return public_user(users.find_one({"_id": oid}))


def list_users(principal: Principal, role: Optional[str] = None) -> list:
    if not principal.is_admin:
        raise ForbiddenError()
    filt = {"role": role} if role else {}
    return [public_user(u) for u in collection("users").find(filt).sort("created_at", -1)]


def set_user_role(principal: Principal, user_id: str, role: str) -> dict:
    if not principal.is_admin:
        raise ForbiddenError()
    oid = to_object_id(user_id)
    res = collection("users").update_one({"_id": oid}, {"$set": {"role": role, "updated_at": now_utc()}})
    if res.matched_count == 0:
        raise NotFoundError("User not found")
    logger.info("Admin %s set role of user %s to %s", principal.id, user_id, role)
    return public_user(collection("users").find_one({"_id": oid}))


# ---------- Dependencies ----------

def get_optional_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[Principal]:
    if credentials is None:
        return None
    return principal_from_token(credentials.credentials)


def get_current_principal(principal: Optional[Principal] = Depends(get_optional_principal)) -> Principal:
    if principal is None:
        raise AuthenticationError("Not authorized, no token")
    return principal


def require_roles(*roles: str):
    def checker(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in roles:
            logger.warning("User %s with role %s denied; requires %s", principal.id, principal.role, roles)
            raise ForbiddenError()
        return principal
    return checker
