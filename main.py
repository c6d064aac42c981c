import os
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any

from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from pydantic import BaseModel, EmailStr
import jwt
import structlog
from passlib.context import CryptContext
from bson import ObjectId

import database
from database import create_document
from checkout import Identity, place_order
from errors import StorefrontError, status_code_for
from logging_config import configure_logging
from notifications import Notifier
from order_status import allowed_statuses, transition_order
from schemas import (
    User as UserSchema,
    CheckoutRequest,
    CheckoutResponse,
    OrderListResponse,
    OrderRecord,
    StatusUpdateRequest,
    StatusUpdateResponse,
)
from store import OrderStore, UserStore

# ----------------------------------------------------------------------------
# App and Security Setup
# ----------------------------------------------------------------------------

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALG = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24 * 7)))  # 7 days

ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@shopease.com")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin123")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)

configure_logging()
logger = structlog.get_logger(__name__)

app = FastAPI(title="Storefront Order API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    """Map StorefrontError subclasses to appropriate HTTP responses."""
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error("request_failed", path=request.url.path, error_type=type(exc).__name__, error=str(exc))
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": str(exc), "error_type": type(exc).__name__},
    )


# ----------------------------------------------------------------------------
# Dependencies
# ----------------------------------------------------------------------------

def get_db():
    if database.db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return database.db


_notifier = Notifier.from_env()


def get_notifier() -> Notifier:
    return _notifier


def get_order_store(db=Depends(get_db)) -> OrderStore:
    return OrderStore(db)


def get_user_store(db=Depends(get_db)) -> UserStore:
    return UserStore(db)


# ----------------------------------------------------------------------------
# Utilities
# ----------------------------------------------------------------------------

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def create_access_token(subject: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = subject.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALG)


def token_for(user: Dict[str, Any]) -> str:
    return create_access_token({"sub": str(user["_id"]), "email": user["email"]})


def oid_str(oid) -> str:
    return str(oid) if isinstance(oid, ObjectId) else oid


def doc_to_public(doc: Dict[str, Any]) -> Dict[str, Any]:
    if not doc:
        return doc
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = oid_str(doc.pop("_id"))
    # hide sensitive fields
    if "password_hash" in doc:
        doc.pop("password_hash", None)
    return doc


def order_to_public(doc: Dict[str, Any]) -> Dict[str, Any]:
    return OrderRecord.model_validate(doc).model_dump(mode="json", by_alias=True)


async def get_current_user(token: str = Depends(oauth2_scheme), users: UserStore = Depends(get_user_store)) -> Dict[str, Any]:
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid authentication")
    uid = payload.get("sub")
    if not uid:
        raise HTTPException(status_code=401, detail="Invalid token")
    user = users.get_by_id(uid)
    if not user or not user.get("is_active", True):
        raise HTTPException(status_code=401, detail="User not found")
    return user


async def get_current_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if not user.get("is_admin"):
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


async def get_identity(token: Optional[str] = Depends(optional_oauth2_scheme)) -> Optional[Identity]:
    """Identity from the bearer token without touching the store; None if absent or invalid."""
    if not token:
        return None
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
    except jwt.InvalidTokenError:
        return None
    if not payload.get("sub") or not payload.get("email"):
        return None
    return Identity(user_id=payload["sub"], email=payload["email"])


# ----------------------------------------------------------------------------
# Models (request bodies)
# ----------------------------------------------------------------------------

class RegisterRequest(BaseModel):
    name: str
    email: EmailStr
    password: str
    phone: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


# ----------------------------------------------------------------------------
# Auth Endpoints
# ----------------------------------------------------------------------------

@app.post("/auth/register", response_model=TokenResponse)
def register(body: RegisterRequest, db=Depends(get_db)):
    email = body.email.lower()
    existing = db["user"].find_one({"email": email})
    if existing:
        raise HTTPException(status_code=400, detail="Email already registered")
    user = UserSchema(
        name=body.name,
        email=email,
        phone=body.phone,
        password_hash=hash_password(body.password),
        is_admin=False,
        is_active=True,
        addresses=[],
    )
    uid = create_document("user", user, database=db)
    logger.info("user_registered", user_id=uid)
    return TokenResponse(access_token=token_for({"_id": uid, "email": email}))


@app.post("/auth/login", response_model=TokenResponse)
def login(body: LoginRequest, users: UserStore = Depends(get_user_store)):
    user = users.get_by_email(body.email.lower())
    if not user or not user.get("password_hash") or not verify_password(body.password, user["password_hash"]):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return TokenResponse(access_token=token_for(user))


@app.get("/me")
def me(current=Depends(get_current_user)):
    return doc_to_public(current)


# ----------------------------------------------------------------------------
# Orders (Checkout & Tracking)
# ----------------------------------------------------------------------------

@app.post("/checkout", response_model=CheckoutResponse, response_model_by_alias=True)
def checkout(
    body: CheckoutRequest,
    identity: Optional[Identity] = Depends(get_identity),
    orders: OrderStore = Depends(get_order_store),
    users: UserStore = Depends(get_user_store),
    notifier: Notifier = Depends(get_notifier),
):
    result = place_order(identity, body, orders, users, notifier)
    return result.to_response()


@app.get("/orders")
def list_my_orders(current=Depends(get_current_user), orders: OrderStore = Depends(get_order_store)):
    docs = orders.list_for_customer(current["email"])
    return OrderListResponse(orders=docs, count=len(docs)).model_dump(mode="json", by_alias=True)


@app.get("/orders/{order_id}")
def get_my_order(order_id: str, current=Depends(get_current_user), orders: OrderStore = Depends(get_order_store)):
    doc = orders.get(order_id)
    if not doc or (doc.get("customer") or {}).get("email") != current["email"]:
        raise HTTPException(status_code=404, detail="Order not found")
    return order_to_public(doc)


# ----------------------------------------------------------------------------
# Admin: Order Management
# ----------------------------------------------------------------------------

@app.get("/admin/orders")
def admin_orders(user=Depends(get_current_admin), orders: OrderStore = Depends(get_order_store)):
    docs = orders.list_all()
    return OrderListResponse(orders=docs, count=len(docs)).model_dump(mode="json", by_alias=True)


@app.get("/admin/orders/statuses")
def admin_order_statuses(user=Depends(get_current_admin)):
    return {"success": True, "statuses": allowed_statuses()}


@app.get("/admin/orders/{order_id}")
def admin_order(order_id: str, user=Depends(get_current_admin), orders: OrderStore = Depends(get_order_store)):
    doc = orders.get(order_id)
    if not doc:
        raise HTTPException(status_code=404, detail="Order not found")
    return order_to_public(doc)


def _update_status(body: StatusUpdateRequest, orders: OrderStore, notifier: Notifier) -> Dict[str, Any]:
    result = transition_order(
        body.order_id,
        body.status,
        orders,
        notifier,
        description=body.description,
        location=body.location,
        expected_version=body.expected_version,
    )
    return StatusUpdateResponse(**result.to_response()).model_dump(mode="json", by_alias=True)


@app.patch("/admin/orders/update-status")
def admin_update_status(
    body: StatusUpdateRequest,
    user=Depends(get_current_admin),
    orders: OrderStore = Depends(get_order_store),
    notifier: Notifier = Depends(get_notifier),
):
    return _update_status(body, orders, notifier)


@app.put("/admin/orders/update-status")
def admin_put_status(
    body: StatusUpdateRequest,
    user=Depends(get_current_admin),
    orders: OrderStore = Depends(get_order_store),
    notifier: Notifier = Depends(get_notifier),
):
    return _update_status(body, orders, notifier)


# ----------------------------------------------------------------------------
# Health and Test
# ----------------------------------------------------------------------------

@app.get("/")
def root():
    return {"message": "Storefront Order API running"}


@app.get("/test")
def test_database():
    if database.db is None:
        return {"backend": "ok", "db": "not configured"}
    try:
        collections = database.db.list_collection_names()
        return {"backend": "ok", "db": "ok", "collections": collections}
    except Exception as e:
        return {"backend": "ok", "db": f"error: {e}"}


# ----------------------------------------------------------------------------
# Seed Data (idempotent) and Startup Hook
# ----------------------------------------------------------------------------

def seed_data(db) -> bool:
    """Create the admin account if it does not exist. Returns True if created."""
    admin_email = ADMIN_EMAIL.lower()
    if db["user"].find_one({"email": admin_email}):
        return False
    admin = UserSchema(
        name="Admin",
        email=admin_email,
        password_hash=hash_password(ADMIN_PASSWORD),
        is_admin=True,
        is_active=True,
        addresses=[],
    )
    create_document("user", admin, database=db)
    logger.info("admin_seeded", email=admin_email)
    return True


@app.post("/admin/seed")
def trigger_seed(user=Depends(get_current_admin), db=Depends(get_db)):
    return {"seeded": seed_data(db)}


@app.on_event("startup")
def on_startup():
    if database.db is None:
        logger.warning("database_not_configured")
        return
    try:
        OrderStore(database.db).ensure_indexes()
        seed_data(database.db)
    except Exception:
        logger.exception("startup_seed_failed")


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
