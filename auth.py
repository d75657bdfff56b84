import os
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from bson import ObjectId
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from passlib.context import CryptContext
from pymongo.database import Database

from database import get_db, utcnow

# Security/JWT setup
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALGO = "HS256"
JWT_EXPIRES_MIN = int(os.getenv("JWT_EXPIRES_MIN", "60"))
security = HTTPBearer()
password_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return password_ctx.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return password_ctx.verify(password, hashed)


def create_token(user: dict) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user["_id"]),
        "email": user.get("email"),
        "is_admin": user.get("is_admin", False),
        "exp": now + timedelta(minutes=JWT_EXPIRES_MIN),
        "iat": now,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGO)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def public_user(user: dict) -> dict:
    created_at = user.get("created_at")
    return {
        "id": str(user["_id"] if "_id" in user else user["id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "isAdmin": user.get("is_admin", False),
        "isActive": user.get("is_active", True),
        "addresses": user.get("addresses", []),
        "createdAt": created_at.isoformat() if created_at else None,
    }


def register_user(db: Database, name: str, email: str, password: str, is_admin: bool = False) -> dict:
    if db["user"].find_one({"email": email}):
        raise HTTPException(status_code=400, detail="Email already registered")
    now = utcnow()
    doc = {
        "name": name,
        "email": email,
        "hashed_password": hash_password(password),
        "is_active": True,
        "is_admin": is_admin,
        "addresses": [],
        "created_at": now,
        "updated_at": now,
    }
    inserted_id = db["user"].insert_one(doc).inserted_id
    return db["user"].find_one({"_id": inserted_id})


def authenticate(db: Database, email: str, password: str) -> dict:
    user = db["user"].find_one({"email": email})
    if not user or not verify_password(password, user.get("hashed_password", "")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not user.get("is_active", True):
        raise HTTPException(status_code=401, detail="Account is disabled")
    return user


def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security),
                     db: Database = Depends(get_db)) -> dict:
    payload = decode_token(credentials.credentials)
    uid: Optional[str] = payload.get("sub")
    user = db["user"].find_one({"_id": ObjectId(uid)}) if uid and ObjectId.is_valid(uid) else None
    if not user or not user.get("is_active", True):
        raise HTTPException(status_code=401, detail="User not found")
    return user


def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if not user.get("is_admin"):
        raise HTTPException(status_code=403, detail="Admin only")
    return user
