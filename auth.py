import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from bson.objectid import ObjectId
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.hash import bcrypt

import database
from config import ADMIN_EMAIL, JWT_ALGO, JWT_SECRET, LOGIN_TOKEN_DAYS

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)
password_hasher = bcrypt.using(rounds=10)


def hash_password(password: str) -> str:
    return password_hasher.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return password_hasher.verify(password, password_hash or "")
    except ValueError:
        # not a bcrypt hash
        return False


def create_token(user: dict, days: int = LOGIN_TOKEN_DAYS) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "user_id": str(user["_id"]),
        "email": user["email"],
        "role": user.get("role", "customer"),
        "iat": now,
        "exp": now + timedelta(days=days),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGO)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def is_admin(user: dict) -> bool:
    """Admins are either stored with the admin role or own the configured admin email."""
    return user.get("role") == "admin" or (bool(ADMIN_EMAIL) and (user.get("email") or "").lower() == ADMIN_EMAIL.lower())


async def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> dict:
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not authorized, no token")
    payload = decode_token(credentials.credentials)
    user_id = payload.get("user_id")
    if not user_id or not ObjectId.is_valid(user_id):
        raise HTTPException(status_code=401, detail="Invalid token payload")
    user = database.require_db()["user"].find_one({"_id": ObjectId(user_id)})
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return user


async def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if not is_admin(user):
        logger.info("Admin access denied for %s", user.get("email"))
        raise HTTPException(status_code=403, detail="Access denied. Admins only.")
    return user
