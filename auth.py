from datetime import datetime, timedelta, timezone
from typing import Optional

from bson import ObjectId
from fastapi import Depends, Header
from jose import JWTError, jwt
from passlib.context import CryptContext

from config import settings
from database import get_db
from errors import AuthError, ForbiddenError

JWT_ALG = "HS256"
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash or "")


def create_token(user: dict) -> str:
    payload = {
        "sub": str(user["_id"]),
        "email": user.get("email"),
        "role": user.get("role", "reseller"),
        "exp": datetime.now(timezone.utc) + timedelta(days=settings.jwt_expire_days),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=JWT_ALG)


def public_user(user: dict) -> dict:
    return {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "phone": user.get("phone"),
        "position": user.get("position"),
        "role": user.get("role", "reseller"),
    }


def get_current_user(authorization: Optional[str] = Header(None), db=Depends(get_db)):
    if not authorization:
        raise AuthError("Missing Authorization header")
    token = authorization.replace("Bearer ", "").strip()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[JWT_ALG])
    except JWTError:
        raise AuthError("Invalid token")
    user_id = payload.get("sub")
    if not user_id or not ObjectId.is_valid(user_id):
        raise AuthError("Invalid token")
    user = db["user"].find_one({"_id": ObjectId(user_id)})
    if not user:
        raise AuthError("Invalid token user")
    return user


def require_admin(user=Depends(get_current_user)):
    if user.get("role") != "admin":
        raise ForbiddenError("Admin only")
    return user
