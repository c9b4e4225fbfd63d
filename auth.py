import logging
from datetime import timedelta
from typing import Any, Dict, Optional

import jwt
from fastapi import Cookie, Depends, Header, HTTPException, Response
from passlib.context import CryptContext
from pymongo.database import Database

from config import settings
from database import get_db, oid, serialize, utcnow

logger = logging.getLogger(__name__)

COOKIE_NAME = "jwt"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    try:
        return pwd_context.verify(password, hashed)
    except ValueError:
        return False


def create_access_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = utcnow() + (expires_delta or timedelta(days=settings.jwt_expire_days))
    payload = {"sub": user_id, "exp": expire}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> str:
    payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    user_id = payload.get("sub")
    if not user_id:
        raise jwt.InvalidTokenError("Token has no subject")
    return user_id


def set_auth_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        COOKIE_NAME,
        token,
        httponly=True,
        secure=settings.is_production,
        samesite="none" if settings.is_production else "lax",
        max_age=settings.jwt_expire_days * 24 * 60 * 60,
    )


def clear_auth_cookie(response: Response) -> None:
    response.delete_cookie(COOKIE_NAME, httponly=True)


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(user["_id"]),
        "name": user["name"],
        "email": user["email"],
        "is_verified": user.get("is_verified", False),
    }


def _token_from_request(authorization: Optional[str], cookie_token: Optional[str]) -> Optional[str]:
    if authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token:
            raise HTTPException(status_code=401, detail="Not authorized, invalid auth scheme")
        return token.strip()
    return cookie_token


async def get_current_user(
    authorization: Optional[str] = Header(default=None),
    jwt_cookie: Optional[str] = Cookie(default=None, alias=COOKIE_NAME),
    db: Database = Depends(get_db),
) -> Dict[str, Any]:
    """Resolve the caller from a bearer token or the ``jwt`` cookie.

    The returned user is serialized and never carries the password hash.
    """
    token = _token_from_request(authorization, jwt_cookie)
    if not token:
        raise HTTPException(status_code=401, detail="Not authorized, no token")
    try:
        user_id = decode_access_token(token)
    except jwt.PyJWTError as exc:
        logger.info("JWT verification failed: %s", exc)
        raise HTTPException(status_code=401, detail="Not authorized, token failed")
    try:
        user = db["user"].find_one({"_id": oid(user_id)}, {"password": 0, "verification_code": 0})
    except HTTPException:
        user = None
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return serialize(user)
