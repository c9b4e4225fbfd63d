import logging
import secrets
from datetime import timedelta
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, EmailStr, Field, ValidationError
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from auth import (
    clear_auth_cookie,
    create_access_token,
    get_current_user,
    hash_password,
    public_user,
    set_auth_cookie,
    verify_password,
)
from config import settings
from database import as_utc, create_document, get_db, oid, utcnow
from errors import bad_request
from mailer import send_verification_email
from ratelimit import verify_email_limiter
from schemas import Profile, User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])


# -----------------------------
# Schemas (requests)
# -----------------------------
class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class VerifyEmailRequest(BaseModel):
    email: EmailStr
    code: str


class ResendVerificationRequest(BaseModel):
    email: EmailStr


class UpdateAccountRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=6)


def _verification_fields() -> Dict[str, Any]:
    code = str(secrets.randbelow(900000) + 100000)
    expires = utcnow() + timedelta(minutes=settings.verification_code_ttl_minutes)
    return {"verification_code": code, "verification_code_expires": expires}


def _login(response: Response, user: Dict[str, Any]) -> str:
    token = create_access_token(str(user["_id"]))
    set_auth_cookie(response, token)
    return token


# -----------------------------
# Registration and authentication
# -----------------------------
@router.post("", status_code=201)
async def register_user(body: RegisterRequest, db: Database = Depends(get_db)):
    if db["user"].find_one({"email": body.email}):
        raise HTTPException(status_code=400, detail="User already exists")
    verification = _verification_fields()
    try:
        account = User(name=body.name, email=body.email, password=hash_password(body.password), **verification)
    except ValidationError as exc:
        raise bad_request(exc)
    try:
        user = create_document(db, "user", account.model_dump())
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="User already exists")

    profile = Profile(user_id=str(user["_id"])).model_dump()
    profile["user_id"] = user["_id"]
    create_document(db, "profile", profile)

    logger.info("Registered user %s", user["_id"])
    send_verification_email(user["email"], user["name"], verification["verification_code"])
    return {"message": "User registered successfully. Verification code sent to email."}


@router.post("/auth")
async def auth_user(body: LoginRequest, response: Response, db: Database = Depends(get_db)):
    user = db["user"].find_one({"email": body.email})
    if not user or not verify_password(body.password, user.get("password", "")):
        raise HTTPException(status_code=400, detail="Invalid email or password")
    if not user.get("is_verified"):
        raise HTTPException(status_code=401, detail="Email not verified")
    token = _login(response, user)
    return {**public_user(user), "token": token}


@router.post("/logout")
async def logout_user(response: Response):
    clear_auth_cookie(response)
    return {"message": "User Logged Out"}


# -----------------------------
# Email verification
# -----------------------------
def _unverified_user(db: Database, email: str) -> Dict[str, Any]:
    user = db["user"].find_one({"email": email})
    if not user:
        raise HTTPException(status_code=400, detail="Invalid email")
    if user.get("is_verified"):
        raise HTTPException(status_code=400, detail="User already verified")
    return user


@router.post("/verify-email", dependencies=[Depends(verify_email_limiter)])
async def verify_email(body: VerifyEmailRequest, response: Response, db: Database = Depends(get_db)):
    user = _unverified_user(db, body.email)
    expires = user.get("verification_code_expires")
    if (
        not user.get("verification_code")
        or user["verification_code"] != body.code.strip()
        or expires is None
        or as_utc(expires) < utcnow()
    ):
        raise HTTPException(status_code=400, detail="Invalid or expired verification code")

    db["user"].update_one(
        {"_id": user["_id"]},
        {
            "$set": {"is_verified": True, "updated_at": utcnow()},
            "$unset": {"verification_code": "", "verification_code_expires": ""},
        },
    )
    user["is_verified"] = True
    token = _login(response, user)
    return {"message": "Email verified successfully", "user": public_user(user), "token": token}


@router.post("/resend-verification", dependencies=[Depends(verify_email_limiter)])
async def resend_verification_code(body: ResendVerificationRequest, db: Database = Depends(get_db)):
    user = _unverified_user(db, body.email)
    verification = _verification_fields()
    db["user"].update_one({"_id": user["_id"]}, {"$set": {**verification, "updated_at": utcnow()}})
    send_verification_email(user["email"], user["name"], verification["verification_code"])
    return {"message": "Verification code resent to email."}


# -----------------------------
# Account
# -----------------------------
@router.get("/profile")
async def get_user_profile(user=Depends(get_current_user), db: Database = Depends(get_db)):
    stored = db["user"].find_one({"_id": oid(user["id"])})
    if not stored:
        raise HTTPException(status_code=404, detail="User not found")
    return public_user(stored)


@router.put("/profile")
async def update_user_profile(
    body: UpdateAccountRequest,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    stored = db["user"].find_one({"_id": oid(user["id"])})
    if not stored:
        raise HTTPException(status_code=404, detail="User not found")
    update: Dict[str, Any] = {}
    if body.name and body.name.strip():
        update["name"] = body.name.strip()
    if body.email and body.email != stored["email"]:
        if db["user"].find_one({"email": body.email}):
            raise HTTPException(status_code=400, detail="Email already in use")
        update["email"] = body.email
    if body.password:
        update["password"] = hash_password(body.password)
    if update:
        update["updated_at"] = utcnow()
        db["user"].update_one({"_id": stored["_id"]}, {"$set": update})
        stored.update(update)
    return public_user(stored)
