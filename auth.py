"""
Authentication collaborator.

Decodes bearer tokens and attaches the account of record to each request. Order handlers only
consume `{id, name, email, phone, role}` from here.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import jwt
from bson import ObjectId
from bson.errors import InvalidId
from fastapi import APIRouter, Depends, Header, HTTPException
from passlib.context import CryptContext
from pydantic import BaseModel, EmailStr
from pymongo.database import Database

from database import create_document, get_db
from schemas import User
from settings import ADMIN_ROLES, JWT_EXP_MIN, JWT_SECRET

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

router = APIRouter(prefix="/auth", tags=["auth"])


class TokenData(BaseModel):
    user_id: str
    email: EmailStr
    role: str


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def create_token(user_doc: Dict[str, Any]) -> str:
    payload = {
        "sub": str(user_doc.get("_id")),
        "email": user_doc.get("email"),
        "role": user_doc.get("role", "user"),
        "exp": datetime.now(timezone.utc) + timedelta(minutes=JWT_EXP_MIN),
        "iat": datetime.now(timezone.utc),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


def decode_token(token: str) -> TokenData:
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=["HS256"])
        return TokenData(user_id=payload["sub"], email=payload["email"], role=payload.get("role", "user"))
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except (jwt.InvalidTokenError, KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token")


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(user["_id"]),
        "name": user["name"],
        "email": user["email"],
        "phone": user.get("phone") or user.get("mobile"),
        "role": user.get("role", "user"),
    }


def get_current_user(authorization: Optional[str] = Header(default=None), db: Database = Depends(get_db)) -> Dict[str, Any]:
    if not authorization:
        raise HTTPException(status_code=401, detail="Unauthorized")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Invalid authorization header")
    token_data = decode_token(token)
    try:
        user = db["user"].find_one({"_id": ObjectId(token_data.user_id)})
    except InvalidId:
        user = None
    if not user or not user.get("is_active", True):
        raise HTTPException(status_code=401, detail="User not found")
    return user


def is_admin(user: Dict[str, Any]) -> bool:
    return user.get("role") in ADMIN_ROLES


def require_role(user: Dict[str, Any], roles: List[str]):
    if user.get("role") not in roles:
        raise HTTPException(status_code=403, detail="Forbidden")


def require_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    require_role(user, ADMIN_ROLES)
    return user


class RegisterDTO(BaseModel):
    name: str
    email: EmailStr
    password: str
    phone: Optional[str] = None


class LoginDTO(BaseModel):
    email: EmailStr
    password: str


@router.post("/register")
def register(data: RegisterDTO, db: Database = Depends(get_db)):
    if db["user"].find_one({"email": data.email}):
        raise HTTPException(status_code=400, detail="Email already in use")
    user = User(name=data.name, email=data.email, phone=data.phone, password_hash=hash_password(data.password))
    user_id = create_document("user", user, database=db)
    doc = db["user"].find_one({"_id": ObjectId(user_id)})
    return {"token": create_token(doc), "user": public_user(doc)}


@router.post("/login")
def login(data: LoginDTO, db: Database = Depends(get_db)):
    user = db["user"].find_one({"email": data.email})
    if not user or not verify_password(data.password, user.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return {"token": create_token(user), "user": public_user(user)}


@router.get("/me")
def me(user: Dict[str, Any] = Depends(get_current_user)):
    return public_user(user)
