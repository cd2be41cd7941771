import asyncio
import logging

import jwt
from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from pbn_builder.errors import DuplicateNameError
from pbn_builder.models.auth import Credentials, PasswordUpdate, Token
from pbn_builder.models.base import Message
from pbn_builder.utils.security import create_token, decode_token, hash_password, verify_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth")

_bearer = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
) -> str:
    """驗證 Bearer token，回傳 user id。"""
    if credentials is None:
        raise HTTPException(401, "No token provided")
    try:
        return decode_token(credentials.credentials)
    except jwt.InvalidTokenError:
        raise HTTPException(401, "Invalid token")


@router.post("/register", response_model=Message, status_code=201)
async def register(req: Credentials):
    from pbn_builder.main import get_state_db

    try:
        password_hash = await asyncio.to_thread(hash_password, req.password)
        get_state_db().create_user(req.username, password_hash)
    except DuplicateNameError:
        raise HTTPException(400, "Username already exists")
    logger.info("Registered user %s", req.username)
    return Message(message="User registered")


@router.post("/login", response_model=Token)
async def login(req: Credentials):
    from pbn_builder.main import get_state_db

    user = get_state_db().get_user_by_name(req.username)
    if not user or not await asyncio.to_thread(verify_password, req.password, user["password_hash"]):
        raise HTTPException(401, "Invalid credentials")
    return Token(token=create_token(user["id"]))


@router.put("/update-password", response_model=Message)
async def update_password(req: PasswordUpdate, user_id: str = Depends(get_current_user)):
    from pbn_builder.main import get_state_db

    state_db = get_state_db()
    user = state_db.get_user(user_id)
    if not user:
        raise HTTPException(404, "User not found")
    if not await asyncio.to_thread(verify_password, req.current_password, user["password_hash"]):
        raise HTTPException(401, "Current password is incorrect")
    new_hash = await asyncio.to_thread(hash_password, req.new_password)
    state_db.update_user_password(user_id, new_hash)
    return Message(message="Password updated")


@router.delete("/delete", response_model=Message)
async def delete_account(user_id: str = Depends(get_current_user)):
    from pbn_builder.main import get_state_db

    if not get_state_db().delete_user(user_id):
        raise HTTPException(404, "User not found")
    return Message(message="User deleted")
