"""
Authentication routes for the chat API.

Visitors get an anonymous session id; the operator exchanges email and
password for a JWT used by the inbox routes.
"""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from api.middleware.auth import create_jwt_token, create_visitor_token, get_current_operator
from api.services import get_services
from chat.session import SessionService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])


class AnonymousResponse(BaseModel):
    uid: str
    is_anonymous: bool = True
    token: str


class LoginRequest(BaseModel):
    email: str
    password: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user_id: str
    role: str


@router.post("/anonymous", response_model=AnonymousResponse)
async def sign_in_anonymously():
    """Issue a fresh anonymous visitor identity."""
    identity = await SessionService().sign_in_anonymously()
    token, _ = create_visitor_token(identity.uid)
    return AnonymousResponse(uid=identity.uid, token=token)


@router.post("/login", response_model=LoginResponse)
async def login(request: LoginRequest):
    """Authenticate the operator and return a JWT token."""
    session = SessionService(verifier=get_services().verify_operator)
    identity = await session.sign_in_with_credentials(request.email, request.password)

    token, expires_in = create_jwt_token({
        "sub": identity.uid,
        "email": identity.email,
        "role": "operator",
    })
    return LoginResponse(
        access_token=token,
        expires_in=expires_in,
        user_id=identity.uid,
        role="operator",
    )


@router.get("/me")
async def get_me(operator=Depends(get_current_operator)):
    """Get the signed-in operator's token claims."""
    return {
        "user_id": operator.get("sub"),
        "email": operator.get("email"),
        "role": operator.get("role"),
    }
