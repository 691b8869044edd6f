"""
Authentication helpers for the chat API.

Operator passwords are hashed with passlib; the inbox routes require a
JWT bearer token issued to the configured operator email.
"""

import os
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

from fastapi import HTTPException, Security, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from passlib.context import CryptContext

from config.settings import get_settings

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

_pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


# ── Password hashing ──────────────────────────────────────────────

def hash_password(plain: str) -> str:
    return _pwd_context.hash(plain)


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return _pwd_context.verify(plain, hashed)
    except ValueError:
        logger.warning("Stored password hash is not recognised")
        return False


# ── JWT ────────────────────────────────────────────────────────────

def _get_jwt_settings() -> Tuple[str, str, int]:
    """Get JWT config from environment."""
    secret = os.environ.get("JWT_SECRET_KEY", "change-me-in-production")
    algorithm = os.environ.get("JWT_ALGORITHM", "HS256")
    expire_min = int(os.environ.get("JWT_EXPIRE_MINUTES", "60"))
    return secret, algorithm, expire_min


def create_jwt_token(data: Dict[str, Any]) -> Tuple[str, int]:
    """
    Create a JWT token.

    Returns:
        Tuple of (token_string, expires_in_seconds)
    """
    secret, algorithm, expire_min = _get_jwt_settings()
    expires = datetime.utcnow() + timedelta(minutes=expire_min)
    payload = {**data, "exp": expires}
    token = jwt.encode(payload, secret, algorithm=algorithm)
    return token, expire_min * 60


def decode_jwt_token(token: str) -> Dict[str, Any]:
    """Decode and validate a JWT token."""
    secret, algorithm, _ = _get_jwt_settings()
    try:
        return jwt.decode(token, secret, algorithms=[algorithm])
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {e}",
        )


def create_visitor_token(conversation_id: str) -> Tuple[str, int]:
    """Token scoping a visitor's realtime connection to one conversation."""
    return create_jwt_token({"sub": conversation_id, "role": "visitor"})


def is_operator_claims(payload: Dict[str, Any]) -> bool:
    email = (payload.get("email") or "").lower()
    return bool(email) and email == get_settings().operator_email_normalized


# ── Dependencies ──────────────────────────────────────────────────

async def get_current_operator(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
) -> Dict[str, Any]:
    """
    Resolve the bearer token to the operator.

    A valid token for anyone other than the configured operator is a 403:
    the inbox is withheld entirely.
    """
    if not credentials or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_jwt_token(credentials.credentials)
    if not is_operator_claims(payload):
        logger.warning(f"Inbox access denied for {payload.get('email') or payload.get('sub')}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    return payload
