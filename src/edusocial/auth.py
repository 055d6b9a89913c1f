"""
Caller identity from JWT bearer tokens

Tokens are issued by the authentication provider and signed with the
shared SECRET_KEY; this service only verifies them.
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt

from .exceptions import Unauthorized, Forbidden

logger = logging.getLogger(__name__)

# Security configuration
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 120

http_bearer = HTTPBearer(auto_error=False)


def get_secret_key():
    """Get secret key from config module"""
    from .config import config
    return config.SECRET_KEY


class CurrentUser:
    """Authenticated caller"""

    def __init__(self, id: str, account_type: str = "user", email: Optional[str] = None):
        self.id = id
        self.account_type = account_type
        self.email = email

    @property
    def is_business(self) -> bool:
        return self.account_type == "business"

    def __repr__(self):
        return f"<CurrentUser(id={self.id}, account_type={self.account_type})>"


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token

    Args:
        data: Claims (must include 'sub' - user ID; 'account_type' for business accounts)
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string
    """
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({
        "exp": expire,
        "jti": str(uuid.uuid4()),
        "iat": datetime.utcnow(),
    })
    return jwt.encode(to_encode, get_secret_key(), algorithm=ALGORITHM)


def verify_token(token: str) -> Optional[dict]:
    """Verify and decode a JWT token"""
    try:
        return jwt.decode(token, get_secret_key(), algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.warning("Token verification failed: Token has expired")
        return None
    except JWTError as e:
        logger.warning(f"Token verification failed: {type(e).__name__} - {str(e)}")
        return None


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer)
) -> CurrentUser:
    """
    FastAPI dependency resolving the caller from the Authorization header
    (or the auth_token cookie)

    Raises:
        Unauthorized: no token, or token invalid/expired
    """
    token = None
    if credentials and credentials.credentials:
        token = credentials.credentials
    else:
        token = request.cookies.get("auth_token")

    if not token:
        raise Unauthorized("Not authenticated")

    payload = verify_token(token)
    if not payload or not payload.get("sub"):
        raise Unauthorized("Could not validate credentials")

    return CurrentUser(
        id=str(payload["sub"]),
        account_type=payload.get("account_type", "user"),
        email=payload.get("email"),
    )


def require_business_account(user: CurrentUser, business_account_id: str) -> None:
    """Only a business account may act on its own orders and credits"""
    if not user.is_business or user.id != business_account_id:
        raise Forbidden(
            "Not allowed to act for this business account",
            {"business_account_id": business_account_id},
        )
