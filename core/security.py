# File: security.py
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from fastapi import Depends, HTTPException, status, Request

from core.config import settings
from models.models import UserRole

@dataclass(frozen=True)
class Principal:
    """The acting party of a request, as vouched for by the session token."""
    id: int
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({
        "exp": expire,
        "iat": datetime.utcnow(),
        "type": "access"
    })

    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

def create_principal_token(user_id: int, role: str, expires_delta: Optional[timedelta] = None) -> str:
    """Mint an access token for the given principal"""
    return create_access_token({"sub": str(user_id), "role": UserRole(role).value}, expires_delta)

def decode_token(token: str) -> Optional[Dict[str, Any]]:
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None

def principal_from_payload(payload: Dict[str, Any]) -> Optional[Principal]:
    if payload.get("type") != "access":
        return None
    try:
        return Principal(id=int(payload["sub"]), role=UserRole(payload["role"]))
    except (KeyError, TypeError, ValueError):
        return None

async def get_current_principal(request: Request) -> Optional[Principal]:
    """Get the current principal from the Authorization header or cookie"""
    auth_header = request.headers.get("Authorization")
    token = None

    if auth_header and auth_header.startswith("Bearer "):
        token = auth_header[7:]

    # If not in header, try cookies
    if not token:
        token = request.cookies.get("access_token")

    if not token:
        return None

    payload = decode_token(token)
    if not payload:
        return None

    return principal_from_payload(payload)

async def require_principal(
    principal: Optional[Principal] = Depends(get_current_principal)
) -> Principal:
    """Get current principal (raises exception if not authenticated)"""
    if not principal:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal

def require_role(*roles: UserRole):
    """Dependency factory to require specific roles (admins always pass)"""
    def role_checker(principal: Principal = Depends(require_principal)) -> Principal:
        if principal.role not in roles and not principal.is_admin:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions"
            )
        return principal
    return role_checker
