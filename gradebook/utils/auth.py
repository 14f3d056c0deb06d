# Utility Functions
from datetime import timedelta
from typing import Optional
from uuid import UUID
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from gradebook.config import settings
from gradebook.models.all_models import UserRole
from gradebook.schemas.workflow_schemas import Actor
from gradebook.utils.system_utils import now

# JWT Bearer
security = HTTPBearer()


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token"""
    to_encode = data.copy()
    expire = now() + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire, "type": "access"})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_actor_token(actor: Actor, expires_delta: Optional[timedelta] = None) -> str:
    claims = {"sub": str(actor.id), "role": actor.role.value}
    if actor.school_id is not None:
        claims["school_id"] = str(actor.school_id)
    return create_access_token(claims, expires_delta)


def verify_token(token: str, token_type: str = "access") -> Optional[dict]:
    """Verify and decode JWT token"""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        if payload.get("type") != token_type:
            return None
        return payload
    except JWTError:
        return None


def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Actor:
    """
    Actor from the bearer token issued by the identity provider.
    Only decodes identity; what the actor may do is decided by the workflow.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = verify_token(credentials.credentials, "access")
    if payload is None:
        raise credentials_exception

    try:
        actor_id = UUID(payload["sub"])
        role = UserRole(payload["role"])
        school_id = UUID(payload["school_id"]) if payload.get("school_id") else None
    except (KeyError, ValueError):
        raise credentials_exception

    return Actor(id=actor_id, role=role, school_id=school_id)
