"""JWT bearer tokens and entity-access dependencies.

Users, entities and memberships are managed by the identity provider.  The
access token carries everything needed here:

    {"sub": "<user id>", "email": "...", "name": "...", "type": "access",
     "entities": {"<entity id>": "admin" | "user" | "super_admin"}}
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt

from prepaidly.config import settings

security = HTTPBearer()

ALGORITHM = "HS256"

ROLE_SUPER_ADMIN = "super_admin"
ROLE_ADMIN = "admin"
ROLE_USER = "user"
ENTITY_ROLES = (ROLE_SUPER_ADMIN, ROLE_ADMIN, ROLE_USER)


@dataclass(frozen=True)
class Principal:
    user_id: str
    email: Optional[str] = None
    name: Optional[str] = None
    entities: dict[str, str] = field(default_factory=dict)

    @property
    def is_super_admin(self) -> bool:
        return ROLE_SUPER_ADMIN in self.entities.values()

    @property
    def display_name(self) -> Optional[str]:
        if self.name:
            return self.name
        if self.email:
            return self.email.split("@")[0]
        return None

    def role_for(self, entity_id: str) -> Optional[str]:
        if entity_id in self.entities:
            return self.entities[entity_id]
        if self.is_super_admin:
            return ROLE_SUPER_ADMIN
        return None

    def can_access(self, entity_id: str) -> bool:
        return self.role_for(entity_id) is not None


# ── Token helpers ────────────────────────────────────────────


def create_access_token(
    data: dict,
    expires_delta: Optional[timedelta] = None,
) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode.update({
        "exp": expire,
        "type": "access",
        "jti": uuid.uuid4().hex,
    })
    return jwt.encode(to_encode, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and return the JWT payload. Raises JWTError on failure."""
    return jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])


def principal_from_payload(payload: dict) -> Principal:
    """Build a Principal from decoded claims.  Raises ValueError when malformed."""
    user_id = payload.get("sub")
    if not user_id or payload.get("type") != "access":
        raise ValueError("Token is not an access token")
    entities = payload.get("entities") or {}
    if not isinstance(entities, dict):
        raise ValueError("Malformed entities claim")
    return Principal(
        user_id=str(user_id),
        email=payload.get("email"),
        name=payload.get("name"),
        entities={
            str(entity_id): role
            for entity_id, role in entities.items()
            if role in ENTITY_ROLES
        },
    )


# ── Dependencies ────────────────────────────────────────────


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Principal:
    """Decode the bearer token and return the caller."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = decode_token(credentials.credentials)
        return principal_from_payload(payload)
    except (JWTError, ValueError):
        raise credentials_exception


def ensure_entity_access(
    principal: Principal,
    entity_id: str,
    *,
    status_code: int = status.HTTP_404_NOT_FOUND,
    detail: str = "Schedule not found",
) -> str:
    """Return the caller's role on *entity_id* or raise.

    Reads and updates answer 404 so schedule ids of other entities are not
    disclosed; creation passes 403.
    """
    role = principal.role_for(entity_id)
    if role is None:
        raise HTTPException(status_code=status_code, detail=detail)
    return role


def require_entity_role(principal: Principal, entity_id: str, *roles: str) -> str:
    """Like ensure_entity_access, but the role must be one of *roles*."""
    role = ensure_entity_access(
        principal,
        entity_id,
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Access denied to specified entity",
    )
    if role != ROLE_SUPER_ADMIN and role not in roles:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions",
        )
    return role
