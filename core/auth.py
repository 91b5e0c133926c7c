"""Actor identity for FastAPI routes

Authentication happens upstream. The gateway in front of this service
forwards the authenticated user id and role as headers, and the engine
trusts them verbatim.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from fastapi import Header, HTTPException, status


class Role(str, Enum):
    """Roles the engine distinguishes"""

    USER = "user"
    SELLER = "seller"
    BUYER = "buyer"
    ADMIN = "admin"


@dataclass(frozen=True)
class Actor:
    """The authenticated caller of an engine operation"""

    user_id: str
    role: Role = Role.USER

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def get_current_actor(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> Actor:
    """FastAPI dependency that builds the Actor from forwarded identity headers"""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authenticated user",
        )

    try:
        role = Role(x_user_role.lower()) if x_user_role else Role.USER
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Unknown role: {x_user_role}",
        )

    return Actor(user_id=x_user_id, role=role)
