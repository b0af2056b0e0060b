from enum import Enum
from uuid import UUID
from pydantic import BaseModel


class UserRole(str, Enum):
    USER: str = "user"
    ADMIN: str = "admin"


class Actor(BaseModel):
    """Resolved identity of the signed-in user. Authentication happens upstream."""

    id: UUID
    role: UserRole = UserRole.USER

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN
