"""
Authenticated principal as seen by the services.
"""

import uuid
from dataclasses import dataclass

from marketplace.database.models import UserRole


@dataclass(frozen=True)
class Principal:
    """Caller identity resolved by the auth boundary"""
    id: uuid.UUID
    role: UserRole = UserRole.USER
    name: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_vendor(self) -> bool:
        return self.role == UserRole.VENDOR
