from enum import Enum
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, String, func

from budgetvote.database import Base


class UserRole(str, Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    FACILITATOR = "facilitator"
    PARTICIPANT = "participant"


PRIVILEGED_ROLES = {UserRole.ADMIN.value, UserRole.SUPER_ADMIN.value}


def generate_user_id() -> str:
    return str(uuid4())


class User(Base):
    __tablename__ = "users"

    user_id = Column(String(36), primary_key=True, index=True, default=generate_user_id)
    login = Column(String, unique=True, index=True, nullable=False)
    display_name = Column(String, nullable=True)
    role = Column(String, default=UserRole.PARTICIPANT.value, nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @property
    def is_privileged(self) -> bool:
        return str(self.role or "").lower() in PRIVILEGED_ROLES
