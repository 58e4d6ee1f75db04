"""
SQLAlchemy ORM models for authentication tables.
"""
from sqlalchemy import Column, String, Integer, DateTime, Boolean
from datetime import datetime

from src.infrastructure.database import Base


# Site-wide roles, lowest privilege first
USER_ROLES = ("user", "staffer", "super_admin")
ELEVATED_ROLES = ("staffer", "super_admin")


class UserModel(Base):
    """
    User account model.
    A user owns their saves and uploaded photos; locations they create are shared.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String, nullable=False, unique=True, index=True)
    username = Column(String, nullable=True, unique=True)
    display_name = Column(String, nullable=True)

    role = Column(String, nullable=False, default="user")
    is_admin = Column(Boolean, nullable=False, default=False)  # Legacy flag, treated as "staffer"

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def effective_role(self) -> str:
        """Role with the legacy is_admin flag folded in."""
        if self.role and self.role != "user":
            return self.role
        return "staffer" if self.is_admin else "user"

    @property
    def is_elevated(self) -> bool:
        """Staff and super admins may edit any shared location."""
        return self.effective_role in ELEVATED_ROLES
