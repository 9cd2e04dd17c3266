"""User ORM model."""
import enum
import uuid
from sqlalchemy import Column, String, DateTime, Enum as SAEnum
from sqlalchemy.sql import func
from cafe_directory.database import Base


class UserRole(str, enum.Enum):
    user = "user"
    moderator = "moderator"
    admin = "admin"


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    display_name = Column(String(100), nullable=True)
    email = Column(String(255), nullable=True, unique=True)
    role = Column(SAEnum(UserRole, native_enum=False, create_constraint=True), nullable=False, default=UserRole.user)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @property
    def is_moderator(self) -> bool:
        return self.role in (UserRole.moderator, UserRole.admin)
