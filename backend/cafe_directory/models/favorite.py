"""UserFavorite ORM model (composite PK)."""
from sqlalchemy import Column, String, DateTime, ForeignKey
from sqlalchemy.sql import func
from cafe_directory.database import Base


class UserFavorite(Base):
    __tablename__ = "user_favorites"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    cafe_id = Column(String(36), ForeignKey("cafes.id", ondelete="CASCADE"), primary_key=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
