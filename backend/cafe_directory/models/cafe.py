"""Cafe and CafePhoto ORM models.

The PostgreSQL schema also carries ``cafes.geog geography(Point,4326)``; it is
created by the Alembic migration and written by the catalog repository, so the
ORM mapping stays portable to SQLite.
"""
import enum
import uuid
from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from cafe_directory.database import Base


class PhotoKind(str, enum.Enum):
    cafe = "cafe"
    menu = "menu"


class Cafe(Base):
    __tablename__ = "cafes"
    __table_args__ = (
        CheckConstraint("lat >= -90 AND lat <= 90", name="ck_cafes_lat"),
        CheckConstraint("lng >= -180 AND lng <= 180", name="ck_cafes_lng"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(200), nullable=False)
    address = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)
    amenities = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    photos = relationship("CafePhoto", back_populates="cafe", cascade="all, delete-orphan")


class CafePhoto(Base):
    __tablename__ = "cafe_photos"
    __table_args__ = (
        UniqueConstraint("cafe_id", "object_key", name="uq_cafe_photos_cafe_object_key"),
        CheckConstraint("size_bytes > 0", name="ck_cafe_photos_size"),
        CheckConstraint("position >= 0", name="ck_cafe_photos_position"),
        CheckConstraint("kind IN ('cafe', 'menu')", name="ck_cafe_photos_kind"),
        CheckConstraint(
            "mime_type IN ('image/jpeg', 'image/png', 'image/webp', 'image/avif')",
            name="ck_cafe_photos_mime_type",
        ),
        Index(
            "uq_cafe_photos_one_cover",
            "cafe_id",
            unique=True,
            sqlite_where=text("is_cover = 1"),
            postgresql_where=text("is_cover"),
        ),
        Index("ix_cafe_photos_cafe_kind_position", "cafe_id", "kind", "position"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    cafe_id = Column(String(36), ForeignKey("cafes.id", ondelete="CASCADE"), nullable=False)
    kind = Column(SAEnum(PhotoKind, native_enum=False), nullable=False, default=PhotoKind.cafe)
    object_key = Column(String(1024), nullable=False)
    mime_type = Column(String(50), nullable=False)
    size_bytes = Column(BigInteger().with_variant(Integer, "sqlite"), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    is_cover = Column(Boolean, nullable=False, default=False)
    uploaded_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    cafe = relationship("Cafe", back_populates="photos")
