"""ModerationSubmission and ModerationEvent ORM models."""
import enum
import uuid
from sqlalchemy import CheckConstraint, Column, String, DateTime, JSON, Text, ForeignKey, Index, Enum as SAEnum
from sqlalchemy.sql import func
from cafe_directory.database import Base


class EntityType(str, enum.Enum):
    cafe = "cafe"
    cafe_description = "cafe_description"
    cafe_photo = "cafe_photo"
    menu_photo = "menu_photo"
    review = "review"


class ActionType(str, enum.Enum):
    create = "create"
    update = "update"
    delete = "delete"


class SubmissionStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    needs_changes = "needs_changes"
    cancelled = "cancelled"


class ModerationSubmission(Base):
    __tablename__ = "moderation_submissions"
    __table_args__ = (
        Index("ix_moderation_submissions_status_created", "status", "created_at"),
        Index("ix_moderation_submissions_author_created", "author_user_id", "created_at"),
        CheckConstraint(
            "(status = 'pending' AND decided_at IS NULL AND moderator_id IS NULL)"
            " OR (status <> 'pending' AND decided_at IS NOT NULL AND moderator_id IS NOT NULL)",
            name="ck_moderation_submissions_decision",
        ),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    author_user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    entity_type = Column(SAEnum(EntityType, native_enum=False, create_constraint=True), nullable=False)
    action_type = Column(SAEnum(ActionType, native_enum=False, create_constraint=True), nullable=False)
    target_id = Column(String(36), nullable=True)
    payload = Column(JSON, nullable=False, default=dict)
    status = Column(
        SAEnum(SubmissionStatus, native_enum=False, create_constraint=True),
        nullable=False,
        default=SubmissionStatus.pending,
    )
    moderator_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    moderator_comment = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    decided_at = Column(DateTime(timezone=True), nullable=True)


class ModerationEvent(Base):
    """Append-only audit row, one per successful decision."""

    __tablename__ = "moderation_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    submission_id = Column(String(36), ForeignKey("moderation_submissions.id"), nullable=False, index=True)
    actor_user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    event_type = Column(SAEnum(SubmissionStatus, native_enum=False, create_constraint=True), nullable=False)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
