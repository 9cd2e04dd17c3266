"""initial_schema

Revision ID: 0001
Revises:
Create Date: 2026-10-17

Creates all tables for the cafe directory:
users, cafes, cafe_photos, user_favorites,
moderation_submissions, moderation_events.
On PostgreSQL also enables PostGIS and adds cafes.geog.
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ENTITY_TYPES = ("cafe", "cafe_description", "cafe_photo", "menu_photo", "review")
ACTION_TYPES = ("create", "update", "delete")
STATUSES = ("pending", "approved", "rejected", "needs_changes", "cancelled")


def _in(column: str, values: Sequence[str]) -> str:
    return f"{column} IN ({', '.join(repr(v) for v in values)})"


def upgrade() -> None:
    is_postgres = op.get_bind().dialect.name == "postgresql"
    if is_postgres:
        op.execute("CREATE EXTENSION IF NOT EXISTS postgis")

    # --- users ---
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("display_name", sa.String(100), nullable=True),
        sa.Column("email", sa.String(255), nullable=True, unique=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="user"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("role IN ('user', 'moderator', 'admin')", name="ck_users_role"),
    )

    # --- cafes ---
    op.create_table(
        "cafes",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("address", sa.String(500), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("lat", sa.Float, nullable=False),
        sa.Column("lng", sa.Float, nullable=False),
        sa.Column("amenities", sa.JSON, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("lat >= -90 AND lat <= 90", name="ck_cafes_lat"),
        sa.CheckConstraint("lng >= -180 AND lng <= 180", name="ck_cafes_lng"),
    )
    if is_postgres:
        op.execute("ALTER TABLE cafes ADD COLUMN geog geography(Point, 4326)")
        op.execute("CREATE INDEX ix_cafes_geog ON cafes USING GIST (geog)")

    # --- cafe_photos ---
    op.create_table(
        "cafe_photos",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("cafe_id", sa.String(36), sa.ForeignKey("cafes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("kind", sa.String(10), nullable=False, server_default="cafe"),
        sa.Column("object_key", sa.String(1024), nullable=False),
        sa.Column("mime_type", sa.String(50), nullable=False),
        sa.Column("size_bytes", sa.BigInteger, nullable=False),
        sa.Column("position", sa.Integer, nullable=False, server_default="0"),
        sa.Column("is_cover", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("uploaded_by", sa.String(36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("cafe_id", "object_key", name="uq_cafe_photos_cafe_object_key"),
        sa.CheckConstraint("size_bytes > 0", name="ck_cafe_photos_size"),
        sa.CheckConstraint("position >= 0", name="ck_cafe_photos_position"),
        sa.CheckConstraint("kind IN ('cafe', 'menu')", name="ck_cafe_photos_kind"),
        sa.CheckConstraint(
            "mime_type IN ('image/jpeg', 'image/png', 'image/webp', 'image/avif')",
            name="ck_cafe_photos_mime_type",
        ),
    )
    op.create_index(
        "uq_cafe_photos_one_cover",
        "cafe_photos",
        ["cafe_id"],
        unique=True,
        postgresql_where=sa.text("is_cover"),
        sqlite_where=sa.text("is_cover = 1"),
    )
    op.create_index("ix_cafe_photos_cafe_kind_position", "cafe_photos", ["cafe_id", "kind", "position"])

    # --- user_favorites ---
    op.create_table(
        "user_favorites",
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("cafe_id", sa.String(36), sa.ForeignKey("cafes.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # --- moderation_submissions ---
    op.create_table(
        "moderation_submissions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("author_user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("entity_type", sa.String(20), nullable=False),
        sa.Column("action_type", sa.String(10), nullable=False),
        sa.Column("target_id", sa.String(36), nullable=True),
        sa.Column("payload", sa.JSON, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("moderator_id", sa.String(36), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("moderator_comment", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(_in("entity_type", ENTITY_TYPES), name="ck_moderation_submissions_entity_type"),
        sa.CheckConstraint(_in("action_type", ACTION_TYPES), name="ck_moderation_submissions_action_type"),
        sa.CheckConstraint(_in("status", STATUSES), name="ck_moderation_submissions_status"),
        sa.CheckConstraint(
            "(status = 'pending' AND decided_at IS NULL AND moderator_id IS NULL)"
            " OR (status <> 'pending' AND decided_at IS NOT NULL AND moderator_id IS NOT NULL)",
            name="ck_moderation_submissions_decision",
        ),
    )
    op.create_index(
        "ix_moderation_submissions_status_created", "moderation_submissions", ["status", "created_at"]
    )
    op.create_index(
        "ix_moderation_submissions_author_created", "moderation_submissions", ["author_user_id", "created_at"]
    )

    # --- moderation_events ---
    op.create_table(
        "moderation_events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "submission_id", sa.String(36), sa.ForeignKey("moderation_submissions.id"), nullable=False
        ),
        sa.Column("actor_user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("event_type", sa.String(20), nullable=False),
        sa.Column("comment", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(_in("event_type", STATUSES), name="ck_moderation_events_event_type"),
    )
    op.create_index("ix_moderation_events_submission_id", "moderation_events", ["submission_id"])


def downgrade() -> None:
    op.drop_table("moderation_events")
    op.drop_table("moderation_submissions")
    op.drop_table("user_favorites")
    op.drop_table("cafe_photos")
    op.drop_table("cafes")
    op.drop_table("users")
