"""portal init tables

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610190001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "events",
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("subject_id", sa.String(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("event_id"),
    )
    op.create_index("ix_events_event_type", "events", ["event_type"])
    op.create_index("ix_events_ts", "events", ["ts"])
    op.create_index("ix_events_actor_id", "events", ["actor_id"])
    op.create_index("ix_events_subject_id", "events", ["subject_id"])

    op.create_table(
        "identities",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("external_id", sa.String(), nullable=False),
        sa.Column("display_name", sa.String(), nullable=False),
        sa.Column("external_avatar_ref", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("raw_external_group_ids", sa.JSON(), nullable=False),
        sa.Column("staff_tier", sa.String(), nullable=True),
        sa.Column("staff_tiers", sa.JSON(), nullable=False),
        sa.Column("is_staff", sa.Boolean(), nullable=False),
        sa.Column("provider_access_token", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_identities_external_id", "identities", ["external_id"], unique=True)
    op.create_index("ix_identities_staff_tier", "identities", ["staff_tier"])
    op.create_index("ix_identities_created_at", "identities", ["created_at"])

    op.create_table(
        "role_catalog",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("external_group_id", sa.String(), nullable=False),
        sa.Column("external_group_name", sa.String(), nullable=True),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("staff_tier_name", sa.String(), nullable=True),
        sa.Column("department_code", sa.String(), nullable=True),
        sa.Column("rank_name", sa.String(), nullable=True),
        sa.Column("callsign_prefix", sa.String(), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_role_catalog_external_group_id",
        "role_catalog",
        ["external_group_id"],
        unique=True,
    )
    op.create_index("ix_role_catalog_kind", "role_catalog", ["kind"])
    op.create_index("ix_role_catalog_department_code", "role_catalog", ["department_code"])
    op.create_index("ix_role_catalog_created_at", "role_catalog", ["created_at"])

    op.create_table(
        "memberships",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("department_code", sa.String(), nullable=False),
        sa.Column("rank_name", sa.String(), nullable=False),
        sa.Column("callsign", sa.String(), nullable=True),
        sa.Column("external_record_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["identities.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "department_code", name="uq_memberships_user_department"),
    )
    op.create_index("ix_memberships_user_id", "memberships", ["user_id"])
    op.create_index("ix_memberships_department_code", "memberships", ["department_code"])
    op.create_index("ix_memberships_created_at", "memberships", ["created_at"])
    op.create_index(
        "ix_memberships_department_rank",
        "memberships",
        ["department_code", "rank_name"],
    )

    op.create_table(
        "whitelist_forms",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("key", sa.String(), nullable=False),
        sa.Column("department_code", sa.String(), nullable=True),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("review_tiers", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_whitelist_forms_key", "whitelist_forms", ["key"], unique=True)
    op.create_index("ix_whitelist_forms_department_code", "whitelist_forms", ["department_code"])
    op.create_index("ix_whitelist_forms_created_at", "whitelist_forms", ["created_at"])

    op.create_table(
        "applications",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("department_code", sa.String(), nullable=True),
        sa.Column("form_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("answers", sa.JSON(), nullable=False),
        sa.Column("open_key", sa.String(), nullable=True),
        sa.Column("reviewed_by", sa.String(), nullable=True),
        sa.Column("decided_by", sa.String(), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["identities.id"]),
        sa.ForeignKeyConstraint(["form_id"], ["whitelist_forms.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("open_key", name="uq_applications_open_key"),
    )
    op.create_index("ix_applications_user_id", "applications", ["user_id"])
    op.create_index("ix_applications_department_code", "applications", ["department_code"])
    op.create_index("ix_applications_form_id", "applications", ["form_id"])
    op.create_index("ix_applications_status", "applications", ["status"])
    op.create_index("ix_applications_created_at", "applications", ["created_at"])
    op.create_index(
        "ix_applications_user_department_status",
        "applications",
        ["user_id", "department_code", "status"],
    )

    op.create_table(
        "admin_settings",
        sa.Column("key", sa.String(), nullable=False),
        sa.Column("value", sa.String(), nullable=True),
        sa.Column("updated_by", sa.String(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("key"),
    )


def downgrade() -> None:
    op.drop_table("admin_settings")

    op.drop_index("ix_applications_user_department_status", table_name="applications")
    op.drop_index("ix_applications_created_at", table_name="applications")
    op.drop_index("ix_applications_status", table_name="applications")
    op.drop_index("ix_applications_form_id", table_name="applications")
    op.drop_index("ix_applications_department_code", table_name="applications")
    op.drop_index("ix_applications_user_id", table_name="applications")
    op.drop_table("applications")

    op.drop_index("ix_whitelist_forms_created_at", table_name="whitelist_forms")
    op.drop_index("ix_whitelist_forms_department_code", table_name="whitelist_forms")
    op.drop_index("ix_whitelist_forms_key", table_name="whitelist_forms")
    op.drop_table("whitelist_forms")

    op.drop_index("ix_memberships_department_rank", table_name="memberships")
    op.drop_index("ix_memberships_created_at", table_name="memberships")
    op.drop_index("ix_memberships_department_code", table_name="memberships")
    op.drop_index("ix_memberships_user_id", table_name="memberships")
    op.drop_table("memberships")

    op.drop_index("ix_role_catalog_created_at", table_name="role_catalog")
    op.drop_index("ix_role_catalog_department_code", table_name="role_catalog")
    op.drop_index("ix_role_catalog_kind", table_name="role_catalog")
    op.drop_index("ix_role_catalog_external_group_id", table_name="role_catalog")
    op.drop_table("role_catalog")

    op.drop_index("ix_identities_created_at", table_name="identities")
    op.drop_index("ix_identities_staff_tier", table_name="identities")
    op.drop_index("ix_identities_external_id", table_name="identities")
    op.drop_table("identities")

    op.drop_index("ix_events_subject_id", table_name="events")
    op.drop_index("ix_events_actor_id", table_name="events")
    op.drop_index("ix_events_ts", table_name="events")
    op.drop_index("ix_events_event_type", table_name="events")
    op.drop_table("events")
