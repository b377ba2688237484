"""init schema

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "app_users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("uuid", sa.String(length=36), nullable=False, unique=True),
        sa.Column("email", sa.String(length=200), nullable=False, unique=True),
        sa.Column("full_name", sa.String(length=160), nullable=True),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="user"),
        sa.Column("password_hash", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_app_users_email", "app_users", ["email"])

    op.create_table(
        "property_units",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("unit_number", sa.String(length=40), nullable=False, unique=True),
        sa.Column("strata_lot", sa.String(length=40), nullable=True),
        sa.Column("floor", sa.String(length=20), nullable=True),
        sa.Column("townhouse", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("phone", sa.String(length=40), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_property_units_unit_number", "property_units", ["unit_number"])

    op.create_table(
        "persons",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("auth_user_id", sa.Integer(), sa.ForeignKey("app_users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("full_name", sa.String(length=160), nullable=False),
        sa.Column("email", sa.String(length=200), nullable=False),
        sa.Column("phone", sa.String(length=40), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_persons_email", "persons", ["email"])

    op.create_table(
        "unit_person_roles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("unit_id", sa.Integer(), sa.ForeignKey("property_units.id", ondelete="CASCADE"), nullable=False),
        sa.Column("person_id", sa.Integer(), sa.ForeignKey("persons.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False),
        sa.Column("receive_email_notifications", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("unit_id", "person_id", "role", name="uq_unit_person_roles_unit_person_role"),
    )
    op.create_index("ix_unit_person_roles_unit_id", "unit_person_roles", ["unit_id"])
    op.create_index("ix_unit_person_roles_person_id", "unit_person_roles", ["person_id"])

    op.create_table(
        "violation_categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("bylaw_reference", sa.String(length=120), nullable=True),
        sa.Column("default_fine_amount", sa.Integer(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "violations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("uuid", sa.String(length=36), nullable=False, unique=True),
        sa.Column("reference_number", sa.String(length=36), nullable=False, unique=True),
        sa.Column("unit_id", sa.Integer(), sa.ForeignKey("property_units.id"), nullable=False),
        sa.Column("reported_by_id", sa.Integer(), sa.ForeignKey("app_users.id"), nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("violation_categories.id"), nullable=True),
        sa.Column("violation_type", sa.String(length=120), nullable=False),
        sa.Column("violation_date", sa.Date(), nullable=False),
        sa.Column("violation_time", sa.String(length=20), nullable=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("bylaw_reference", sa.String(length=120), nullable=True),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="pending_approval"),
        sa.Column("fine_amount", sa.Integer(), nullable=True),
        sa.Column("attachments", sa.JSON(), nullable=False),
        sa.Column("incident_area", sa.String(length=200), nullable=True),
        sa.Column("concierge_name", sa.String(length=160), nullable=True),
        sa.Column("people_involved", sa.Text(), nullable=True),
        sa.Column("noticed_by", sa.String(length=160), nullable=True),
        sa.Column("damage_to_property", sa.String(length=3), nullable=True),
        sa.Column("damage_details", sa.Text(), nullable=True),
        sa.Column("police_involved", sa.String(length=3), nullable=True),
        sa.Column("police_details", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_violations_uuid", "violations", ["uuid"])
    op.create_index("ix_violations_unit_id", "violations", ["unit_id"])
    op.create_index("ix_violations_reported_by_id", "violations", ["reported_by_id"])
    op.create_index("ix_violations_category_id", "violations", ["category_id"])
    op.create_index("ix_violations_status", "violations", ["status"])
    op.create_index("ix_violations_created_at", "violations", ["created_at"])
    op.create_index("ix_violations_status_created", "violations", ["status", "created_at"])

    op.create_table(
        "violation_histories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("violation_id", sa.Integer(), sa.ForeignKey("violations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("app_users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("action", sa.String(length=120), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_violation_histories_violation_id", "violation_histories", ["violation_id"])

    op.create_table(
        "violation_access_links",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("violation_id", sa.Integer(), sa.ForeignKey("violations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("violation_uuid", sa.String(length=36), nullable=False),
        sa.Column("recipient_email", sa.String(length=200), nullable=False),
        sa.Column("token", sa.String(length=36), nullable=False, unique=True),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("used_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_violation_access_links_violation_id", "violation_access_links", ["violation_id"])
    op.create_index("ix_violation_access_links_token", "violation_access_links", ["token"])

    op.create_table(
        "email_verification_codes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("person_id", sa.Integer(), sa.ForeignKey("persons.id", ondelete="CASCADE"), nullable=False),
        sa.Column("violation_id", sa.Integer(), sa.ForeignKey("violations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("code_hash", sa.String(length=128), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("used_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_email_verification_codes_person_id", "email_verification_codes", ["person_id"])
    op.create_index("ix_email_verification_codes_violation_id", "email_verification_codes", ["violation_id"])

    op.create_table(
        "public_user_sessions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("session_id", sa.String(length=36), nullable=False, unique=True),
        sa.Column("person_id", sa.Integer(), sa.ForeignKey("persons.id", ondelete="CASCADE"), nullable=False),
        sa.Column("unit_id", sa.Integer(), sa.ForeignKey("property_units.id", ondelete="CASCADE"), nullable=False),
        sa.Column("email", sa.String(length=200), nullable=False),
        sa.Column("full_name", sa.String(length=160), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_public_user_sessions_session_id", "public_user_sessions", ["session_id"])

    op.create_table(
        "public_rate_buckets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("bucket_key", sa.String(length=200), nullable=False),
        sa.Column("window_start", sa.DateTime(), nullable=False),
        sa.Column("hits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("bucket_key", "window_start", name="uq_public_rate_buckets_key_window"),
    )
    op.create_index("ix_public_rate_buckets_bucket_key", "public_rate_buckets", ["bucket_key"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("app_users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("actor_name", sa.String(length=160), nullable=True),
        sa.Column("actor_email", sa.String(length=200), nullable=True),
        sa.Column("action", sa.String(length=80), nullable=False),
        sa.Column("entity_type", sa.String(length=40), nullable=True),
        sa.Column("entity_id", sa.String(length=80), nullable=True),
        sa.Column("details_json", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("request_id", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])

    op.create_table(
        "notification_outbox",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("kind", sa.String(length=60), nullable=False),
        sa.Column("violation_id", sa.Integer(), sa.ForeignKey("violations.id", ondelete="SET NULL"), nullable=True),
        sa.Column("recipient_email", sa.String(length=200), nullable=False),
        sa.Column("recipient_name", sa.String(length=160), nullable=True),
        sa.Column("subject", sa.String(length=255), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("idempotency_key", sa.String(length=80), nullable=False, unique=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("next_attempt_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_notification_outbox_kind", "notification_outbox", ["kind"])
    op.create_index("ix_notification_outbox_status", "notification_outbox", ["status"])
    op.create_index("ix_notification_outbox_violation_id", "notification_outbox", ["violation_id"])


def downgrade():
    op.drop_table("notification_outbox")
    op.drop_table("audit_logs")
    op.drop_table("public_rate_buckets")
    op.drop_table("public_user_sessions")
    op.drop_table("email_verification_codes")
    op.drop_table("violation_access_links")
    op.drop_table("violation_histories")
    op.drop_table("violations")
    op.drop_table("violation_categories")
    op.drop_table("unit_person_roles")
    op.drop_table("persons")
    op.drop_table("property_units")
    op.drop_table("app_users")
