"""init

Revision ID: 0001_init
Revises: 
Create Date: 2026-10-19

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from pgvector.sqlalchemy import Vector


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    op.create_table(
        "employees",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), server_default="", nullable=False),
        sa.Column("biometric_reference", Vector(512), nullable=True),
        sa.Column("security_question", sa.String(length=255), nullable=True),
        sa.Column("security_answer_hash", sa.String(length=255), nullable=True),
        sa.Column("geolocation_consent", sa.Boolean(), nullable=False),
        sa.Column("biometric_consent", sa.Boolean(), nullable=False),
        sa.Column("privacy_consent", sa.Boolean(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "sites",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=150), nullable=False),
        sa.Column("address", sa.String(length=255), server_default="", nullable=False),
        sa.Column("city", sa.String(length=100), server_default="", nullable=False),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("radius_m", sa.Float(), server_default="100", nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "pairs",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("employee_a_id", sa.String(length=36), nullable=False),
        sa.Column("employee_b_id", sa.String(length=36), nullable=False),
        sa.Column("site_id", sa.String(length=36), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["employee_a_id"], ["employees.id"]),
        sa.ForeignKeyConstraint(["employee_b_id"], ["employees.id"]),
        sa.ForeignKeyConstraint(["site_id"], ["sites.id"]),
        sa.CheckConstraint("employee_a_id <> employee_b_id", name="ck_pair_distinct_members"),
        sa.Index("ix_pairs_employee_a_id", "employee_a_id"),
        sa.Index("ix_pairs_employee_b_id", "employee_b_id"),
        sa.Index("ix_pairs_site_id", "site_id"),
        sa.Index("ix_pairs_site_active", "site_id", "active"),
    )

    op.create_table(
        "presence_sessions",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.String(length=36), nullable=False),
        sa.Column("site_id", sa.String(length=36), nullable=False),
        sa.Column("pair_id", sa.String(length=36), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("location_tracking_consented", sa.Boolean(), nullable=False),
        sa.Column("total_minutes", sa.Float(), nullable=False),
        sa.Column("time_with_pair_minutes", sa.Float(), nullable=False),
        sa.Column("reliability_score", sa.Integer(), nullable=False),
        sa.Column("next_check_in_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reverification_due", sa.Boolean(), nullable=False),
        sa.Column("pair_present", sa.Boolean(), nullable=False),
        sa.Column("last_pair_validation_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_accrual_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("emergency_flag", sa.Boolean(), nullable=False),
        sa.Column("emergency_reason", sa.String(length=500), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"]),
        sa.ForeignKeyConstraint(["site_id"], ["sites.id"]),
        sa.ForeignKeyConstraint(["pair_id"], ["pairs.id"]),
        sa.Index("ix_presence_sessions_employee_id", "employee_id"),
        sa.Index("ix_presence_sessions_status", "status"),
        sa.Index(
            "uq_presence_sessions_open_employee",
            "employee_id",
            unique=True,
            postgresql_where=sa.text("status <> 'ended'"),
        ),
    )

    op.create_table(
        "check_ins",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("session_id", sa.String(length=36), nullable=False),
        sa.Column("employee_id", sa.String(length=36), nullable=False),
        sa.Column("site_id", sa.String(length=36), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("verification_method", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("ai_confidence_score", sa.Float(), nullable=False),
        sa.Column("pair_present", sa.Boolean(), nullable=False),
        sa.Column("distance_to_pair", sa.Float(), nullable=True),
        sa.Column("capture_digest", sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(["session_id"], ["presence_sessions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"]),
        sa.ForeignKeyConstraint(["site_id"], ["sites.id"]),
        sa.Index("ix_check_ins_session_id", "session_id"),
        sa.Index("ix_check_ins_employee_time", "employee_id", "timestamp"),
    )

    op.create_table(
        "location_samples",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("employee_id", sa.String(length=36), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"]),
        sa.Index("ix_location_samples_employee_time", "employee_id", "timestamp"),
    )

    op.create_table(
        "ai_alerts",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.String(length=36), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("severity", sa.String(length=10), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("details", sa.String(length=500), nullable=False),
        sa.Column("confidence_score", sa.Float(), nullable=False),
        sa.Column("resolved", sa.Boolean(), nullable=False),
        sa.Column("resolved_by", sa.String(length=100), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"]),
        sa.Index("ix_ai_alerts_employee_resolved", "employee_id", "resolved"),
    )


def downgrade() -> None:
    op.drop_table("ai_alerts")
    op.drop_table("location_samples")
    op.drop_table("check_ins")
    op.drop_table("presence_sessions")
    op.drop_table("pairs")
    op.drop_table("sites")
    op.drop_table("employees")
