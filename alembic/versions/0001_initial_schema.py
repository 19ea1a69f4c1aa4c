"""Initial schema: users, blood requests, donor entries and histories

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa

from app.db.base import UUID


# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", UUID(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(100), nullable=False),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("blood_group", sa.String(3), nullable=False),
        sa.Column("longitude", sa.Float, nullable=False),
        sa.Column("latitude", sa.Float, nullable=False),
        sa.Column("address", sa.String(255), nullable=True),
        sa.Column("is_donor", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("last_donation", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_blood_group", "users", ["blood_group"])
    op.create_index("idx_users_location", "users", ["latitude", "longitude"])
    op.create_index("idx_users_donor_group", "users", ["is_donor", "blood_group"])

    op.create_table(
        "blood_requests",
        sa.Column("id", UUID(), primary_key=True, nullable=False),
        sa.Column(
            "requester_id",
            UUID(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("patient_name", sa.String(100), nullable=False),
        sa.Column("patient_age", sa.Integer, nullable=False),
        sa.Column("patient_gender", sa.String(10), nullable=False),
        sa.Column("blood_group", sa.String(3), nullable=False),
        sa.Column("units", sa.Integer, nullable=False),
        sa.Column("urgency", sa.String(10), nullable=False, server_default="medium"),
        sa.Column("hospital_name", sa.String(150), nullable=False),
        sa.Column("hospital_address", sa.String(255), nullable=False),
        sa.Column("hospital_longitude", sa.Float, nullable=False),
        sa.Column("hospital_latitude", sa.Float, nullable=False),
        sa.Column("reason", sa.String(500), nullable=False),
        sa.Column("additional_notes", sa.Text, nullable=True),
        sa.Column("status", sa.String(10), nullable=False, server_default="active"),
        sa.Column("notified_donors", sa.JSON, nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer, nullable=False),
    )
    op.create_index("ix_blood_requests_id", "blood_requests", ["id"])
    op.create_index("ix_blood_requests_requester_id", "blood_requests", ["requester_id"])
    op.create_index("ix_blood_requests_blood_group", "blood_requests", ["blood_group"])
    op.create_index("ix_blood_requests_urgency", "blood_requests", ["urgency"])
    op.create_index("ix_blood_requests_status", "blood_requests", ["status"])
    op.create_index("ix_blood_requests_expires_at", "blood_requests", ["expires_at"])
    op.create_index("ix_blood_requests_created_at", "blood_requests", ["created_at"])
    op.create_index("idx_requests_status_created", "blood_requests", ["status", "created_at"])
    op.create_index("idx_requests_group_status", "blood_requests", ["blood_group", "status"])
    op.create_index(
        "idx_requests_location",
        "blood_requests",
        ["hospital_latitude", "hospital_longitude"],
    )

    op.create_table(
        "request_donors",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "request_id",
            UUID(),
            sa.ForeignKey("blood_requests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "donor_id",
            UUID(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("status", sa.String(10), nullable=False, server_default="pending"),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("request_id", "donor_id", name="uq_request_donor"),
    )
    op.create_index("ix_request_donors_request_id", "request_donors", ["request_id"])
    op.create_index("ix_request_donors_donor_id", "request_donors", ["donor_id"])

    op.create_table(
        "donation_history",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "donor_id",
            UUID(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "request_id",
            UUID(),
            sa.ForeignKey("blood_requests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "recipient_id",
            UUID(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("donated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_donation_history_donor_id", "donation_history", ["donor_id"])
    op.create_index("ix_donation_history_request_id", "donation_history", ["request_id"])

    op.create_table(
        "request_history",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "user_id",
            UUID(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "request_id",
            UUID(),
            sa.ForeignKey("blood_requests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_request_history_user_id", "request_history", ["user_id"])
    op.create_index("ix_request_history_request_id", "request_history", ["request_id"])


def downgrade():
    op.drop_table("request_history")
    op.drop_table("donation_history")
    op.drop_table("request_donors")
    op.drop_table("blood_requests")
    op.drop_table("users")
