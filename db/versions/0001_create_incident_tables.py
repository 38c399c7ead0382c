"""create incident tables

Revision ID: 0001_incident_tables
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_incident_tables"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "deployments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("external_id", sa.String(128), nullable=False, unique=True),
        sa.Column(
            "target",
            sa.String(64),
            nullable=False,
            server_default="production",
        ),
        sa.Column(
            "last_processed_timestamp_in_ms",
            sa.BigInteger(),
            nullable=False,
            server_default="0",
        ),
        sa.Column("last_polled_at", sa.DateTime(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    )

    op.create_table(
        "analyses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "error_signature", sa.String(64), nullable=False, unique=True
        ),
        sa.Column("summary", sa.Text(), nullable=False, server_default=""),
        sa.Column(
            "likely_causes_json",
            sa.Text(),
            nullable=False,
            server_default="[]",
        ),
        sa.Column(
            "recommended_action",
            sa.Text(),
            nullable=False,
            server_default="",
        ),
        sa.Column(
            "next_steps_json", sa.Text(), nullable=False, server_default="[]"
        ),
        sa.Column("model_used", sa.String(128), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    )

    op.create_table(
        "incidents",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "error_signature", sa.String(64), nullable=False, index=True
        ),
        sa.Column("title", sa.String(100), nullable=False, server_default=""),
        sa.Column(
            "status", sa.String(32), nullable=False, server_default="OPEN"
        ),
        sa.Column(
            "severity", sa.String(16), nullable=False, server_default="P2"
        ),
        sa.Column(
            "deployment_id",
            sa.Integer(),
            sa.ForeignKey("deployments.id"),
            nullable=False,
            index=True,
        ),
        sa.Column("request_path", sa.Text(), nullable=True),
        sa.Column(
            "event_count", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("first_seen_at", sa.DateTime(), nullable=False),
        sa.Column("last_seen_at", sa.DateTime(), nullable=False),
        sa.Column(
            "analysis_id",
            sa.Integer(),
            sa.ForeignKey("analyses.id"),
            nullable=True,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    )
    op.create_index(
        "ix_incidents_signature_status_last_seen",
        "incidents",
        ["error_signature", "status", "last_seen_at"],
    )

    op.create_table(
        "incident_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "incident_id",
            sa.Integer(),
            sa.ForeignKey("incidents.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("row_id", sa.String(128), nullable=False, unique=True),
        sa.Column("timestamp_in_ms", sa.BigInteger(), nullable=False),
        sa.Column(
            "level", sa.String(16), nullable=False, server_default="info"
        ),
        sa.Column("source", sa.String(64), nullable=True),
        sa.Column("message", sa.Text(), nullable=False, server_default=""),
        sa.Column("request_method", sa.String(16), nullable=True),
        sa.Column("request_path", sa.Text(), nullable=True),
        sa.Column("response_status_code", sa.Integer(), nullable=True),
    )

    op.create_table(
        "approvals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "incident_id",
            sa.Integer(),
            sa.ForeignKey("incidents.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("token_hash", sa.String(64), nullable=False, unique=True),
        sa.Column("token_expires_at", sa.DateTime(), nullable=False),
        sa.Column("used_at", sa.DateTime(), nullable=True),
        sa.Column(
            "action", sa.String(16), nullable=False, server_default="approve"
        ),
        sa.Column(
            "created_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    )


def downgrade():
    op.drop_table("approvals")
    op.drop_table("incident_events")
    op.drop_index(
        "ix_incidents_signature_status_last_seen", table_name="incidents"
    )
    op.drop_table("incidents")
    op.drop_table("analyses")
    op.drop_table("deployments")
