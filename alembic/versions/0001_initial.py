"""Initial schema: data_sources, sync_logs, synced_records

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

SOURCE_TYPES = ("POSTGRESQL", "MYSQL", "MONGODB", "REST_API", "GRAPHQL", "S3", "GOOGLE_SHEETS", "CSV_FILE")
SOURCE_STATUSES = ("CONFIGURING", "TESTING", "CONNECTED", "ERROR", "DISCONNECTED")


def upgrade():
    op.create_table(
        "data_sources",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("type", sa.Enum(*SOURCE_TYPES, name="data_source_type"), nullable=False),
        sa.Column("status", sa.Enum(*SOURCE_STATUSES, name="data_source_status"), nullable=False),
        sa.Column("host", sa.String(255), nullable=True),
        sa.Column("port", sa.Integer(), nullable=True),
        sa.Column("database", sa.String(255), nullable=True),
        sa.Column("username", sa.String(255), nullable=True),
        sa.Column("ssl", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("endpoint", sa.String(2048), nullable=True),
        sa.Column("bucket", sa.String(255), nullable=True),
        sa.Column("region", sa.String(64), nullable=True),
        sa.Column("sheet_id", sa.String(255), nullable=True),
        sa.Column("uploaded_file_ref", sa.String(1024), nullable=True),
        sa.Column("configuration", JSONType, nullable=True),
        sa.Column("encrypted_credentials", sa.Text(), nullable=True),
        sa.Column("connection_error", sa.Text(), nullable=True),
        sa.Column("last_connection_test", sa.DateTime(), nullable=True),
        sa.Column("last_successful_sync", sa.DateTime(), nullable=True),
        sa.Column("total_records", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("total_syncs", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed_syncs", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("successful_tests", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("avg_response_time", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_data_sources_name", "data_sources", ["name"])
    op.create_index("ix_data_sources_type", "data_sources", ["type"])
    op.create_index("ix_data_sources_status", "data_sources", ["status"])
    op.create_index("idx_data_source_type_status", "data_sources", ["type", "status"])

    op.create_table(
        "sync_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "data_source_id",
            sa.String(36),
            sa.ForeignKey("data_sources.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("records_sync", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("duration", sa.Float(), nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("batches_total", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("batches_failed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_details", JSONType, nullable=True),
        sa.Column("cursor", JSONType, nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_sync_logs_data_source_id", "sync_logs", ["data_source_id"])
    op.create_index("ix_sync_logs_created_at", "sync_logs", ["created_at"])
    op.create_index("idx_sync_log_source_created", "sync_logs", ["data_source_id", "created_at"])

    op.create_table(
        "synced_records",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "data_source_id",
            sa.String(36),
            sa.ForeignKey("data_sources.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sync_log_id", sa.String(36), nullable=True),
        sa.Column("external_id", sa.String(512), nullable=False),
        sa.Column("payload", JSONType, nullable=False),
        sa.Column("content_hash", sa.String(64), nullable=False),
        sa.Column("ingested_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_synced_records_data_source_id", "synced_records", ["data_source_id"])
    op.create_index("ix_synced_records_sync_log_id", "synced_records", ["sync_log_id"])
    op.create_index("ix_synced_records_ingested_at", "synced_records", ["ingested_at"])
    op.create_index(
        "idx_synced_record_source_external",
        "synced_records",
        ["data_source_id", "external_id"],
        unique=True,
    )


def downgrade():
    op.drop_table("synced_records")
    op.drop_table("sync_logs")
    op.drop_table("data_sources")
    sa.Enum(name="data_source_status").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="data_source_type").drop(op.get_bind(), checkfirst=True)
