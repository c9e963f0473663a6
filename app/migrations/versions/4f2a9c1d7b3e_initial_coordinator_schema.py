"""Initial coordinator schema: users, tokens, activity log, RD leases, link cache, credential validity

Revision ID: 4f2a9c1d7b3e
Revises:

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text, Float, BigInteger

# revision identifiers, used by Alembic.
revision = "4f2a9c1d7b3e"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "user",
        Column("id", Integer, primary_key=True),
        Column("username", String(100), nullable=False, unique=True),
        Column("password", String(255), nullable=False),
        Column("admin_access", Boolean, nullable=False, server_default=sa.false()),
        Column("parent_user_id", Integer, sa.ForeignKey("user.id", ondelete="CASCADE"), nullable=True),
        Column("rd_api_key", String(255)),
        Column("enabled", Boolean, nullable=False, server_default=sa.true()),
        Column("disabled_reason", String(20)),
        Column("created_at", DateTime),
        Column("last_login_at", DateTime),
    )
    op.create_index("ix_user_parent_user_id", "user", ["parent_user_id"])

    op.create_table(
        "api_token",
        Column("id", Integer, primary_key=True),
        Column("user_id", Integer, sa.ForeignKey("user.id", ondelete="CASCADE"), nullable=False),
        Column("token", String(64), nullable=False, unique=True),
        Column("name", String(100), nullable=False),
        Column("created_at", DateTime),
        Column("last_used", DateTime),
    )
    op.create_index("ix_api_token_token", "api_token", ["token"])

    op.create_table(
        "activity_log",
        Column("id", Integer, primary_key=True),
        Column("timestamp", DateTime),
        Column("user_id", Integer, sa.ForeignKey("user.id", ondelete="SET NULL"), nullable=True),
        Column("action_type", String(50)),
        Column("details", Text),
    )
    op.create_index("ix_activity_log_timestamp", "activity_log", ["timestamp"])
    op.create_index("ix_activity_log_action_type", "activity_log", ["action_type"])
    op.create_index("idx_activity_timestamp_action", "activity_log", ["timestamp", "action_type"])

    # One row per streaming credential; the fingerprint alone is unique
    op.create_table(
        "rd_leases",
        Column("id", Integer, primary_key=True),
        Column("fingerprint", String(64), nullable=False),
        Column("ip_address", String(64), nullable=False),
        Column("user_id", Integer, nullable=False),
        Column("username", String(100)),
        Column("stream_started_at", DateTime, nullable=False),
        Column("last_heartbeat_at", DateTime, nullable=False),
        sa.UniqueConstraint("fingerprint", name="uq_rd_leases_fingerprint"),
    )
    op.create_index("idx_rd_leases_heartbeat", "rd_leases", ["last_heartbeat_at"])

    op.create_table(
        "rd_link_cache",
        Column("id", Integer, primary_key=True),
        Column("tmdb_id", Integer, nullable=False),
        Column("media_type", String(10), nullable=False),
        Column("season", Integer, nullable=False, server_default="0"),
        Column("episode", Integer, nullable=False, server_default="0"),
        Column("resolution", Integer, nullable=False, server_default="0"),
        Column("fingerprint", String(64), nullable=False),
        Column("stream_url", Text, nullable=False),
        Column("file_name", String(500)),
        Column("title", String(255)),
        Column("year", String(10)),
        Column("estimated_bitrate_mbps", Float),
        Column("file_size_bytes", BigInteger),
        Column("created_at", DateTime, nullable=False),
        Column("expires_at", DateTime, nullable=False),
        Column("last_accessed_at", DateTime, nullable=False),
        sa.UniqueConstraint(
            "tmdb_id", "media_type", "season", "episode", "resolution", "fingerprint",
            name="uq_rd_link_cache_lookup",
        ),
    )
    op.create_index("idx_rd_link_cache_expiry", "rd_link_cache", ["expires_at"])

    op.create_table(
        "credential_validity",
        Column("fingerprint", String(64), primary_key=True),
        Column("expires_at", DateTime),
        Column("checked_at", DateTime, nullable=False),
        Column("account_type", String(30)),
    )


def downgrade():
    # Drop tables in reverse order
    op.drop_table("credential_validity")
    op.drop_index("idx_rd_link_cache_expiry", table_name="rd_link_cache")
    op.drop_table("rd_link_cache")
    op.drop_index("idx_rd_leases_heartbeat", table_name="rd_leases")
    op.drop_table("rd_leases")
    op.drop_table("activity_log")
    op.drop_table("api_token")
    op.drop_table("user")
