"""Initial schema with all tables.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

This migration creates the complete VOX database schema:
- Extensions: uuid-ossp
- Tables: provider_data, ai_agents, ai_settings, conversation_meta_data,
  autopilot_configs, autopilot_conversation_tracking, autopilot_analytics,
  knowledge_bases
- Indexes: ownership lookups plus the partial unique indexes behind
  "one active agent per type" and "one autopilot config per conversation"
- Triggers: updated_at auto-update function and triggers
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

UPDATED_AT_TABLES = [
    "provider_data",
    "ai_agents",
    "ai_settings",
    "conversation_meta_data",
    "autopilot_configs",
    "autopilot_conversation_tracking",
    "knowledge_bases",
]


def _id() -> sa.Column:
    return sa.Column(
        "id", postgresql.UUID(as_uuid=True), server_default=sa.text("uuid_generate_v4()"), nullable=False
    )


def _timestamp(name: str) -> sa.Column:
    return sa.Column(name, postgresql.TIMESTAMP(timezone=True), server_default=sa.text("NOW()"), nullable=False)


def _jsonb(name: str, default: str = "'{}'::jsonb") -> sa.Column:
    return sa.Column(name, postgresql.JSONB(), server_default=sa.text(default), nullable=False)


def upgrade() -> None:
    # ==========================================================================
    # EXTENSIONS
    # ==========================================================================
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # ==========================================================================
    # PROVIDER_DATA TABLE (LeadConnector OAuth tokens)
    # ==========================================================================
    op.create_table(
        "provider_data",
        _id(),
        sa.Column("name", sa.String(100), server_default="leadconnector", nullable=False),
        sa.Column("type", sa.Integer(), server_default="101", nullable=False),
        sa.Column("auth_provider_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("token", sa.Text(), nullable=True),
        sa.Column("refresh", sa.Text(), nullable=True),
        sa.Column("expires", postgresql.TIMESTAMP(timezone=True), nullable=True),
        _jsonb("data"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("auth_provider_id", "type", name="unique_provider_per_user"),
    )
    op.create_index("ix_provider_data_auth_provider_id", "provider_data", ["auth_provider_id"])

    # ==========================================================================
    # AI_AGENTS TABLE
    # ==========================================================================
    op.create_table(
        "ai_agents",
        _id(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("type", sa.Integer(), server_default="1", nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("system_prompt", sa.Text(), server_default="", nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        _jsonb("configuration"),
        _jsonb("knowledge_base_ids", "'[]'::jsonb"),
        _jsonb("data"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_ai_agents_user_id", "ai_agents", ["user_id"])
    op.create_index("idx_ai_agents_user_active", "ai_agents", ["user_id", "is_active"])
    # Generic agents (type 1) may be active side by side
    op.execute("""
        CREATE UNIQUE INDEX idx_ai_agents_one_active_per_type
        ON ai_agents(user_id, type)
        WHERE is_active AND type <> 1
    """)

    # ==========================================================================
    # AI_SETTINGS TABLE
    # ==========================================================================
    op.create_table(
        "ai_settings",
        _id(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("scope", sa.String(50), server_default="global", nullable=False),
        _jsonb("data"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "scope", name="unique_user_settings_scope"),
    )
    op.create_index("ix_ai_settings_user_id", "ai_settings", ["user_id"])

    # ==========================================================================
    # CONVERSATION_META_DATA TABLE
    # ==========================================================================
    op.create_table(
        "conversation_meta_data",
        _id(),
        sa.Column("conv_id", sa.String(255), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("location_id", sa.String(255), nullable=True),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("lastmessageid", sa.String(255), nullable=True),
        sa.Column("data_type", sa.Integer(), server_default="26", nullable=False),
        _jsonb("data"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "conv_id", name="unique_user_conversation_meta"),
    )
    op.create_index("ix_conversation_meta_data_conv_id", "conversation_meta_data", ["conv_id"])

    # ==========================================================================
    # AUTOPILOT_CONFIGS TABLE
    # ==========================================================================
    op.create_table(
        "autopilot_configs",
        _id(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("conversation_id", sa.String(255), nullable=True),
        sa.Column("location_id", sa.String(255), nullable=True),
        sa.Column("is_enabled", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("reply_delay_minutes", sa.Integer(), server_default="5", nullable=False),
        sa.Column("max_replies_per_conversation", sa.Integer(), server_default="3", nullable=False),
        sa.Column("max_replies_per_day", sa.Integer(), server_default="10", nullable=False),
        _jsonb("operating_hours"),
        sa.Column("ai_agent_id", sa.String(255), nullable=True),
        sa.Column("ai_model", sa.String(100), nullable=False),
        sa.Column("ai_temperature", sa.Float(), nullable=False),
        sa.Column("ai_max_tokens", sa.Integer(), server_default="500", nullable=False),
        sa.Column("fallback_message", sa.Text(), nullable=True),
        sa.Column("custom_prompt", sa.Text(), nullable=True),
        sa.Column("cancel_on_user_reply", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        _jsonb("require_human_keywords", "'[]'::jsonb"),
        _jsonb("exclude_keywords", "'[]'::jsonb"),
        sa.Column("message_type", sa.String(50), server_default="SMS", nullable=False),
        sa.Column("prefer_conversation_type", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        _jsonb("metadata"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_autopilot_configs_user_id", "autopilot_configs", ["user_id"])
    # One row per conversation, plus at most one global row (conversation_id NULL)
    op.execute("""
        CREATE UNIQUE INDEX idx_autopilot_configs_user_conversation
        ON autopilot_configs(user_id, conversation_id)
        WHERE conversation_id IS NOT NULL
    """)
    op.execute("""
        CREATE UNIQUE INDEX idx_autopilot_configs_user_global
        ON autopilot_configs(user_id)
        WHERE conversation_id IS NULL
    """)

    # ==========================================================================
    # AUTOPILOT_CONVERSATION_TRACKING TABLE
    # ==========================================================================
    op.create_table(
        "autopilot_conversation_tracking",
        _id(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("conversation_id", sa.String(255), nullable=False),
        sa.Column("location_id", sa.String(255), nullable=False),
        sa.Column("contact_name", sa.String(255), nullable=True),
        sa.Column("contact_phone", sa.String(50), nullable=True),
        sa.Column("contact_email", sa.String(255), nullable=True),
        sa.Column("conversation_status", sa.String(50), server_default="open", nullable=False),
        sa.Column("conversation_type", sa.String(50), server_default="SMS", nullable=False),
        sa.Column("autopilot_enabled", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("last_seen_message_id", sa.String(255), nullable=True),
        sa.Column("last_human_message_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("last_ai_message_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("ai_replies_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("ai_replies_today", sa.Integer(), server_default="0", nullable=False),
        sa.Column("last_reply_date", sa.Date(), nullable=True),
        _jsonb("data"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "conversation_id", name="unique_user_conversation_tracking"),
    )
    op.create_index(
        "ix_autopilot_conversation_tracking_user_id", "autopilot_conversation_tracking", ["user_id"]
    )

    # ==========================================================================
    # AUTOPILOT_ANALYTICS TABLE
    # ==========================================================================
    op.create_table(
        "autopilot_analytics",
        _id(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("location_id", sa.String(255), nullable=True),
        sa.Column("total_conversations_monitored", sa.Integer(), server_default="0", nullable=False),
        sa.Column("total_messages_received", sa.Integer(), server_default="0", nullable=False),
        sa.Column("total_ai_responses_sent", sa.Integer(), server_default="0", nullable=False),
        sa.Column("total_responses_cancelled", sa.Integer(), server_default="0", nullable=False),
        sa.Column("total_responses_failed", sa.Integer(), server_default="0", nullable=False),
        sa.Column("average_response_delay_minutes", sa.Float(), server_default="0", nullable=False),
        sa.Column("success_rate", sa.Float(), server_default="0", nullable=False),
        sa.Column("conversations_resolved", sa.Integer(), server_default="0", nullable=False),
        sa.Column("conversations_escalated", sa.Integer(), server_default="0", nullable=False),
        _jsonb("metrics"),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "date", "location_id", name="unique_user_day_location_analytics"),
    )
    op.create_index("ix_autopilot_analytics_user_id", "autopilot_analytics", ["user_id"])

    # ==========================================================================
    # KNOWLEDGE_BASES TABLE
    # ==========================================================================
    op.create_table(
        "knowledge_bases",
        _id(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("type", sa.Integer(), server_default="2", nullable=False),
        sa.Column("provider_type_sub_id", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        _jsonb("data"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_knowledge_bases_user_type", "knowledge_bases", ["user_id", "type"])
    op.create_index("idx_knowledge_bases_conversation", "knowledge_bases", ["user_id", "provider_type_sub_id"])

    # ==========================================================================
    # UPDATED_AT TRIGGER FUNCTION
    # ==========================================================================
    op.execute("""
        CREATE OR REPLACE FUNCTION update_updated_at_column()
        RETURNS TRIGGER AS $$
        BEGIN
            NEW.updated_at = NOW();
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
    """)

    for table in UPDATED_AT_TABLES:
        op.execute(f"""
            CREATE TRIGGER update_{table}_updated_at
                BEFORE UPDATE ON {table}
                FOR EACH ROW EXECUTE FUNCTION update_updated_at_column();
        """)


def downgrade() -> None:
    # Drop triggers
    for table in UPDATED_AT_TABLES:
        op.execute(f"DROP TRIGGER IF EXISTS update_{table}_updated_at ON {table}")

    op.execute("DROP FUNCTION IF EXISTS update_updated_at_column()")

    op.drop_table("knowledge_bases")
    op.drop_table("autopilot_analytics")
    op.drop_table("autopilot_conversation_tracking")
    op.drop_table("autopilot_configs")
    op.drop_table("conversation_meta_data")
    op.drop_table("ai_settings")
    op.drop_table("ai_agents")
    op.drop_table("provider_data")
