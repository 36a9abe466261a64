"""Create governance schema for band proposals and votes.

Revision adds, in the schema named by ``BANDGOV_DB_SCHEMA`` (default ``governance``):
- band_settings (read-only to the engine)
- band_members (read-only to the engine)
- proposals
- votes

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

from src.config.settings import get_settings

# revision identifiers, used by Alembic.
revision = "001_proposal_governance"
down_revision = None
branch_labels = None
depends_on = None


def _schema() -> str:
    return get_settings().db_schema


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("timezone('utc', now())"),
        ),
        sa.Column(
            "updated_at",
            postgresql.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("timezone('utc', now())"),
        ),
    ]


def upgrade() -> None:
    schema = _schema()
    op.execute(f"CREATE SCHEMA IF NOT EXISTS {schema}")

    op.create_table(
        "band_settings",
        sa.Column("band_id", sa.Text(), primary_key=True, nullable=False),
        sa.Column(
            "voting_method",
            sa.Text(),
            nullable=False,
            server_default=sa.text("'SIMPLE_MAJORITY'"),
        ),
        sa.Column(
            "voting_period_days", sa.Integer(), nullable=False, server_default=sa.text("7")
        ),
        sa.Column(
            "who_can_create_proposals",
            postgresql.ARRAY(sa.Text()),
            nullable=False,
            server_default=sa.text("ARRAY[]::text[]"),
        ),
        sa.Column(
            "who_can_approve",
            postgresql.ARRAY(sa.Text()),
            nullable=False,
            server_default=sa.text("ARRAY[]::text[]"),
        ),
        sa.Column(
            "quorum_percentage", sa.Integer(), nullable=False, server_default=sa.text("0")
        ),
        *_timestamps(),
        sa.CheckConstraint(
            "voting_period_days >= 1", name="ck_governance_band_settings_period_positive"
        ),
        sa.CheckConstraint(
            "quorum_percentage BETWEEN 0 AND 100",
            name="ck_governance_band_settings_quorum_range",
        ),
        schema=schema,
    )

    op.create_table(
        "band_members",
        sa.Column("band_id", sa.Text(), nullable=False),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("role", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("band_id", "user_id", name="pk_governance_band_members"),
        sa.ForeignKeyConstraint(
            ["band_id"],
            [f"{schema}.band_settings.band_id"],
            onupdate="CASCADE",
            ondelete="CASCADE",
            name="fk_governance_band_members_band",
        ),
        sa.CheckConstraint(
            "role IN ('FOUNDER','GOVERNOR','MODERATOR','CONDUCTOR','VOTING_MEMBER','OBSERVER')",
            name="ck_governance_band_members_role",
        ),
        schema=schema,
    )
    op.create_index(
        "ix_governance_band_members_user_status",
        "band_members",
        ["user_id", "status"],
        unique=False,
        schema=schema,
    )

    op.create_table(
        "proposals",
        sa.Column(
            "proposal_id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            nullable=False,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("band_id", sa.Text(), nullable=False),
        sa.Column("created_by_id", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("type", sa.Text(), nullable=False, server_default=sa.text("'GENERAL'")),
        sa.Column("priority", sa.Text(), nullable=False, server_default=sa.text("'MEDIUM'")),
        sa.Column(
            "details",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'OPEN'")),
        sa.Column("voting_ends_at", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("closed_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["band_id"],
            [f"{schema}.band_settings.band_id"],
            onupdate="CASCADE",
            ondelete="CASCADE",
            name="fk_governance_proposals_band",
        ),
        sa.CheckConstraint(
            "status IN ('OPEN','CLOSED','APPROVED','REJECTED')",
            name="ck_governance_proposals_status",
        ),
        sa.CheckConstraint(
            "type IN ('GENERAL','BUDGET','PROJECT','POLICY','MEMBERSHIP')",
            name="ck_governance_proposals_type",
        ),
        sa.CheckConstraint(
            "priority IN ('LOW','MEDIUM','HIGH','URGENT')",
            name="ck_governance_proposals_priority",
        ),
        sa.CheckConstraint(
            "(status = 'OPEN') = (closed_at IS NULL)",
            name="ck_governance_proposals_closed_at",
        ),
        schema=schema,
    )
    op.create_index(
        "ix_governance_proposals_band_status",
        "proposals",
        ["band_id", "status"],
        unique=False,
        schema=schema,
    )
    op.create_index(
        "ix_governance_proposals_status_deadline",
        "proposals",
        ["status", "voting_ends_at"],
        unique=False,
        schema=schema,
    )
    # voting_ends_at is fixed at creation.
    op.execute(
        f"""
        CREATE OR REPLACE FUNCTION {schema}.fn_proposals_freeze_deadline()
        RETURNS trigger AS $$
        BEGIN
            IF NEW.voting_ends_at IS DISTINCT FROM OLD.voting_ends_at THEN
                RAISE EXCEPTION 'voting_ends_at is immutable'
                    USING ERRCODE = 'check_violation';
            END IF;
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
        """
    )
    op.execute(
        f"""
        CREATE TRIGGER trg_proposals_freeze_deadline
        BEFORE UPDATE ON {schema}.proposals
        FOR EACH ROW EXECUTE FUNCTION {schema}.fn_proposals_freeze_deadline();
        """
    )

    # Last-vote-wins per member per proposal
    op.create_table(
        "votes",
        sa.Column("proposal_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("vote", sa.Text(), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("proposal_id", "user_id", name="pk_governance_votes"),
        sa.ForeignKeyConstraint(
            ["proposal_id"],
            [f"{schema}.proposals.proposal_id"],
            onupdate="CASCADE",
            ondelete="CASCADE",
            name="fk_governance_votes_proposal",
        ),
        sa.CheckConstraint(
            "vote IN ('YES','NO','ABSTAIN')",
            name="ck_governance_votes_vote",
        ),
        schema=schema,
    )
    op.create_index(
        "ix_governance_votes_user",
        "votes",
        ["user_id"],
        unique=False,
        schema=schema,
    )


def downgrade() -> None:
    schema = _schema()
    op.drop_index("ix_governance_votes_user", table_name="votes", schema=schema)
    op.drop_table("votes", schema=schema)
    op.execute(f"DROP TRIGGER IF EXISTS trg_proposals_freeze_deadline ON {schema}.proposals")
    op.execute(f"DROP FUNCTION IF EXISTS {schema}.fn_proposals_freeze_deadline()")
    op.drop_index(
        "ix_governance_proposals_status_deadline",
        table_name="proposals",
        schema=schema,
    )
    op.drop_index(
        "ix_governance_proposals_band_status",
        table_name="proposals",
        schema=schema,
    )
    op.drop_table("proposals", schema=schema)
    op.drop_index(
        "ix_governance_band_members_user_status",
        table_name="band_members",
        schema=schema,
    )
    op.drop_table("band_members", schema=schema)
    op.drop_table("band_settings", schema=schema)
    op.execute(f"DROP SCHEMA IF EXISTS {schema} CASCADE")
