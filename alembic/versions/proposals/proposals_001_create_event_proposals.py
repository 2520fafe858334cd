"""create_event_proposals

Revision ID: proposals_001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""

from __future__ import annotations

from alembic import op

# revision identifiers, used by Alembic.
revision = "proposals_001"
down_revision = None
branch_labels = ("proposals",)
depends_on = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE IF NOT EXISTS event_proposals (
            id UUID PRIMARY KEY,
            title TEXT NOT NULL,
            start_at TIMESTAMPTZ NOT NULL,
            end_at TIMESTAMPTZ NOT NULL,
            attendees JSONB NOT NULL DEFAULT '[]',
            description TEXT,
            location TEXT,
            origin_conversation_id TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            message_chat_id TEXT,
            message_id TEXT,
            external_event_id TEXT,
            external_event_link TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            resolved_at TIMESTAMPTZ,
            CONSTRAINT event_proposals_status_check
                CHECK (status IN ('pending', 'approved', 'rejected', 'expired')),
            CONSTRAINT event_proposals_time_order_check CHECK (start_at < end_at)
        )
    """)

    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_event_proposals_pending_created
        ON event_proposals (created_at)
        WHERE status = 'pending'
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS proposal_events (
            event_id BIGSERIAL PRIMARY KEY,
            event_type TEXT NOT NULL,
            proposal_id UUID NOT NULL REFERENCES event_proposals(id),
            actor TEXT NOT NULL,
            reason TEXT,
            event_metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
            occurred_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)

    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_proposal_events_proposal_time
        ON proposal_events (proposal_id, occurred_at DESC)
    """)

    # Audit rows are append-only
    op.execute("""
        CREATE OR REPLACE FUNCTION prevent_proposal_events_mutation()
        RETURNS trigger
        LANGUAGE plpgsql
        AS $$
        BEGIN
            RAISE EXCEPTION 'proposal_events is append-only: % is not allowed', TG_OP;
        END;
        $$
    """)

    op.execute("""
        DROP TRIGGER IF EXISTS trg_proposal_events_immutable ON proposal_events
    """)

    op.execute("""
        CREATE TRIGGER trg_proposal_events_immutable
        BEFORE UPDATE OR DELETE ON proposal_events
        FOR EACH ROW
        EXECUTE FUNCTION prevent_proposal_events_mutation()
    """)


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_proposal_events_immutable ON proposal_events")
    op.execute("DROP FUNCTION IF EXISTS prevent_proposal_events_mutation()")
    op.execute("DROP TABLE IF EXISTS proposal_events")
    op.execute("DROP TABLE IF EXISTS event_proposals")
