"""Challenge system — users, portfolios, challenges, notifications.

Creates the users and portfolios tables the challenge engine reads, the
challenges table itself, and the notifications outbox.

Revision ID: 001_challenge_tables
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_challenge_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Users ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id VARCHAR(36) PRIMARY KEY,
            username VARCHAR(64) NOT NULL UNIQUE,
            avatar_url TEXT,
            xp INTEGER NOT NULL DEFAULT 0 CHECK (xp >= 0),
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ
        )
    """)

    # --- Portfolios ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS portfolios (
            id VARCHAR(36) PRIMARY KEY,
            user_id VARCHAR(36) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            name VARCHAR(128) NOT NULL,
            created_at TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_portfolios_user ON portfolios(user_id)")

    # --- Challenges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS challenges (
            id VARCHAR(36) PRIMARY KEY,
            type VARCHAR(16) NOT NULL CHECK (type IN ('vs_index', 'vs_user')),
            status VARCHAR(16) NOT NULL
                CHECK (status IN ('pending', 'active', 'completed', 'declined', 'cancelled')),
            challenger_id VARCHAR(36) NOT NULL REFERENCES users(id),
            challenger_portfolio_id VARCHAR(36) NOT NULL,
            opponent_id VARCHAR(36) REFERENCES users(id),
            opponent_portfolio_id VARCHAR(36),
            timeframe VARCHAR(4) NOT NULL,
            start_date TIMESTAMPTZ,
            end_date TIMESTAMPTZ,
            challenger_start_value DOUBLE PRECISION,
            opponent_start_value DOUBLE PRECISION,
            challenger_end_value DOUBLE PRECISION,
            opponent_end_value DOUBLE PRECISION,
            challenger_return_percent DOUBLE PRECISION,
            opponent_return_percent DOUBLE PRECISION,
            winner_id VARCHAR(36),
            xp_awarded INTEGER,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            settled_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_challenges_status_end_date
        ON challenges(status, end_date)
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_challenges_challenger ON challenges(challenger_id)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_challenges_opponent ON challenges(opponent_id)")

    # --- Notifications ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS notifications (
            id BIGSERIAL PRIMARY KEY,
            user_id VARCHAR(36) NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            type VARCHAR(32) NOT NULL,
            message TEXT NOT NULL,
            read BOOLEAN NOT NULL DEFAULT FALSE,
            data JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_notifications_user_unread
        ON notifications(user_id, read, created_at DESC)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS notifications CASCADE")
    op.execute("DROP TABLE IF EXISTS challenges CASCADE")
    op.execute("DROP TABLE IF EXISTS portfolios CASCADE")
    op.execute("DROP TABLE IF EXISTS users CASCADE")
