"""create_strikerate_tables

Revision ID: 5e1a7c3b9d20
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "5e1a7c3b9d20"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

MONEY = sa.Numeric(20, 6)


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "matches",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("team1", sa.String(length=100), nullable=False),
        sa.Column("team2", sa.String(length=100), nullable=False),
        sa.Column("match_type", sa.String(length=10), nullable=True),
        sa.Column("stadium", sa.String(length=255), nullable=True),
        sa.Column("match_time", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="UPCOMING"),
        sa.Column("total_pool", MONEY, nullable=False, server_default="0"),
        sa.Column("total_predictions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("final_team1_score", sa.Integer(), nullable=True),
        sa.Column("final_team1_wickets", sa.Integer(), nullable=True),
        sa.Column("final_team2_score", sa.Integer(), nullable=True),
        sa.Column("final_team2_wickets", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("status IN ('UPCOMING', 'LOCKED', 'COMPLETED')", name="valid_match_status"),
        sa.CheckConstraint(
            "(status = 'COMPLETED') = (final_team1_score IS NOT NULL)",
            name="final_score_iff_completed",
        ),
        sa.CheckConstraint("total_pool >= 0", name="non_negative_match_pool"),
    )
    op.create_index("idx_matches_status", "matches", ["status"])

    op.create_table(
        "markets",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("match_id", sa.String(length=32), sa.ForeignKey("matches.id"), nullable=False),
        sa.Column("market_type", sa.String(length=30), nullable=False, server_default="SCORE"),
        sa.Column("total_pool", MONEY, nullable=False, server_default="0"),
        sa.Column("total_predictions", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint("market_type IN ('SCORE')", name="valid_market_type"),
    )
    op.create_index("ix_markets_match_id", "markets", ["match_id"])

    op.create_table(
        "predictions",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("match_id", sa.String(length=32), sa.ForeignKey("matches.id"), nullable=False),
        sa.Column("market_id", sa.String(length=32), sa.ForeignKey("markets.id"), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("team1_score", sa.Integer(), nullable=False),
        sa.Column("team1_wickets", sa.Integer(), nullable=False),
        sa.Column("team2_score", sa.Integer(), nullable=False),
        sa.Column("team2_wickets", sa.Integer(), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("payment_reference", sa.String(length=128), nullable=True, unique=True),
        sa.Column("is_winner", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("amount_won", MONEY, nullable=True),
        sa.Column("points_earned", sa.Float(), nullable=True),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("has_claimed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("claim_lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payout_reference", sa.String(length=128), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("market_id", "user_id", name="one_prediction_per_user_market"),
        sa.CheckConstraint("amount > 0", name="positive_stake_amount"),
        sa.CheckConstraint(
            "team1_wickets BETWEEN 0 AND 10 AND team2_wickets BETWEEN 0 AND 10",
            name="valid_predicted_wickets",
        ),
        sa.CheckConstraint("NOT has_claimed OR is_winner", name="only_winners_claim"),
    )
    op.create_index("ix_predictions_match_id", "predictions", ["match_id"])
    op.create_index("ix_predictions_market_id", "predictions", ["market_id"])
    op.create_index("ix_predictions_user_id", "predictions", ["user_id"])

    op.create_table(
        "users",
        sa.Column("wallet_address", sa.String(length=64), primary_key=True),
        sa.Column("total_predictions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_wins", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_amount_won", MONEY, nullable=False, server_default="0"),
        sa.Column("total_points", sa.Float(), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index("idx_users_leaderboard", "users", ["total_points", "total_amount_won"])

    op.create_table(
        "nonces",
        sa.Column("actor_address", sa.String(length=64), primary_key=True),
        sa.Column("nonce", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_activity", sa.String(length=40), nullable=True),
        sa.Column("last_updated", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("nonce >= 0", name="non_negative_nonce"),
    )

    op.create_table(
        "market_settlements",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("match_id", sa.String(length=32), sa.ForeignKey("matches.id"), nullable=False),
        sa.Column("market_id", sa.String(length=32), sa.ForeignKey("markets.id"), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("prediction_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("winner_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("highest_score", sa.Float(), nullable=True),
        sa.Column("prize_pool", MONEY, nullable=False, server_default="0"),
        sa.Column("prize_per_winner", MONEY, nullable=False, server_default="0"),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.UniqueConstraint("match_id", "market_id", name="one_settlement_per_market"),
        sa.CheckConstraint("status IN ('SETTLED', 'FAILED')", name="valid_settlement_status"),
    )
    op.create_index("ix_market_settlements_status", "market_settlements", ["match_id", "status"])

    stats = op.create_table(
        "stats",
        sa.Column("id", sa.String(length=20), primary_key=True),
        sa.Column("matches_total", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("matches_upcoming", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("matches_live", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("matches_completed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("matches_abandoned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("predictions_total", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("predictions_total_amount", MONEY, nullable=False, server_default="0"),
        sa.Column("users_total", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("winnings_total", MONEY, nullable=False, server_default="0"),
        sa.Column("winnings_total_claims", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("winnings_pending_claims", MONEY, nullable=False, server_default="0"),
        sa.Column("last_updated", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.bulk_insert(stats, [{"id": "global"}])


def downgrade() -> None:
    op.drop_index("ix_market_settlements_status", table_name="market_settlements")
    op.drop_index("idx_users_leaderboard", table_name="users")
    op.drop_index("ix_predictions_user_id", table_name="predictions")
    op.drop_index("ix_predictions_market_id", table_name="predictions")
    op.drop_index("ix_predictions_match_id", table_name="predictions")
    op.drop_index("ix_markets_match_id", table_name="markets")
    op.drop_index("idx_matches_status", table_name="matches")

    op.drop_table("stats")
    op.drop_table("market_settlements")
    op.drop_table("nonces")
    op.drop_table("users")
    op.drop_table("predictions")
    op.drop_table("markets")
    op.drop_table("matches")
