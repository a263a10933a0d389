"""
Strikerate ledger models.

Matches own one or more markets; every prediction belongs to exactly one market
and is scored against the match's final result when the match completes.
Users, nonces and the global statistics row are maintained incrementally.
"""
import uuid
from enum import Enum

from sqlalchemy import (
    Column, Integer, String, Text, Boolean, Float, Numeric,
    ForeignKey, DateTime, CheckConstraint, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from strikerate.core.database import Base

# USDC carries 6 minor-unit decimals.
MONEY = Numeric(20, 6)

STATS_DOC_ID = "global"


def _new_id() -> str:
    return uuid.uuid4().hex


class MatchStatus(str, Enum):
    UPCOMING = "UPCOMING"
    LOCKED = "LOCKED"
    COMPLETED = "COMPLETED"


class MarketType(str, Enum):
    SCORE = "SCORE"


class SettlementStatus(str, Enum):
    SETTLED = "SETTLED"
    FAILED = "FAILED"


class Match(Base):
    """A cricket match users predict the final score of."""
    __tablename__ = "matches"

    id = Column(String(32), primary_key=True, default=_new_id)
    team1 = Column(String(100), nullable=False)
    team2 = Column(String(100), nullable=False)
    match_type = Column(String(10), nullable=True)  # T20, ODI
    stadium = Column(String(255), nullable=True)
    match_time = Column(String(64), nullable=True)

    status = Column(String(20), nullable=False, default=MatchStatus.UPCOMING.value)

    # Sum of every stake across the match's markets
    total_pool = Column(MONEY, nullable=False, default=0)
    total_predictions = Column(Integer, nullable=False, default=0)

    # Final result, set only on completion
    final_team1_score = Column(Integer, nullable=True)
    final_team1_wickets = Column(Integer, nullable=True)
    final_team2_score = Column(Integer, nullable=True)
    final_team2_wickets = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)

    markets = relationship("Market", back_populates="match", order_by="Market.created_at")
    predictions = relationship("Prediction", back_populates="match")

    __table_args__ = (
        CheckConstraint(
            "status IN ('UPCOMING', 'LOCKED', 'COMPLETED')",
            name="valid_match_status"
        ),
        CheckConstraint(
            "(status = 'COMPLETED') = (final_team1_score IS NOT NULL)",
            name="final_score_iff_completed"
        ),
        CheckConstraint("total_pool >= 0", name="non_negative_match_pool"),
    )


class Market(Base):
    """An independently scored prediction pool within a match."""
    __tablename__ = "markets"

    id = Column(String(32), primary_key=True, default=_new_id)
    match_id = Column(String(32), ForeignKey("matches.id"), nullable=False, index=True)
    market_type = Column(String(30), nullable=False, default=MarketType.SCORE.value)

    total_pool = Column(MONEY, nullable=False, default=0)
    total_predictions = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    match = relationship("Match", back_populates="markets")

    __table_args__ = (
        CheckConstraint("market_type IN ('SCORE')", name="valid_market_type"),
    )


class Prediction(Base):
    """A user's staked prediction of a match's final score."""
    __tablename__ = "predictions"

    id = Column(String(32), primary_key=True, default=_new_id)
    match_id = Column(String(32), ForeignKey("matches.id"), nullable=False, index=True)
    market_id = Column(String(32), ForeignKey("markets.id"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)  # wallet address

    team1_score = Column(Integer, nullable=False)
    team1_wickets = Column(Integer, nullable=False)
    team2_score = Column(Integer, nullable=False)
    team2_wickets = Column(Integer, nullable=False)

    amount = Column(MONEY, nullable=False)
    payment_reference = Column(String(128), nullable=True, unique=True)

    # Outcome fields, stamped once by settlement
    is_winner = Column(Boolean, nullable=False, default=False)
    amount_won = Column(MONEY, nullable=True)
    points_earned = Column(Float, nullable=True)
    settled_at = Column(DateTime(timezone=True), nullable=True)

    # Claim state
    has_claimed = Column(Boolean, nullable=False, default=False)
    claim_lease_expires_at = Column(DateTime(timezone=True), nullable=True)
    payout_reference = Column(String(128), nullable=True)
    claimed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    match = relationship("Match", back_populates="predictions")

    __table_args__ = (
        UniqueConstraint("market_id", "user_id", name="one_prediction_per_user_market"),
        CheckConstraint("amount > 0", name="positive_stake_amount"),
        CheckConstraint(
            "team1_wickets BETWEEN 0 AND 10 AND team2_wickets BETWEEN 0 AND 10",
            name="valid_predicted_wickets"
        ),
        CheckConstraint("NOT has_claimed OR is_winner", name="only_winners_claim"),
    )


class User(Base):
    """Running per-wallet totals, updated with additive deltas."""
    __tablename__ = "users"

    wallet_address = Column(String(64), primary_key=True)

    total_predictions = Column(Integer, nullable=False, default=0)
    total_wins = Column(Integer, nullable=False, default=0)
    total_amount_won = Column(MONEY, nullable=False, default=0)
    total_points = Column(Float, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class NonceRecord(Base):
    """Per-actor replay counter for signed actions."""
    __tablename__ = "nonces"

    actor_address = Column(String(64), primary_key=True)
    nonce = Column(Integer, nullable=False, default=0)
    last_activity = Column(String(40), nullable=True)
    last_updated = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("nonce >= 0", name="non_negative_nonce"),
    )


class MarketSettlement(Base):
    """Outcome of settling one market, keyed by (match, market)."""
    __tablename__ = "market_settlements"

    id = Column(Integer, primary_key=True)
    match_id = Column(String(32), ForeignKey("matches.id"), nullable=False)
    market_id = Column(String(32), ForeignKey("markets.id"), nullable=False)
    status = Column(String(20), nullable=False)

    prediction_count = Column(Integer, nullable=False, default=0)
    winner_count = Column(Integer, nullable=False, default=0)
    highest_score = Column(Float, nullable=True)
    prize_pool = Column(MONEY, nullable=False, default=0)
    prize_per_winner = Column(MONEY, nullable=False, default=0)

    error = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("match_id", "market_id", name="one_settlement_per_market"),
        CheckConstraint("status IN ('SETTLED', 'FAILED')", name="valid_settlement_status"),
        Index("ix_market_settlements_status", "match_id", "status"),
    )


class GlobalStats(Base):
    """Singleton aggregate counters mirroring the ledgers."""
    __tablename__ = "stats"

    id = Column(String(20), primary_key=True, default=STATS_DOC_ID)

    matches_total = Column(Integer, nullable=False, default=0)
    matches_upcoming = Column(Integer, nullable=False, default=0)
    matches_live = Column(Integer, nullable=False, default=0)
    matches_completed = Column(Integer, nullable=False, default=0)
    matches_abandoned = Column(Integer, nullable=False, default=0)

    predictions_total = Column(Integer, nullable=False, default=0)
    predictions_total_amount = Column(MONEY, nullable=False, default=0)

    users_total = Column(Integer, nullable=False, default=0)

    # Claimed amount, claim count, and amount still owed to winners
    winnings_total = Column(MONEY, nullable=False, default=0)
    winnings_total_claims = Column(Integer, nullable=False, default=0)
    winnings_pending_claims = Column(MONEY, nullable=False, default=0)

    last_updated = Column(DateTime(timezone=True), server_default=func.now())
