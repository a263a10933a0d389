"""Database models."""
from strikerate.models.models import (
    GlobalStats,
    Market,
    MarketSettlement,
    MarketType,
    Match,
    MatchStatus,
    NonceRecord,
    Prediction,
    SettlementStatus,
    User,
)

__all__ = [
    "GlobalStats",
    "Market",
    "MarketSettlement",
    "MarketType",
    "Match",
    "MatchStatus",
    "NonceRecord",
    "Prediction",
    "SettlementStatus",
    "User",
]
