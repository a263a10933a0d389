"""User registration, lookups and the leaderboard."""
from __future__ import annotations

from typing import Any, Dict, List

from sqlalchemy import desc
from sqlalchemy.orm import Session

from strikerate.core.errors import NotFoundError, RequestValidationError
from strikerate.core.signatures import is_valid_address
from strikerate.models.models import User
from strikerate.services.stats import apply_stats_delta


def ensure_user(db: Session, wallet_address: str) -> tuple[User, bool]:
    """Return the user row, creating it with zero totals if needed. Does not commit."""
    user = db.get(User, wallet_address)
    if user is not None:
        return user, False
    user = User(
        wallet_address=wallet_address,
        total_predictions=0,
        total_wins=0,
        total_amount_won=0,
        total_points=0,
    )
    db.add(user)
    db.flush()
    apply_stats_delta(db, {"users": {"total": 1}})
    return user, True


def register_user(db: Session, wallet_address: str) -> User:
    wallet_address = str(wallet_address or "").strip()
    if not is_valid_address(wallet_address):
        raise RequestValidationError("Invalid wallet address")
    user, created = ensure_user(db, wallet_address)
    if created:
        db.commit()
        db.refresh(user)
    return user


def get_user(db: Session, wallet_address: str) -> User:
    user = db.get(User, str(wallet_address or "").strip())
    if user is None:
        raise NotFoundError("User not found")
    return user


def user_payload(user: User) -> Dict[str, Any]:
    return {
        "walletAddress": user.wallet_address,
        "totalPredictions": int(user.total_predictions or 0),
        "totalWins": int(user.total_wins or 0),
        "totalAmountWon": float(user.total_amount_won or 0),
        "totalPoints": round(float(user.total_points or 0), 3),
        "createdAt": user.created_at.isoformat() if user.created_at else None,
    }


def get_leaderboard(db: Session, limit: int = 20) -> List[Dict[str, Any]]:
    """Rank users by points earned, then by amount won."""
    users = (
        db.query(User)
        .filter(User.total_predictions > 0)
        .order_by(desc(User.total_points), desc(User.total_amount_won), User.wallet_address)
        .limit(limit)
        .all()
    )
    return [{"rank": i + 1, **user_payload(user)} for i, user in enumerate(users)]
