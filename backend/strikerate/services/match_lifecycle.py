"""
Match lifecycle: UPCOMING -> LOCKED -> COMPLETED.

Transitions are applied with a conditional UPDATE on the current status, so
the check and the flip happen in one statement and two concurrent attempts
cannot both succeed.
"""
from __future__ import annotations

import logging
from typing import Any, Mapping

from sqlalchemy import update
from sqlalchemy.orm import Session

from strikerate.core.errors import NotFoundError, RequestValidationError, StateConflictError
from strikerate.core.time import now_utc
from strikerate.models.models import Market, MarketType, Match, MatchStatus
from strikerate.services.signed_actions import ActionType, verify_signed_action
from strikerate.services.stats import apply_stats_delta

logger = logging.getLogger(__name__)

NEXT_STATUS = {
    MatchStatus.UPCOMING: MatchStatus.LOCKED,
    MatchStatus.LOCKED: MatchStatus.COMPLETED,
}
MATCH_TYPES = {"T20", "ODI"}


def get_match(db: Session, match_id: str, *, for_update: bool = False) -> Match:
    query = db.query(Match).filter(Match.id == str(match_id or ""))
    if for_update:
        query = query.with_for_update()
    match = query.first()
    if match is None:
        raise NotFoundError("Match not found")
    return match


def get_market(db: Session, match: Match, market_id: str | None = None) -> Market:
    """Resolve a market of ``match``; defaults to its first SCORE market."""
    query = db.query(Market).filter(Market.match_id == match.id)
    if market_id:
        market = query.filter(Market.id == str(market_id)).first()
    else:
        market = (
            query.filter(Market.market_type == MarketType.SCORE.value)
            .order_by(Market.created_at.asc(), Market.id.asc())
            .first()
        )
    if market is None:
        raise NotFoundError("Market not found")
    return market


def require_status(match: Match, expected: MatchStatus, detail: str | None = None) -> None:
    if match.status != expected.value:
        raise StateConflictError(detail or f"Match is not in {expected.value} status")


def transition_match(
    db: Session,
    match_id: str,
    *,
    from_status: MatchStatus,
    values: Mapping[str, Any] | None = None,
) -> MatchStatus:
    """Advance a match one step, failing if it is not currently ``from_status``."""
    to_status = NEXT_STATUS.get(from_status)
    if to_status is None:
        raise ValueError(f"{from_status.value} is terminal")

    result = db.execute(
        update(Match)
        .where(Match.id == match_id, Match.status == from_status.value)
        .values(status=to_status.value, updated_at=now_utc(), **dict(values or {}))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise StateConflictError(f"Match is not in {from_status.value} status")
    logger.info("Match %s: %s -> %s", match_id, from_status.value, to_status.value)
    return to_status


def create_match(
    db: Session,
    *,
    actor: str,
    team1: str,
    team2: str,
    nonce: Any,
    signature: str,
    message: str | None = None,
    match_type: str | None = None,
    stadium: str | None = None,
    match_time: str | None = None,
) -> Match:
    """Create an UPCOMING match together with its default SCORE market."""
    team1 = str(team1 or "").strip()
    team2 = str(team2 or "").strip()
    if not team1 or not team2:
        raise RequestValidationError("Both team names are required")
    if match_type is not None and match_type not in MATCH_TYPES:
        raise RequestValidationError(f"Match type must be one of {', '.join(sorted(MATCH_TYPES))}")

    verify_signed_action(
        db,
        actor=actor,
        action=ActionType.CREATE_MATCH,
        params={
            "team1": team1,
            "team2": team2,
            "matchType": match_type,
            "stadium": stadium,
            "matchTime": match_time,
        },
        nonce=nonce,
        signature=signature,
        message=message,
    )

    match = Match(
        team1=team1,
        team2=team2,
        match_type=match_type,
        stadium=stadium,
        match_time=match_time,
        status=MatchStatus.UPCOMING.value,
        total_pool=0,
        total_predictions=0,
    )
    db.add(match)
    db.flush()
    db.add(Market(match_id=match.id, market_type=MarketType.SCORE.value, total_pool=0, total_predictions=0))
    apply_stats_delta(db, {"matches": {"total": 1, "upcoming": 1}})
    db.commit()
    db.refresh(match)
    logger.info("Created match %s: %s vs %s", match.id, team1, team2)
    return match


def create_market(
    db: Session,
    *,
    actor: str,
    match_id: str,
    market_type: str,
    nonce: Any,
    signature: str,
    message: str | None = None,
) -> Market:
    """Open another independently scored market on an UPCOMING match."""
    try:
        parsed_type = MarketType(str(market_type or "").strip().upper())
    except ValueError:
        raise RequestValidationError("Unsupported market type") from None

    verify_signed_action(
        db,
        actor=actor,
        action=ActionType.CREATE_MARKET,
        params={"matchId": match_id, "marketType": parsed_type.value},
        nonce=nonce,
        signature=signature,
        message=message,
    )
    match = get_match(db, match_id, for_update=True)
    require_status(match, MatchStatus.UPCOMING, "Match is not accepting new markets")

    market = Market(match_id=match.id, market_type=parsed_type.value, total_pool=0, total_predictions=0)
    db.add(market)
    db.commit()
    db.refresh(market)
    return market


def lock_match(
    db: Session,
    *,
    actor: str,
    match_id: str,
    nonce: Any,
    signature: str,
    message: str | None = None,
) -> Match:
    """Close an UPCOMING match to new predictions."""
    verify_signed_action(
        db,
        actor=actor,
        action=ActionType.LOCK_MATCH,
        params={"matchId": match_id},
        nonce=nonce,
        signature=signature,
        message=message,
    )
    match = get_match(db, match_id)
    transition_match(db, match.id, from_status=MatchStatus.UPCOMING)
    apply_stats_delta(db, {"matches": {"upcoming": -1, "live": 1}})
    db.commit()
    db.refresh(match)
    return match
