"""
Matches API Router
Match creation, the lock/complete lifecycle and settlement retries.
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import Field
from sqlalchemy import desc
from sqlalchemy.orm import Session

from strikerate.api.common import ScoreFields, SignedRequest, service_errors
from strikerate.core.database import get_db
from strikerate.models.models import Market, Match, MatchStatus
from strikerate.services import match_lifecycle, predictions, settlement

router = APIRouter()


class CreateMatchRequest(SignedRequest):
    team1: str = Field(..., min_length=1, max_length=100)
    team2: str = Field(..., min_length=1, max_length=100)
    match_type: Optional[str] = None
    stadium: Optional[str] = Field(default=None, max_length=255)
    match_time: Optional[str] = Field(default=None, max_length=64)


class MatchActionRequest(SignedRequest):
    match_id: str = Field(..., min_length=1, max_length=32)


class CompleteMatchRequest(MatchActionRequest, ScoreFields):
    pass


def _final_score(match: Match) -> Optional[Dict[str, int]]:
    if match.final_team1_score is None:
        return None
    return {
        "team1Score": match.final_team1_score,
        "team1Wickets": match.final_team1_wickets,
        "team2Score": match.final_team2_score,
        "team2Wickets": match.final_team2_wickets,
    }


def market_payload(market: Market) -> Dict[str, Any]:
    return {
        "id": market.id,
        "matchId": market.match_id,
        "marketType": market.market_type,
        "totalPool": float(market.total_pool or 0),
        "totalPredictions": int(market.total_predictions or 0),
        "createdAt": market.created_at.isoformat() if market.created_at else None,
    }


def match_payload(match: Match, include_markets: bool = False) -> Dict[str, Any]:
    payload = {
        "id": match.id,
        "team1": match.team1,
        "team2": match.team2,
        "matchType": match.match_type,
        "stadium": match.stadium,
        "matchTime": match.match_time,
        "status": match.status,
        "totalPool": float(match.total_pool or 0),
        "totalPredictions": int(match.total_predictions or 0),
        "finalScore": _final_score(match),
        "createdAt": match.created_at.isoformat() if match.created_at else None,
        "completedAt": match.completed_at.isoformat() if match.completed_at else None,
    }
    if include_markets:
        payload["markets"] = [market_payload(m) for m in match.markets]
    return payload


@router.get("")
def list_matches(
    status: Optional[MatchStatus] = None,
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    query = db.query(Match)
    if status is not None:
        query = query.filter(Match.status == status.value)
    matches = query.order_by(desc(Match.created_at), Match.id).limit(limit).all()
    return [match_payload(m) for m in matches]


@router.post("")
def create_match(request: CreateMatchRequest, db: Session = Depends(get_db)):
    with service_errors(db, "create match"):
        match = match_lifecycle.create_match(
            db,
            actor=request.wallet_address,
            team1=request.team1,
            team2=request.team2,
            match_type=request.match_type,
            stadium=request.stadium,
            match_time=request.match_time,
            nonce=request.nonce,
            signature=request.signature,
            message=request.message,
        )
        return match_payload(match, include_markets=True)


@router.post("/lock")
def lock_match(request: MatchActionRequest, db: Session = Depends(get_db)):
    with service_errors(db, "lock match"):
        match = match_lifecycle.lock_match(
            db,
            actor=request.wallet_address,
            match_id=request.match_id,
            nonce=request.nonce,
            signature=request.signature,
            message=request.message,
        )
        return {"message": "Match locked successfully", "matchId": match.id, "status": match.status}


@router.post("/complete")
def complete_match(request: CompleteMatchRequest, db: Session = Depends(get_db)):
    with service_errors(db, "complete match"):
        summary = settlement.complete_match(
            db,
            actor=request.wallet_address,
            match_id=request.match_id,
            final_score=request.score_line(),
            nonce=request.nonce,
            signature=request.signature,
            message=request.message,
        )
    return {"message": "Match completed successfully", **summary}


@router.post("/resettle")
def resettle_match(request: MatchActionRequest, db: Session = Depends(get_db)):
    with service_errors(db, "resettle match"):
        summary = settlement.resettle_match(
            db,
            actor=request.wallet_address,
            match_id=request.match_id,
            nonce=request.nonce,
            signature=request.signature,
            message=request.message,
        )
    return summary


@router.get("/{match_id}")
def get_match(match_id: str, db: Session = Depends(get_db)):
    with service_errors(db, "load match"):
        match = match_lifecycle.get_match(db, match_id)
        return match_payload(match, include_markets=True)


@router.get("/{match_id}/predictions")
def get_match_predictions(match_id: str, db: Session = Depends(get_db)):
    with service_errors(db, "load predictions"):
        rows = predictions.list_match_predictions(db, match_id)
        return [predictions.prediction_payload(p) for p in rows]
