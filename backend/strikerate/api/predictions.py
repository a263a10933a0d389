"""
Predictions API Router
Two-stage prediction entry, prize claims and a user's own predictions.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import Field
from sqlalchemy.orm import Session

from strikerate.api.common import ScoreFields, SignedRequest, service_errors
from strikerate.core.database import get_db
from strikerate.services import claims, predictions
from strikerate.services.payment_rail import PaymentRail, get_payment_rail

router = APIRouter()


class CreatePredictionRequest(SignedRequest, ScoreFields):
    match_id: str = Field(..., min_length=1, max_length=32)
    market_id: Optional[str] = Field(default=None, max_length=32)


class ConfirmPredictionRequest(ScoreFields):
    match_id: str = Field(..., min_length=1, max_length=32)
    market_id: Optional[str] = Field(default=None, max_length=32)
    wallet_address: str = Field(..., min_length=32, max_length=64)
    payment_signature: str = Field(..., min_length=1, max_length=128)


class ClaimPrizeRequest(SignedRequest):
    match_id: str = Field(..., min_length=1, max_length=32)
    prediction_id: str = Field(..., min_length=1, max_length=32)


@router.post("")
def create_prediction(request: CreatePredictionRequest, db: Session = Depends(get_db)):
    """Stage one: returns the stake payment the client must make before confirming."""
    with service_errors(db, "create prediction"):
        return predictions.prepare_prediction(
            db,
            actor=request.wallet_address,
            match_id=request.match_id,
            market_id=request.market_id,
            predicted=request.score_line(),
            nonce=request.nonce,
            signature=request.signature,
            message=request.message,
        )


@router.post("/confirm")
def confirm_prediction(
    request: ConfirmPredictionRequest,
    db: Session = Depends(get_db),
    rail: PaymentRail = Depends(get_payment_rail),
):
    with service_errors(db, "confirm prediction"):
        prediction = predictions.confirm_prediction(
            db,
            actor=request.wallet_address,
            match_id=request.match_id,
            market_id=request.market_id,
            predicted=request.score_line(),
            payment_reference=request.payment_signature,
            rail=rail,
        )
        return {"id": prediction.id, "message": "Prediction created successfully"}


@router.post("/claim")
def claim_prize(
    request: ClaimPrizeRequest,
    db: Session = Depends(get_db),
    rail: PaymentRail = Depends(get_payment_rail),
):
    with service_errors(db, "claim prize"):
        result = claims.claim_prize(
            db,
            actor=request.wallet_address,
            match_id=request.match_id,
            prediction_id=request.prediction_id,
            nonce=request.nonce,
            signature=request.signature,
            message=request.message,
            rail=rail,
        )
    return {"message": "Prize claimed successfully", **result}


@router.get("/mine")
def my_predictions(
    wallet_address: str = Query(..., alias="walletAddress", min_length=1, max_length=64),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
):
    rows = predictions.list_user_predictions(db, wallet_address, limit=limit)
    return [predictions.prediction_payload(p) for p in rows]
