"""Markets API Router."""
from fastapi import APIRouter, Depends
from pydantic import Field
from sqlalchemy.orm import Session

from strikerate.api.common import SignedRequest, service_errors
from strikerate.api.matches import market_payload
from strikerate.core.database import get_db
from strikerate.models.models import MarketType
from strikerate.services import match_lifecycle

router = APIRouter()


class CreateMarketRequest(SignedRequest):
    match_id: str = Field(..., min_length=1, max_length=32)
    market_type: str = MarketType.SCORE.value


@router.post("")
def create_market(request: CreateMarketRequest, db: Session = Depends(get_db)):
    with service_errors(db, "create market"):
        market = match_lifecycle.create_market(
            db,
            actor=request.wallet_address,
            match_id=request.match_id,
            market_type=request.market_type,
            nonce=request.nonce,
            signature=request.signature,
            message=request.message,
        )
        return market_payload(market)
