"""Request models and error translation shared by the routers."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from fastapi import HTTPException, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session

from strikerate.core.errors import StrikerateError, to_http_exception
from strikerate.services.scoring import ScoreLine

logger = logging.getLogger(__name__)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SignedRequest(CamelModel):
    """Fields every signed action carries."""

    wallet_address: str = Field(..., min_length=32, max_length=64)
    signature: str = Field(..., min_length=1)
    message: str | None = None
    nonce: int


class ScoreFields(CamelModel):
    team1_score: int
    team1_wickets: int
    team2_score: int
    team2_wickets: int

    def score_line(self) -> ScoreLine:
        return ScoreLine(self.team1_score, self.team1_wickets, self.team2_score, self.team2_wickets)


@contextmanager
def service_errors(db: Session, action: str) -> Iterator[None]:
    """Roll back and map service failures onto HTTP responses."""
    try:
        yield
    except StrikerateError as exc:
        db.rollback()
        raise to_http_exception(exc) from exc
    except HTTPException:
        db.rollback()
        raise
    except Exception as exc:
        db.rollback()
        logger.exception("%s failed", action)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to {action}",
        ) from exc
