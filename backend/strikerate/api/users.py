"""Users, leaderboard and global statistics."""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from strikerate.api.common import service_errors
from strikerate.core.database import get_db
from strikerate.services import stats, users

router = APIRouter()


@router.get("/users/leaderboard")
def leaderboard(limit: int = Query(20, ge=1, le=100), db: Session = Depends(get_db)):
    return users.get_leaderboard(db, limit=limit)


@router.get("/users/{wallet_address}")
def get_user(wallet_address: str, db: Session = Depends(get_db)):
    with service_errors(db, "load user"):
        return users.user_payload(users.get_user(db, wallet_address))


@router.get("/stats")
def get_stats(db: Session = Depends(get_db)):
    return stats.get_stats(db).model_dump(by_alias=True)
