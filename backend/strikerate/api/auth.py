"""
Wallet sign-in, registration and the prepare-signature endpoint.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import Field
from sqlalchemy.orm import Session

from strikerate.api.common import CamelModel, SignedRequest, service_errors
from strikerate.core.database import get_db
from strikerate.services import signed_actions, users

router = APIRouter()


class SignInRequest(SignedRequest):
    timestamp: int


class RegisterRequest(CamelModel):
    wallet_address: str = Field(..., min_length=32, max_length=64)


class PrepareRequest(CamelModel):
    wallet_address: str = Field(..., min_length=1, max_length=64)
    action: str = Field(..., min_length=1, max_length=40)
    operation: Optional[Dict[str, Any]] = None


@router.post("/auth/sign-in")
def sign_in(request: SignInRequest, db: Session = Depends(get_db)):
    with service_errors(db, "sign in"):
        return signed_actions.sign_in(
            db,
            actor=request.wallet_address,
            timestamp=request.timestamp,
            nonce=request.nonce,
            signature=request.signature,
            message=request.message,
        )


@router.post("/auth/register")
def register(request: RegisterRequest, db: Session = Depends(get_db)):
    with service_errors(db, "register user"):
        users.register_user(db, request.wallet_address)
    return {"success": True}


@router.post("/prepare")
def prepare(request: PrepareRequest, db: Session = Depends(get_db)):
    """Return the caller's nonce and the exact message to sign for an action."""
    with service_errors(db, "prepare signature"):
        prepared = signed_actions.prepare_action(
            db,
            actor=request.wallet_address,
            action=request.action,
            operation=request.operation,
        )
    return {"nonce": prepared["nonce"], "message": prepared["message"]}
