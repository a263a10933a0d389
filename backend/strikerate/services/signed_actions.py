"""
Signed actions and replay protection.

Every state-changing request is signed by the acting wallet. The server builds
the canonical message for an action from its parameters and the actor's
current nonce, hands it out through ``prepare_action``, and rebuilds it from
server-held values when verifying. A client-echoed message is only compared,
never trusted. Accepting an action consumes exactly one nonce in the caller's
transaction.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping

from sqlalchemy.orm import Session

from strikerate.core.config import settings
from strikerate.core.errors import AuthorizationError, RequestValidationError
from strikerate.core.signatures import is_valid_address, verify_signature
from strikerate.core.time import now_ms, now_utc
from strikerate.models.models import NonceRecord, Prediction

logger = logging.getLogger(__name__)


class ActionType(str, Enum):
    SIGN_IN = "SIGN_IN"
    CREATE_MATCH = "CREATE_MATCH"
    CREATE_MARKET = "CREATE_MARKET"
    LOCK_MATCH = "LOCK_MATCH"
    COMPLETE_MATCH = "COMPLETE_MATCH"
    RESETTLE_MATCH = "RESETTLE_MATCH"
    CREATE_PREDICTION = "CREATE_PREDICTION"
    CLAIM_PRIZE = "CLAIM_PRIZE"


PRIVILEGED_ACTIONS = {
    ActionType.CREATE_MATCH,
    ActionType.CREATE_MARKET,
    ActionType.LOCK_MATCH,
    ActionType.COMPLETE_MATCH,
    ActionType.RESETTLE_MATCH,
}
# Actions that may create the actor's nonce record on first use.
AUTO_CREATE_ACTIONS = {ActionType.SIGN_IN}

_TEMPLATES: dict[ActionType, tuple[str, ...]] = {
    ActionType.SIGN_IN: (
        "Strikerate Sign In",
        "Timestamp: {timestamp}",
    ),
    ActionType.CREATE_MATCH: (
        "Create Match",
        "Teams: {team1} vs {team2}",
        "Match Type: {matchType}",
        "Stadium: {stadium}",
        "Match Time: {matchTime}",
    ),
    ActionType.CREATE_MARKET: (
        "Create Market",
        "Match ID: {matchId}",
        "Market Type: {marketType}",
    ),
    ActionType.LOCK_MATCH: (
        "Lock Match",
        "Match ID: {matchId}",
    ),
    ActionType.COMPLETE_MATCH: (
        "Complete Match",
        "Match ID: {matchId}",
        "Score: {team1Score}/{team1Wickets} vs {team2Score}/{team2Wickets}",
    ),
    ActionType.RESETTLE_MATCH: (
        "Resettle Match",
        "Match ID: {matchId}",
    ),
    ActionType.CREATE_PREDICTION: (
        "Create Prediction",
        "Team1: {team1Score}-{team1Wickets} vs",
        "Team2: {team2Score}-{team2Wickets}",
    ),
    ActionType.CLAIM_PRIZE: (
        "Claim Prize",
        "Match ID: {matchId}",
        "Prediction ID: {predictionId}",
        "Amount: {amount} USDC",
    ),
}

_OPTIONAL_PARAMS = {"matchType", "stadium", "matchTime"}
# Printed for template values a prepared operation did not supply.
MISSING_VALUE = "undefined"
# Free-text fields the services strip before verifying.
_STRIPPED_PARAMS = {ActionType.CREATE_MATCH: ("team1", "team2")}


def format_amount(amount: Any) -> str:
    """Render an amount the way a JS number prints: no trailing zeros."""
    value = Decimal(str(amount if amount is not None else 0))
    text = f"{value.normalize():f}"
    return "0" if text in {"-0", ""} else text


def _format_param(key: str, value: Any) -> str:
    if key == "amount":
        return format_amount(value)
    if value is None:
        return ""
    return str(value)


def _parse_action(action: str | ActionType) -> ActionType | None:
    try:
        return ActionType(str(getattr(action, "value", action) or "").strip().upper())
    except ValueError:
        return None


def build_message(
    action: str | ActionType,
    params: Mapping[str, Any] | None,
    nonce: int,
    *,
    strict: bool = True,
) -> str:
    """Render the canonical message for ``action`` at ``nonce``.

    With ``strict`` unset, missing template values print as ``undefined``
    instead of raising.
    """
    parsed = _parse_action(action)
    if parsed is None:
        return f"{getattr(action, 'value', action)} (nonce: {nonce})"

    params = dict(params or {})
    lines = []
    for template in _TEMPLATES[parsed]:
        keys = [part.split("}", 1)[0] for part in template.split("{")[1:]]
        missing = [key for key in keys if params.get(key) is None and key not in _OPTIONAL_PARAMS]
        if missing and strict:
            raise RequestValidationError(f"Missing {', '.join(missing)} for {parsed.value}")
        lines.append(
            template.format(
                **{
                    key: MISSING_VALUE if key in missing else _format_param(key, params.get(key))
                    for key in keys
                }
            )
        )
    lines.append(f"Nonce: {nonce}")
    return "\n".join(lines)


def is_privileged(actor: str) -> bool:
    admin = str(getattr(settings, "ADMIN_WALLET_ADDRESS", "") or "").strip()
    return bool(admin) and actor == admin


def _lock_nonce_record(db: Session, actor: str) -> NonceRecord | None:
    return (
        db.query(NonceRecord)
        .filter(NonceRecord.actor_address == actor)
        .with_for_update()
        .first()
    )


def get_or_create_nonce(db: Session, actor: str, *, activity: str | None = None) -> NonceRecord:
    record = _lock_nonce_record(db, actor)
    if record is None:
        record = NonceRecord(actor_address=actor, nonce=0, last_activity=activity)
        db.add(record)
        db.flush()
    return record


def prepare_action(
    db: Session,
    *,
    actor: str,
    action: str,
    operation: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Return the actor's nonce and the exact message to sign.

    Creates the nonce record for first-time actors. Server-held values
    override client-supplied ones where the server owns them.
    """
    actor = str(actor or "").strip()
    if not is_valid_address(actor):
        raise RequestValidationError("Invalid wallet address")

    operation = dict(operation or {})
    parsed = _parse_action(action)
    if parsed is ActionType.SIGN_IN and operation.get("timestamp") is None:
        operation["timestamp"] = now_ms()
    if parsed is ActionType.CLAIM_PRIZE and operation.get("predictionId"):
        prediction = db.get(Prediction, str(operation["predictionId"]))
        if prediction is not None:
            operation["amount"] = prediction.amount_won or 0
    for key in _STRIPPED_PARAMS.get(parsed, ()):
        if isinstance(operation.get(key), str):
            operation[key] = operation[key].strip()

    record = get_or_create_nonce(db, actor, activity=parsed.value if parsed else str(action))
    message = build_message(parsed or action, operation, record.nonce, strict=False)
    db.commit()
    return {"nonce": record.nonce, "message": message, "operation": operation}


def verify_signed_action(
    db: Session,
    *,
    actor: str,
    action: ActionType,
    params: Mapping[str, Any],
    nonce: Any,
    signature: str,
    message: str | None = None,
) -> NonceRecord:
    """Authorize ``actor`` for ``action`` and consume one nonce.

    The nonce row is locked for the rest of the caller's transaction, so an
    actor's signed actions apply strictly in sequence. Nothing is committed
    here; a failure later in the caller's transaction rolls the nonce back.
    """
    if action in PRIVILEGED_ACTIONS and not is_privileged(actor):
        raise AuthorizationError("Unauthorized")

    record = _lock_nonce_record(db, actor)
    if record is None:
        if action not in AUTO_CREATE_ACTIONS:
            raise AuthorizationError("Invalid nonce")
        record = get_or_create_nonce(db, actor, activity=action.value)

    if isinstance(nonce, bool) or not isinstance(nonce, int) or nonce != record.nonce:
        logger.info("Rejected %s for %s: stale nonce %r (expected %s)", action.value, actor, nonce, record.nonce)
        raise AuthorizationError("Invalid nonce")

    expected = build_message(action, params, record.nonce)
    if message is not None and message != expected:
        logger.warning("Rejected %s for %s: signed message does not match canonical form", action.value, actor)
        raise AuthorizationError("Invalid signature")
    if not verify_signature(actor, expected, signature):
        raise AuthorizationError("Invalid signature")

    record.nonce = record.nonce + 1
    record.last_activity = action.value
    record.last_updated = now_utc()
    db.flush()
    return record


def sign_in(
    db: Session,
    *,
    actor: str,
    timestamp: Any,
    nonce: Any,
    signature: str,
    message: str | None = None,
) -> dict[str, Any]:
    verify_signed_action(
        db,
        actor=actor,
        action=ActionType.SIGN_IN,
        params={"timestamp": timestamp},
        nonce=nonce,
        signature=signature,
        message=message,
    )
    db.commit()
    return {"success": True}
