from __future__ import annotations

from decimal import Decimal

import base58
import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import strikerate.models  # noqa: F401
from strikerate.core.config import settings
from strikerate.core.database import Base
from strikerate.core.errors import PaymentError, PayoutError
from strikerate.services import match_lifecycle, predictions, settlement, signed_actions
from strikerate.services.payment_rail import PaymentRail
from strikerate.services.scoring import ScoreLine


class Wallet:
    def __init__(self):
        self._key = Ed25519PrivateKey.generate()
        raw = self._key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
        self.address = base58.b58encode(raw).decode("ascii")

    def sign(self, message: str) -> str:
        return base58.b58encode(self._key.sign(message.encode("utf-8"))).decode("ascii")


class FakeRail(PaymentRail):
    def __init__(self):
        self.verified: list[dict] = []
        self.payouts: list[dict] = []
        self.rejected: set[str] = set()
        self.fail_payouts = 0

    def verify_payment(self, reference, *, sender, recipient, amount):
        if reference in self.rejected:
            raise PaymentError("Transaction not found")
        self.verified.append({"reference": reference, "sender": sender, "recipient": recipient, "amount": amount})

    def send_payout(self, *, recipient, amount, idempotency_key):
        if self.fail_payouts:
            self.fail_payouts -= 1
            raise PayoutError("Transaction failed to confirm")
        self.payouts.append({"recipient": recipient, "amount": amount, "idempotency_key": idempotency_key})
        return f"payout-{len(self.payouts)}"


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _configure_connection(dbapi_connection, _connection_record):
        # pysqlite's implicit transactions break SAVEPOINT; SQLAlchemy emits BEGIN itself.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, future=True)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def admin(monkeypatch):
    wallet = Wallet()
    monkeypatch.setattr(settings, "ADMIN_WALLET_ADDRESS", wallet.address)
    return wallet


@pytest.fixture
def treasury(monkeypatch):
    wallet = Wallet()
    monkeypatch.setattr(settings, "TREASURY_WALLET_ADDRESS", wallet.address)
    return wallet


@pytest.fixture
def rail():
    return FakeRail()


def signed(db, wallet: Wallet, action: str, operation: dict | None = None) -> dict:
    """Prepare, sign and return the verifier kwargs for one action."""
    prepared = signed_actions.prepare_action(db, actor=wallet.address, action=action, operation=operation)
    return {
        "actor": wallet.address,
        "nonce": prepared["nonce"],
        "signature": wallet.sign(prepared["message"]),
        "message": prepared["message"],
    }


def new_match(db, admin: Wallet, team1: str = "India", team2: str = "Australia"):
    return match_lifecycle.create_match(
        db,
        team1=team1,
        team2=team2,
        match_type="T20",
        **signed(
            db,
            admin,
            "CREATE_MATCH",
            {"team1": team1, "team2": team2, "matchType": "T20"},
        ),
    )


def place_prediction(db, wallet: Wallet, match_id: str, line: ScoreLine, rail: FakeRail, *, market_id=None, reference=None):
    predictions.prepare_prediction(
        db,
        match_id=match_id,
        market_id=market_id,
        predicted=line,
        **signed(db, wallet, "CREATE_PREDICTION", line.as_params()),
    )
    return predictions.confirm_prediction(
        db,
        actor=wallet.address,
        match_id=match_id,
        market_id=market_id,
        predicted=line,
        payment_reference=reference or f"pay-{wallet.address[:8]}-{market_id or match_id}",
        rail=rail,
    )


def lock(db, admin: Wallet, match_id: str):
    return match_lifecycle.lock_match(
        db,
        match_id=match_id,
        **signed(db, admin, "LOCK_MATCH", {"matchId": match_id}),
    )


def complete(db, admin: Wallet, match_id: str, final: ScoreLine):
    return settlement.complete_match(
        db,
        match_id=match_id,
        final_score=final,
        **signed(db, admin, "COMPLETE_MATCH", {"matchId": match_id, **final.as_params()}),
    )


def money(value) -> Decimal:
    return Decimal(str(value)).quantize(Decimal("0.000001"))
