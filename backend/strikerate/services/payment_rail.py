"""
Payment rail.

Stakes arrive as USDC transfers to the treasury wallet and are verified over
Solana JSON-RPC. Payouts are handed to the treasury payout service, which
signs and confirms the SPL transfer; every payout carries an idempotency key
so a retried claim cannot pay twice.
"""
from __future__ import annotations

import itertools
import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any

import requests

from strikerate.core.config import settings
from strikerate.core.errors import PaymentError, PayoutError

logger = logging.getLogger(__name__)

CONFIRMED_STATUSES = {"confirmed", "finalized"}


def to_raw_amount(amount: Any, decimals: int | None = None) -> int:
    """Convert a token amount to integer minor units."""
    decimals = settings.USDC_DECIMALS if decimals is None else decimals
    return int((Decimal(str(amount)) * (Decimal(10) ** decimals)).to_integral_value())


class PaymentRail(ABC):
    """Interface to the external money movement system."""

    @abstractmethod
    def verify_payment(self, reference: str, *, sender: str, recipient: str, amount: Any) -> None:
        """Raise ``PaymentError`` unless ``reference`` moved ``amount`` from sender to recipient."""

    @abstractmethod
    def send_payout(self, *, recipient: str, amount: Any, idempotency_key: str) -> str:
        """Transfer ``amount`` to ``recipient``; return the confirmed transfer reference."""


class SolanaPaymentRail(PaymentRail):
    def __init__(
        self,
        *,
        rpc_url: str | None = None,
        mint: str | None = None,
        commitment: str | None = None,
        payout_url: str | None = None,
        payout_token: str | None = None,
        session: requests.Session | None = None,
    ):
        self.rpc_url = rpc_url or settings.SOLANA_RPC_URL
        self.mint = mint or settings.USDC_MINT
        self.commitment = commitment or settings.PAYMENT_COMMITMENT
        self.payout_url = (payout_url or settings.PAYOUT_SERVICE_URL).rstrip("/")
        self.payout_token = payout_token if payout_token is not None else settings.PAYOUT_SERVICE_TOKEN
        self.session = session or requests.Session()
        self._ids = itertools.count(1)

    def _rpc(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = self.session.post(self.rpc_url, json=payload, timeout=settings.RPC_TIMEOUT_SECONDS)
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Solana RPC %s failed: %s", method, exc)
            raise PaymentError("Unable to verify payment right now") from exc
        if body.get("error"):
            logger.warning("Solana RPC %s returned error: %s", method, body["error"])
            raise PaymentError("Unable to verify payment right now")
        return body.get("result")

    def _owner_deltas(self, meta: dict[str, Any]) -> dict[str, int]:
        """Net change in raw mint balance per token-account owner."""
        deltas: dict[str, int] = {}
        for sign, key in ((-1, "preTokenBalances"), (1, "postTokenBalances")):
            for balance in meta.get(key) or []:
                if balance.get("mint") != self.mint or not balance.get("owner"):
                    continue
                raw = int((balance.get("uiTokenAmount") or {}).get("amount") or 0)
                deltas[balance["owner"]] = deltas.get(balance["owner"], 0) + sign * raw
        return deltas

    def verify_payment(self, reference: str, *, sender: str, recipient: str, amount: Any) -> None:
        if not reference:
            raise PaymentError("Payment reference is required")

        transaction = self._rpc(
            "getTransaction",
            [
                reference,
                {
                    "encoding": "jsonParsed",
                    "commitment": self.commitment,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )
        if not transaction:
            raise PaymentError("Transaction not found")
        meta = transaction.get("meta") or {}
        if meta.get("err") is not None:
            raise PaymentError("Transaction failed on chain")

        statuses = self._rpc("getSignatureStatuses", [[reference], {"searchTransactionHistory": True}])
        status = ((statuses or {}).get("value") or [None])[0] or {}
        if status.get("confirmationStatus") not in CONFIRMED_STATUSES:
            raise PaymentError("Transaction not confirmed")

        expected = to_raw_amount(amount)
        deltas = self._owner_deltas(meta)
        if deltas.get(sender, 0) > -expected or deltas.get(recipient, 0) < expected:
            raise PaymentError("Invalid transaction: wrong token accounts")
        logger.info("Verified stake payment %s from %s", reference, sender)

    def send_payout(self, *, recipient: str, amount: Any, idempotency_key: str) -> str:
        headers = {"Idempotency-Key": idempotency_key}
        if self.payout_token:
            headers["Authorization"] = f"Bearer {self.payout_token}"
        payload = {
            "recipient": recipient,
            "mint": self.mint,
            "amount": str(amount),
            "amountRaw": to_raw_amount(amount),
        }
        try:
            response = self.session.post(
                f"{self.payout_url}/payouts",
                json=payload,
                headers=headers,
                timeout=settings.PAYOUT_TIMEOUT_SECONDS,
            )
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as exc:
            logger.error("Payout %s to %s failed: %s", idempotency_key, recipient, exc)
            raise PayoutError("Payout transfer failed; please retry") from exc

        signature = str(body.get("signature") or "").strip()
        if body.get("status") not in CONFIRMED_STATUSES or not signature:
            logger.error("Payout %s not confirmed: %s", idempotency_key, body)
            raise PayoutError("Transaction failed to confirm")
        logger.info("Payout %s confirmed: %s", idempotency_key, signature)
        return signature


_rail: PaymentRail | None = None


def get_payment_rail() -> PaymentRail:
    """Dependency returning the process-wide payment rail."""
    global _rail
    if _rail is None:
        _rail = SolanaPaymentRail()
    return _rail
