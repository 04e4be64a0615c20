"""Paystack transaction API client and webhook signature check."""

from __future__ import annotations

import hashlib
import hmac
import logging
from decimal import Decimal
from typing import Any, Optional

import httpx
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from project_desk_schemas import PaymentEvent, to_minor_unit

from .config import GatewayConfig
from .errors import GatewayError

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-paystack-signature"
CHARGE_SUCCESS_EVENT = "charge.success"


def compute_signature(secret_key: str, body: bytes) -> str:
    return hmac.new(secret_key.encode("utf-8"), body, hashlib.sha512).hexdigest()


def verify_signature(secret_key: str, body: bytes, signature: Optional[str]) -> bool:
    """Check the hex HMAC-SHA512 of the raw request body."""

    if not signature:
        return False
    return hmac.compare_digest(compute_signature(secret_key, body), signature.strip().lower())


class CheckoutSession(BaseModel):
    """Hosted checkout handle returned by the initialise call."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    authorization_url: str
    access_code: Optional[str] = None
    reference: str


class PaystackClient:
    def __init__(self, config: GatewayConfig, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._config = config
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._config.base_url,
            timeout=self._config.timeout_seconds,
            headers={"Authorization": f"Bearer {self._config.secret_key}"},
            transport=self._transport,
        )

    async def initialize_transaction(
        self,
        *,
        email: str,
        amount: Decimal,
        reference: str,
        metadata: dict[str, Any],
        callback_url: Optional[str] = None,
    ) -> CheckoutSession:
        payload = {
            "email": email,
            "amount": to_minor_unit(amount),
            "reference": reference,
            "callback_url": callback_url or self._config.callback_url,
            "metadata": metadata,
        }
        try:
            async with self._client() as client:
                response = await client.post("/transaction/initialize", json=payload)
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.exception("Paystack initialise request failed", extra={"reference": reference})
            raise GatewayError("Payment initialization failed", reference=reference) from exc

        if response.is_error or not data.get("status"):
            logger.error(
                "Paystack rejected initialise",
                extra={"reference": reference, "status_code": response.status_code},
            )
            raise GatewayError(data.get("message") or "Payment initialization failed", reference=reference)

        body = data.get("data") or {}
        return CheckoutSession(
            authorization_url=body.get("authorization_url") or "",
            access_code=body.get("access_code"),
            reference=body.get("reference") or reference,
        )

    async def verify_transaction(self, reference: str) -> Optional[PaymentEvent]:
        """Return the transaction when the gateway reports it as successful."""

        try:
            async with self._client() as client:
                response = await client.get(f"/transaction/verify/{reference}")
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.exception("Paystack verify request failed", extra={"reference": reference})
            raise GatewayError("Verification failed at gateway", reference=reference) from exc

        if response.is_error or not data.get("status"):
            raise GatewayError(data.get("message") or "Verification failed at gateway", reference=reference)

        transaction = data.get("data") or {}
        if transaction.get("status") != "success":
            logger.info(
                "Transaction not successful",
                extra={"reference": reference, "status_code": response.status_code},
            )
            return None
        return PaymentEvent.model_validate(transaction)
