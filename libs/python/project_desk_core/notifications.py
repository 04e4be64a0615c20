"""Payment receipt delivery through the Resend HTTP API."""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

import httpx
from pydantic import BaseModel

from project_desk_observability import log_context, observe_receipt

from .config import MailConfig

logger = logging.getLogger(__name__)

RECEIPT_SUBJECT = "Payment Receipt - Project Desk"


class PaymentReceipt(BaseModel):
    email: str
    name: Optional[str] = None
    amount: Decimal
    currency: str
    reference: str
    project_id: str
    project_topic: str = ""
    paid_at: datetime


def render_receipt_text(receipt: PaymentReceipt) -> str:
    greeting = receipt.name or "there"
    topic = receipt.project_topic or "your project"
    return (
        f"Hi {greeting},\n\n"
        f"We received your payment of {receipt.currency} {receipt.amount:,.2f} for {topic}.\n"
        f"Reference: {receipt.reference}\n"
        f"Date: {receipt.paid_at:%Y-%m-%d %H:%M} UTC\n\n"
        "Your project is now unlocked."
    )


class ReceiptNotifier:
    """Sends receipts after the payment transaction has committed.

    Delivery problems are logged and counted; they never propagate, since
    the payment they describe is already durable.
    """

    def __init__(self, config: MailConfig, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._config = config
        self._transport = transport

    async def send_payment_receipt(self, receipt: PaymentReceipt, log_fields: Optional[dict[str, Any]] = None) -> bool:
        """Deliver one receipt; ``log_fields`` re-binds the context of the request that scheduled it."""

        with log_context(**(log_fields or {})):
            return await self._send(receipt)

    async def _send(self, receipt: PaymentReceipt) -> bool:
        if not self._config.enabled:
            logger.warning("RESEND_API_KEY missing, skipping receipt", extra={"reference": receipt.reference})
            observe_receipt("skipped")
            return False

        payload = {
            "from": self._config.from_email,
            "to": [receipt.email],
            "subject": RECEIPT_SUBJECT,
            "text": render_receipt_text(receipt),
        }
        try:
            async with httpx.AsyncClient(
                base_url=self._config.base_url,
                timeout=self._config.timeout_seconds,
                headers={"Authorization": f"Bearer {self._config.api_key}"},
                transport=self._transport,
            ) as client:
                response = await client.post("/emails", json=payload)
            response.raise_for_status()
        except httpx.HTTPError:
            logger.exception(
                "Receipt delivery failed",
                extra={"reference": receipt.reference, "project_id": receipt.project_id},
            )
            observe_receipt("failed")
            return False

        logger.info(
            "Receipt sent",
            extra={"reference": receipt.reference, "project_id": receipt.project_id},
        )
        observe_receipt("sent")
        return True
