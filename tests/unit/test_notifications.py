from __future__ import annotations

import json
from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest

from project_desk_core import MailConfig, PaymentReceipt, ReceiptNotifier
from project_desk_core.notifications import render_receipt_text
from project_desk_observability import current_log_context

pytestmark = pytest.mark.anyio("asyncio")


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def receipt() -> PaymentReceipt:
    return PaymentReceipt(
        email="ada@example.com",
        name="Ada",
        amount=Decimal("15000"),
        currency="NGN",
        reference="PSK_123",
        project_id="proj-1",
        project_topic="Solar microgrids",
        paid_at=datetime(2025, 3, 1, 9, 30, tzinfo=timezone.utc),
    )


def test_receipt_text(receipt: PaymentReceipt) -> None:
    text = render_receipt_text(receipt)

    assert "Hi Ada" in text
    assert "NGN 15,000.00" in text
    assert "Solar microgrids" in text
    assert "PSK_123" in text
    assert "2025-03-01 09:30" in text


async def test_missing_api_key_skips_delivery(receipt: PaymentReceipt) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    notifier = ReceiptNotifier(MailConfig(api_key=None), transport=httpx.MockTransport(handler))
    assert await notifier.send_payment_receipt(receipt) is False


async def test_receipt_is_posted(receipt: PaymentReceipt) -> None:
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["path"] = request.url.path
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "email-1"})

    config = MailConfig(api_key="re_test", from_email="Desk <desk@example.com>", base_url="https://mail.test")
    notifier = ReceiptNotifier(config, transport=httpx.MockTransport(handler))

    assert await notifier.send_payment_receipt(receipt) is True
    assert captured["path"] == "/emails"
    body = captured["body"]
    assert body["to"] == ["ada@example.com"]
    assert body["from"] == "Desk <desk@example.com>"
    assert "PSK_123" in body["text"]


async def test_delivery_failure_is_swallowed(receipt: PaymentReceipt) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"message": "down"})

    config = MailConfig(api_key="re_test", base_url="https://mail.test")
    notifier = ReceiptNotifier(config, transport=httpx.MockTransport(handler))

    assert await notifier.send_payment_receipt(receipt) is False


async def test_delivery_logs_under_the_scheduling_context(receipt: PaymentReceipt) -> None:
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(current_log_context())
        return httpx.Response(200, json={"id": "email-1"})

    config = MailConfig(api_key="re_test", base_url="https://mail.test")
    notifier = ReceiptNotifier(config, transport=httpx.MockTransport(handler))

    delivered = await notifier.send_payment_receipt(receipt, log_fields={"reference": "PSK_123", "project_id": "proj-1"})

    assert delivered is True
    assert seen == {"reference": "PSK_123", "project_id": "proj-1"}
    assert current_log_context() == {}
