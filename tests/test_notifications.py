import json
from dataclasses import replace
from datetime import datetime
from types import SimpleNamespace

import httpx
import pytest

from services.notification_service.gateway import Attachment, MailerSendGateway
from services.notification_service.service import NotificationService
from services.notification_service.templates import format_euro, render
from services.order_service.enums import NotificationKind
from services.order_service.repository import OrderRepository


def sample_order(**overrides):
    values = dict(
        id=12,
        number="CP-1700000000000-001",
        customer_id=1,
        items=[SimpleNamespace(name="Brake pads", quantity=1, line_total_cents=10000)],
        consigne_lines=[
            SimpleNamespace(
                name="Alternator", quantity=2, amount_cents=5000,
                due_at=datetime(2026, 7, 1), received_at=None,
            )
        ],
        items_subtotal_cents=10000,
        shipping_cost_cents=500,
        client_discount_percent=10,
        client_discount_cents=1000,
        promo_code="SAVE5",
        promo_discount_cents=450,
        items_total_after_discount_cents=8550,
        total_cents=9050,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


CUSTOMER = SimpleNamespace(email="jean.dupont@example.com", first_name="Jean")


class MailerSendStub:
    def __init__(self, status_code=202):
        self.status_code = status_code
        self.payloads = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.payloads.append(json.loads(request.content))
        return httpx.Response(self.status_code, json={})


@pytest.fixture
def mail_settings(settings):
    return replace(settings, mailersend_api_key="ms_test", mail_from_email="shop@carparts.test")


async def send_with(stub, settings, kind=NotificationKind.ORDER_CONFIRMATION, **kwargs):
    async with httpx.AsyncClient(transport=httpx.MockTransport(stub.handler)) as client:
        gateway = MailerSendGateway(settings, client=client)
        return await gateway.send(kind, sample_order(), CUSTOMER, **kwargs)


def test_format_euro():
    assert format_euro(950000) == "9 500,00 €"
    assert format_euro(None) == "0,00 €"


def test_order_confirmation_lists_the_stored_breakdown():
    email = render(NotificationKind.ORDER_CONFIRMATION, sample_order(), CUSTOMER, "https://shop.test")

    assert email.subject == "Confirmation de commande (commande #CP-1700000000000-001)"
    assert "Remise client (10%) : -10,00 €" in email.text
    assert "Code promo SAVE5 : -4,50 €" in email.text
    assert "Total : 90,50 €" in email.text
    assert "https://shop.test/account/orders/12" in email.text


def test_deposit_emails_need_pending_lines():
    settled = sample_order(consigne_lines=[])

    assert render(NotificationKind.CONSIGNE_OVERDUE, settled, CUSTOMER) is None
    assert render(NotificationKind.CONSIGNE_REMINDER_SOON, settled, CUSTOMER) is None

    overdue = render(NotificationKind.CONSIGNE_OVERDUE, sample_order(), CUSTOMER)
    assert "100,00 €" in overdue.text
    assert "01/07/2026" in overdue.text


async def test_mailersend_accepts_with_202(mail_settings):
    stub = MailerSendStub()

    result = await send_with(stub, mail_settings)

    assert result.ok
    (payload,) = stub.payloads
    assert payload["to"] == [{"email": "jean.dupont@example.com"}]
    assert payload["from"] == {"email": "shop@carparts.test", "name": "CarParts France"}
    assert not payload["subject"].startswith("[DEV]")


async def test_mailersend_error_is_reported(mail_settings):
    result = await send_with(MailerSendStub(status_code=422), mail_settings)

    assert not result.ok
    assert result.reason == "mailersend_error"


async def test_test_inbox_redirect_outside_production(mail_settings):
    stub = MailerSendStub()

    result = await send_with(stub, replace(mail_settings, mail_test_to="qa@carparts.test"))

    assert result.forced_from == "jean.dupont@example.com"
    assert stub.payloads[0]["to"] == [{"email": "qa@carparts.test"}]
    assert stub.payloads[0]["subject"].startswith("[DEV] ")


async def test_test_inbox_is_ignored_in_production(mail_settings):
    stub = MailerSendStub()

    await send_with(stub, replace(mail_settings, app_env="production", mail_test_to="qa@carparts.test"))

    assert stub.payloads[0]["to"] == [{"email": "jean.dupont@example.com"}]


async def test_missing_configuration_sends_nothing(settings):
    stub = MailerSendStub()

    result = await send_with(stub, settings)

    assert result.reason == "missing_api_key"
    assert stub.payloads == []


async def test_attachments_are_forwarded(mail_settings):
    stub = MailerSendStub()

    await send_with(
        stub,
        mail_settings,
        attachments=[Attachment("facture.pdf", "JVBERi0x"), Attachment(" ", "ignored")],
    )

    assert stub.payloads[0]["attachments"] == [
        {"filename": "facture.pdf", "content": "JVBERi0x", "disposition": "attachment"}
    ]


async def test_send_once_stamps_guard(db, seed, order_factory, gateway):
    order_id = await order_factory([(seed.brake_pads_id, 1)])
    order = await OrderRepository.get_order(db, order_id)

    assert await NotificationService.send_once(db, gateway, order, NotificationKind.ORDER_CONFIRMATION)
    assert not await NotificationService.send_once(db, gateway, order, NotificationKind.ORDER_CONFIRMATION)

    fresh = await OrderRepository.get_order(db, order_id, fresh=True)
    assert fresh.order_confirmation_sent_at is not None
    assert gateway.count(NotificationKind.ORDER_CONFIRMATION) == 1
