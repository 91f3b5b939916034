"""EmailService 단위 테스트"""
import asyncio
from typing import Any, Dict, List

import httpx
import pytest

from core.lifecycle_config import EmailTemplate
from services.email_service import EmailDeliveryError, EmailService, TemplateNotFoundError


class _DummyAsyncClient:
    """요청을 기록하고 준비된 응답을 돌려주는 더블"""

    def __init__(self, responses: List[Any]) -> None:
        self._responses = responses
        self.requests: List[Dict[str, Any]] = []

    async def request(self, method: str, url: str, headers=None, json=None) -> httpx.Response:  # noqa: D401 - 테스트 더블
        self.requests.append({"method": method, "url": url, "headers": headers, "json": json})
        item = self._responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def aclose(self) -> None:
        pass


def _patch_async_client(monkeypatch, responses: List[Any]) -> List[_DummyAsyncClient]:
    queue = list(responses)
    created: List[_DummyAsyncClient] = []

    def _factory(*args, **kwargs):  # noqa: D401 - 테스트 헬퍼
        client = _DummyAsyncClient(queue)
        created.append(client)
        return client

    monkeypatch.setattr("services.email_service.httpx.AsyncClient", _factory)
    return created


def _service(**template_ids) -> EmailService:
    ids = {template.value: f"d-{template.value}" for template in EmailTemplate}
    ids.update(template_ids)
    return EmailService(
        api_key="SG.test",
        from_email="hello@shop.example.com",
        template_ids=ids,
        company_name="Bean There",
        support_email="support@shop.example.com",
        storefront_base_url="https://shop.example.com/",
    )


def test_empty_api_key_rejected():
    with pytest.raises(ValueError):
        EmailService(api_key="", from_email="hello@shop.example.com", template_ids={})


def test_send_email_merges_common_data(monkeypatch):
    created = _patch_async_client(monkeypatch, [httpx.Response(status_code=202)])

    async def _run():
        return await _service().send_email(
            "buyer@example.com",
            "subscription_welcome",
            {"customer_name": "Jamie", "company_name": "Override Co"},
        )

    result = asyncio.run(_run())

    assert result == {"template": "subscription_welcome", "status_code": 202}
    request = created[0].requests[0]
    assert request["url"] == "https://api.sendgrid.com/v3/mail/send"
    assert request["headers"]["Authorization"] == "Bearer SG.test"

    message = request["json"]
    assert message["template_id"] == "d-subscription_welcome"
    assert message["from"]["email"] == "hello@shop.example.com"
    personalization = message["personalizations"][0]
    assert personalization["to"] == [{"email": "buyer@example.com"}]
    data = personalization["dynamic_template_data"]
    assert data["subject"] == "Welcome to Your Subscription!"
    assert data["support_email"] == "support@shop.example.com"
    assert data["help_center_url"] == "https://shop.example.com/help"
    assert isinstance(data["current_year"], int)
    assert data["customer_name"] == "Jamie"
    # 호출자 값이 공통 값보다 우선
    assert data["company_name"] == "Override Co"


def test_unknown_template_fails_before_network(monkeypatch):
    created = _patch_async_client(monkeypatch, [])

    async def _run():
        return await _service().send_email("buyer@example.com", "birthday_card", {})

    with pytest.raises(TemplateNotFoundError) as excinfo:
        asyncio.run(_run())

    assert excinfo.value.template_key == "birthday_card"
    assert created == []


def test_unconfigured_template_id_raises(monkeypatch):
    created = _patch_async_client(monkeypatch, [])

    async def _run():
        return await _service(order_confirmation=None).send_email("buyer@example.com", "order_confirmation", {})

    with pytest.raises(EmailDeliveryError) as excinfo:
        asyncio.run(_run())

    assert excinfo.value.code == "template_not_configured"
    assert created == []


def test_provider_rejection_raises(monkeypatch):
    response = httpx.Response(status_code=400, json={"errors": [{"message": "The from address does not match a verified Sender Identity"}]})
    _patch_async_client(monkeypatch, [response])

    async def _run():
        return await _service().send_email("buyer@example.com", "payment_failed_final", {})

    with pytest.raises(EmailDeliveryError) as excinfo:
        asyncio.run(_run())

    assert excinfo.value.status_code == 400
    assert "Sender Identity" in str(excinfo.value)


def test_transport_timeout_raises(monkeypatch):
    _patch_async_client(monkeypatch, [httpx.ReadTimeout("slow")])

    async def _run():
        return await _service().send_email("buyer@example.com", "subscription_updated", {})

    with pytest.raises(EmailDeliveryError) as excinfo:
        asyncio.run(_run())

    assert excinfo.value.code == "timeout"
