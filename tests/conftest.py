"""공용 테스트 더블 및 픽스처"""
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from core.config import Settings
from core.factory import ServiceFactory
from core.interfaces import IAnalyticsService, ICommerceClient, IEmailService, IHealthSignalProvider
from core.lifecycle_config import LifecycleConfig
from core.signature import compute_signature
from schemas import HealthSignals, Subscription
from services.email_service import TemplateNotFoundError

WEBHOOK_SECRET = "test-webhook-secret"
INTERNAL_TOKEN = "internal-test-token"
STOREFRONT = "https://shop.example.com"
FIXED_NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeCommerceClient(ICommerceClient):
    """호출을 기록하는 커머스 클라이언트 더블"""

    def __init__(self) -> None:
        self.calls: List[tuple] = []
        self.orders: Dict[str, List[Dict[str, Any]]] = {}
        self.billing_attempts: Dict[str, List[Dict[str, Any]]] = {}
        self.subscriptions: Dict[str, Dict[str, Any]] = {}
        self.renewals: List[Dict[str, Any]] = []
        self.errors: Dict[str, Exception] = {}

    def _record(self, name: str, *args) -> None:
        self.calls.append((name, *args))
        if name in self.errors:
            raise self.errors[name]

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    def calls_to(self, name: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == name]

    async def cancel_subscription(self, subscription_id):
        self._record("cancel_subscription", subscription_id)
        return {"id": subscription_id, "status": "CANCELLED"}

    async def pause_subscription(self, subscription_id):
        self._record("pause_subscription", subscription_id)
        return {"id": subscription_id, "status": "PAUSED"}

    async def schedule_payment_retry(self, subscription_id, retry_date):
        self._record("schedule_payment_retry", subscription_id, retry_date)
        return {"id": subscription_id, "status": "ACTIVE"}

    async def get_subscription(self, subscription_id):
        self._record("get_subscription", subscription_id)
        return self.subscriptions.get(subscription_id)

    async def get_subscription_orders(self, subscription_id):
        self._record("get_subscription_orders", subscription_id)
        return list(self.orders.get(subscription_id, []))

    async def get_billing_attempts(self, subscription_id):
        self._record("get_billing_attempts", subscription_id)
        return list(self.billing_attempts.get(subscription_id, []))

    async def get_upcoming_renewals(self, within_days=3, first=100):
        self._record("get_upcoming_renewals", within_days)
        return list(self.renewals)


class FakeEmailService(IEmailService):
    """발송 내역을 기록하는 이메일 더블 (알 수 없는 템플릿은 실제와 같이 예외)"""

    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []
        self.error: Optional[Exception] = None

    async def send_email(self, to, template_key, data):
        if LifecycleConfig.get_template(template_key) is None:
            raise TemplateNotFoundError(template_key)
        if self.error is not None:
            raise self.error
        self.sent.append({"to": to, "template": template_key, "data": data})
        return {"template": template_key, "status_code": 202}

    def templates(self) -> List[str]:
        return [item["template"] for item in self.sent]


class FakeAnalyticsService(IAnalyticsService):
    def __init__(self) -> None:
        self.events: List[tuple] = []
        self.fail_on: set = set()

    async def track_event(self, name, properties=None):
        if name in self.fail_on:
            raise RuntimeError(f"analytics down: {name}")
        self.events.append((name, properties or {}))

    def names(self) -> List[str]:
        return [name for name, _ in self.events]

    def find(self, name: str) -> List[Dict[str, Any]]:
        return [props for event_name, props in self.events if event_name == name]


class StaticSignalProvider(IHealthSignalProvider):
    """고정 신호를 반환하는 헬스 입력값 더블"""

    def __init__(self, signals: Optional[HealthSignals] = None) -> None:
        self.signals = signals or HealthSignals()
        self.collected: List[Subscription] = []

    async def collect(self, subscription):
        self.collected.append(subscription)
        return self.signals


def make_customer(**overrides) -> Dict[str, Any]:
    customer = {"id": "cust_1", "email": "buyer@example.com", "first_name": "Jamie"}
    customer.update(overrides)
    return customer


def make_subscription(subscription_id: str = "1001", **overrides) -> Dict[str, Any]:
    subscription = {
        "id": subscription_id,
        "customer": {"id": "cust_1"},
        "status": "active",
        "selling_plan": {
            "name": "Monthly Coffee",
            "deliveryPolicy": {"interval": "MONTH", "intervalCount": 1},
        },
        "line_items": [{"title": "House Blend"}],
        "price": "24.00",
        "currency": "USD",
        "created_at": "2023-12-01T00:00:00Z",
        "next_billing_date": "2024-03-04T00:00:00Z",
    }
    subscription.update(overrides)
    return subscription


def make_event(topic: str, event_id: Optional[str] = "evt_1", **fields) -> bytes:
    body: Dict[str, Any] = {"topic": topic, **fields}
    if event_id is not None:
        body["id"] = event_id
    return json.dumps(body).encode("utf-8")


def sign(raw: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return compute_signature(raw, secret)


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        SHOPIFY_WEBHOOK_SECRET=WEBHOOK_SECRET,
        INTERNAL_API_TOKEN=INTERNAL_TOKEN,
        STOREFRONT_BASE_URL=STOREFRONT,
        WEBHOOK_DEDUP_BACKEND="none",
        WEBHOOK_HANDLER_TIMEOUT_SECONDS=5.0,
        RENEWAL_REMINDER_ENABLED=False,
        RENEWAL_REMINDER_WINDOW_DAYS=3,
    )


@pytest.fixture
def commerce() -> FakeCommerceClient:
    return FakeCommerceClient()


@pytest.fixture
def email() -> FakeEmailService:
    return FakeEmailService()


@pytest.fixture
def analytics() -> FakeAnalyticsService:
    return FakeAnalyticsService()


@pytest.fixture
def signal_provider() -> StaticSignalProvider:
    return StaticSignalProvider()


@pytest.fixture
def services(test_settings, commerce, email, analytics, signal_provider, clock):
    return ServiceFactory.build_services(
        test_settings,
        commerce=commerce,
        email=email,
        analytics=analytics,
        signal_provider=signal_provider,
        clock=clock,
    )


@pytest.fixture
def processor(services):
    return services.processor


@pytest.fixture
def client(test_settings, services) -> TestClient:
    from main import create_app

    return TestClient(create_app(test_settings, services))
