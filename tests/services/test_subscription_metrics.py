"""구독 지표 전송 테스트"""
from decimal import Decimal

import pytest

from conftest import make_subscription
from schemas import Alert, AlertSeverity, Order, Subscription
from services.subscription_metrics import SubscriptionMetrics, subscription_age_days, sum_order_totals


@pytest.fixture
def metrics(analytics, commerce, clock):
    return SubscriptionMetrics(analytics, commerce, clock=clock)


def test_sum_order_totals_handles_money_shapes():
    orders = [
        {"total_price": "10.50"},
        {"total_price": {"amount": "20.25", "currencyCode": "USD"}},
        {"total_price": 5},
        {"total_price": None},
        {"total_price": "n/a"},
        {},
    ]

    assert sum_order_totals(orders) == Decimal("35.75")
    assert sum_order_totals([]) == Decimal("0")


def test_subscription_age_days(fixed_now):
    assert subscription_age_days("2023-12-01T00:00:00Z", fixed_now) == 91
    assert subscription_age_days(None, fixed_now) is None
    assert subscription_age_days("2099-01-01T00:00:00Z", fixed_now) == 0


@pytest.mark.asyncio
async def test_subscription_metrics_event_name(metrics, analytics):
    subscription = Subscription.model_validate(make_subscription())

    result = await metrics.track_subscription_metrics(subscription, "created")

    assert analytics.names() == ["subscription_created_metrics"]
    assert result["billing_interval"] == "MONTH"
    assert result["billing_interval_count"] == 1
    assert result["customer_id"] == "cust_1"


@pytest.mark.asyncio
async def test_lifetime_value_queries_orders_once(metrics, commerce):
    commerce.orders["1001"] = [{"total_price": "10.00"}, {"total_price": "2.50"}]

    assert await metrics.calculate_lifetime_value("1001") == Decimal("12.50")
    assert await metrics.calculate_lifetime_value("1001", orders=[{"total_price": "1"}]) == Decimal("1")
    assert commerce.count("get_subscription_orders") == 1


@pytest.mark.asyncio
async def test_retention_metrics(metrics, commerce, analytics):
    commerce.orders["1001"] = [{"total_price": "24.00"}, {"total_price": "24.00"}]
    subscription = Subscription.model_validate(make_subscription())

    result = await metrics.track_retention_metrics(subscription)

    assert result["lifetime_value"] == Decimal("48.00")
    assert result["total_orders"] == 2
    assert result["subscription_age_days"] == 91
    assert "churn_risk_score" not in result
    assert analytics.names() == ["subscription_retention_metrics"]


@pytest.mark.asyncio
async def test_order_metrics_counts_subscription_orders(metrics, commerce, analytics):
    commerce.orders["1001"] = [{"id": "1"}, {"id": "2"}, {"id": "3"}]
    order = Order(id="3", shipping_lines=[{"title": "Ground"}], line_items=[{}, {}])
    subscription = Subscription.model_validate(make_subscription())

    result = await metrics.track_order_metrics(order, subscription)

    assert result["subscription_order_number"] == 3
    assert result["shipping_method"] == "Ground"
    assert result["items_count"] == 2
    assert analytics.names() == ["subscription_order_tracked"]


@pytest.mark.asyncio
async def test_emit_alerts_one_event_per_alert(metrics, analytics):
    alerts = [
        Alert(type="payment_health", severity=AlertSeverity.HIGH, message="a", subscription_id="1001"),
        Alert(type="support_health", severity=AlertSeverity.LOW, message="b", subscription_id="1001"),
    ]

    await metrics.emit_alerts(alerts)

    assert [props["severity"] for props in analytics.find("subscription_alert")] == ["high", "low"]


@pytest.mark.asyncio
async def test_analytics_failure_propagates(metrics, analytics):
    analytics.fail_on = {"subscription_payment_metrics"}
    subscription = Subscription.model_validate(make_subscription())

    with pytest.raises(RuntimeError):
        await metrics.track_payment_metrics(subscription, {"success": False})
