"""구독 헬스 평가 테스트"""
from datetime import timedelta

import pytest

from conftest import FakeAnalyticsService, FakeCommerceClient, StaticSignalProvider, make_subscription
from schemas import HealthSignals, HealthStatus, Order, Subscription, SupportMetrics
from services.health_monitor import (
    CommerceHealthSignalProvider,
    SubscriptionHealthMonitor,
    calculate_overall_health,
    check_fulfillment_health,
    check_payment_health,
    check_retention_risk,
    check_support_health,
)
from services.subscription_metrics import SubscriptionMetrics


class _FixedChurnModel:
    def __init__(self, score):
        self._score = score

    async def score(self, factors):
        self.factors = factors
        return self._score


def _monitor(signals=None, clock=None):
    analytics = FakeAnalyticsService()
    commerce = FakeCommerceClient()
    metrics = SubscriptionMetrics(analytics, commerce, clock=clock)
    provider = StaticSignalProvider(signals)
    return SubscriptionHealthMonitor(analytics, provider, metrics, clock=clock), analytics


def _checks(signals):
    return {
        "payment_health": check_payment_health(signals),
        "fulfillment_health": check_fulfillment_health(signals),
        "retention_risk": check_retention_risk(signals),
        "support_health": check_support_health(signals),
    }


@pytest.mark.parametrize(
    "signals, expected",
    [
        (HealthSignals(), 100.0),
        (HealthSignals(payment_failure_rate=0.06), 60.0),
        (HealthSignals(average_delivery_delay_days=2.5), 70.0),
        (HealthSignals(churn_risk_score=71), 80.0),
        (HealthSignals(support=SupportMetrics(average_response_hours=30)), 90.0),
        (
            HealthSignals(
                payment_failure_rate=0.5,
                average_delivery_delay_days=5,
                churn_risk_score=95,
                support=SupportMetrics(average_response_hours=48),
            ),
            0.0,
        ),
    ],
)
def test_overall_score_is_weighted_sum(signals, expected):
    assert calculate_overall_health(_checks(signals)) == pytest.approx(expected)


def test_thresholds_are_exclusive():
    signals = HealthSignals(
        payment_failure_rate=0.05,
        average_delivery_delay_days=2.0,
        churn_risk_score=70,
        support=SupportMetrics(average_response_hours=24),
    )

    assert all(check.status == HealthStatus.HEALTHY for check in _checks(signals).values())


def test_category_statuses():
    signals = HealthSignals(
        payment_failure_rate=0.2,
        average_delivery_delay_days=3,
        churn_risk_score=90,
        support=SupportMetrics(average_response_hours=36),
    )
    checks = _checks(signals)

    assert checks["payment_health"].status == HealthStatus.CRITICAL
    assert checks["fulfillment_health"].status == HealthStatus.ATTENTION_NEEDED
    assert checks["retention_risk"].status == HealthStatus.HIGH_RISK
    assert checks["support_health"].status == HealthStatus.ATTENTION_NEEDED
    assert checks["payment_health"].alerts


@pytest.mark.asyncio
async def test_evaluate_emits_one_alert_per_unhealthy_category(clock):
    signals = HealthSignals(
        payment_failure_rate=0.2,
        average_delivery_delay_days=3,
        churn_risk_score=90,
        support=SupportMetrics(average_response_hours=36),
    )
    monitor, analytics = _monitor(signals, clock)

    health = await monitor.evaluate(Subscription.model_validate(make_subscription()))

    assert health.overall_health_score == 0.0
    assert analytics.names().count("subscription_health_check") == 1
    alerts = analytics.find("subscription_alert")
    assert [(a["type"], a["severity"]) for a in alerts] == [
        ("payment_health", "high"),
        ("retention_risk", "medium"),
        ("fulfillment_health", "medium"),
        ("support_health", "low"),
    ]
    assert all(a["subscription_id"] == "1001" for a in alerts)


@pytest.mark.asyncio
async def test_healthy_subscription_emits_no_alerts(clock, fixed_now):
    monitor, analytics = _monitor(clock=clock)

    health = await monitor.evaluate(Subscription.model_validate(make_subscription()))

    assert health.overall_health_score == 100.0
    assert health.evaluated_at == fixed_now
    assert health.customer_id == "cust_1"
    assert analytics.names() == ["subscription_health_check"]


@pytest.mark.asyncio
async def test_order_fulfillment_delay(clock, fixed_now):
    monitor, analytics = _monitor(clock=clock)
    order = Order(
        id="5001",
        subscription_id="1001",
        created_at=(fixed_now - timedelta(days=6)).isoformat(),
        processed_at=(fixed_now - timedelta(days=6) + timedelta(hours=5)).isoformat(),
        estimated_delivery_at=(fixed_now - timedelta(days=3)).isoformat(),
    )

    fulfillment = await monitor.monitor_order_fulfillment(order)

    assert fulfillment.delayed is True
    assert fulfillment.delay_days == pytest.approx(3.0)
    assert fulfillment.processing_time_hours == pytest.approx(5.0)
    assert analytics.names() == ["order_fulfillment_check", "subscription_alert"]
    assert analytics.find("subscription_alert")[0]["type"] == "fulfillment_delay"


@pytest.mark.asyncio
async def test_order_on_time_has_no_alert(clock, fixed_now):
    monitor, analytics = _monitor(clock=clock)
    order = Order(id="5002", estimated_delivery_at=(fixed_now + timedelta(days=2)).isoformat())

    fulfillment = await monitor.monitor_order_fulfillment(order)

    assert fulfillment.delayed is False
    assert fulfillment.delay_days == 0.0
    assert analytics.names() == ["order_fulfillment_check"]


@pytest.mark.asyncio
async def test_commerce_signal_provider_derives_payment_and_delivery(clock):
    commerce = FakeCommerceClient()
    commerce.billing_attempts["1001"] = [
        {"id": "a1", "created_at": "2024-02-01T00:00:00Z", "ready": True, "error_code": "CARD_DECLINED"},
        {"id": "a2", "created_at": "2024-02-02T00:00:00Z", "ready": True, "error_code": "CARD_DECLINED"},
        {"id": "a3", "created_at": "2024-02-04T00:00:00Z", "completed_at": "2024-02-04T00:00:00Z", "ready": True, "error_code": None},
        {"id": "a4", "created_at": "2024-03-01T00:00:00Z", "ready": True, "error_code": None},
        {"id": "a5", "created_at": "2024-03-01T06:00:00Z", "ready": False, "error_code": None},
    ]
    commerce.orders["1001"] = [
        {"id": "o1", "created_at": "2024-01-01T00:00:00Z", "estimated_delivery_at": "2024-01-05T00:00:00Z", "delivered_at": "2024-01-05T00:00:00Z"},
        {"id": "o2", "created_at": "2024-02-01T00:00:00Z", "estimated_delivery_at": "2024-02-05T00:00:00Z", "delivered_at": "2024-02-09T00:00:00Z"},
    ]
    churn_model = _FixedChurnModel(150)
    provider = CommerceHealthSignalProvider(commerce, churn_model=churn_model, clock=clock)

    signals = await provider.collect(Subscription.model_validate(make_subscription()))

    assert signals.payment_failure_rate == pytest.approx(0.5)
    assert signals.retry_success_rate == pytest.approx(1.0)
    assert signals.average_retry_resolution_hours == pytest.approx(72.0)
    assert signals.on_time_delivery_rate == pytest.approx(0.5)
    assert signals.delay_frequency == pytest.approx(0.5)
    assert signals.average_delivery_delay_days == pytest.approx(2.0)
    assert signals.churn_risk_score == 100.0
    assert churn_model.factors.payment_failures == 2
    assert churn_model.factors.order_count == 2
    assert churn_model.factors.average_order_interval_days == pytest.approx(31.0)
