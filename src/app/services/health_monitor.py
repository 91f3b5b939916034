"""
구독 헬스/이탈 위험 평가

카테고리별 상태는 고정 임계값으로 이진 판정하고, 전체 점수는 healthy 카테고리의 가중치 합(0~100)이다.
평가 입력값은 IHealthSignalProvider에서 받으며, 이탈 위험 점수와 지원 지표는 교체 가능한 전략으로 둔다.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from core.base_service import BaseService
from core.interfaces import (
    IAnalyticsService, IChurnRiskModel, ICommerceClient,
    IHealthSignalProvider, ISupportMetricsSource,
)
from core.lifecycle_config import LifecycleConfig
from schemas import (
    Alert, AlertSeverity, ChurnRiskFactors, FulfillmentMetrics, HealthCheckResult,
    HealthMetrics, HealthSignals, HealthStatus, Order, Subscription, SupportMetrics,
)
from services.subscription_metrics import SubscriptionMetrics, subscription_age_days
from utils.value_parsers import parse_datetime, utc_now

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class NeutralChurnRiskModel(IChurnRiskModel):
    """기본 이탈 위험 모델 (가중치가 정해지지 않았으므로 항상 0)"""

    async def score(self, factors: ChurnRiskFactors) -> float:
        return 0.0


class NullSupportMetricsSource(ISupportMetricsSource):
    """지원 티켓 시스템 미연동 시 사용"""

    async def get_support_metrics(self, customer_id: Optional[str]) -> SupportMetrics:
        return SupportMetrics()


def _mean(values: List[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


class CommerceHealthSignalProvider(IHealthSignalProvider):
    """커머스 플랫폼의 결제 시도/주문 이력에서 헬스 입력값을 계산"""

    def __init__(
        self,
        commerce: ICommerceClient,
        churn_model: Optional[IChurnRiskModel] = None,
        support_source: Optional[ISupportMetricsSource] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.commerce = commerce
        self.churn_model = churn_model or NeutralChurnRiskModel()
        self.support_source = support_source or NullSupportMetricsSource()
        self.clock = clock or utc_now

    async def collect(self, subscription: Subscription) -> HealthSignals:
        now = self.clock()
        attempts = await self.commerce.get_billing_attempts(subscription.id)
        orders = await self.commerce.get_subscription_orders(subscription.id)

        payment = self._payment_signals(attempts)
        fulfillment = self._fulfillment_signals(orders, now)

        factors = ChurnRiskFactors(
            subscription_id=subscription.id,
            customer_id=subscription.customer_id,
            payment_failures=payment["failures"],
            subscription_age_days=subscription_age_days(subscription.created_at, now),
            order_count=len(orders),
            average_order_interval_days=self._average_order_interval_days(orders),
        )
        support = await self.support_source.get_support_metrics(subscription.customer_id)
        factors.support_tickets = support.open_tickets
        churn_score = min(100.0, max(0.0, float(await self.churn_model.score(factors))))

        return HealthSignals(
            payment_failure_rate=payment["failure_rate"],
            retry_success_rate=payment["retry_success_rate"],
            average_retry_resolution_hours=payment["resolution_hours"],
            on_time_delivery_rate=fulfillment["on_time_rate"],
            average_processing_hours=fulfillment["processing_hours"],
            delay_frequency=fulfillment["delay_frequency"],
            average_delivery_delay_days=fulfillment["average_delay_days"],
            churn_risk_score=churn_score,
            support=support,
        )

    @staticmethod
    def _payment_signals(attempts: List[Dict[str, Any]]) -> Dict[str, Any]:
        completed = [a for a in attempts if a.get("ready", True)]
        completed.sort(key=lambda a: parse_datetime(a.get("created_at")) or _EPOCH)

        failures = [a for a in completed if a.get("error_code")]
        failure_rate = len(failures) / len(completed) if completed else 0.0

        # 연속 실패 구간이 이후 성공으로 끝나면 재시도 성공으로 본다
        sequences = 0
        resolved = 0
        resolution_hours: List[float] = []
        first_failure_at: Optional[datetime] = None
        for attempt in completed:
            if attempt.get("error_code"):
                if first_failure_at is None:
                    sequences += 1
                    first_failure_at = parse_datetime(attempt.get("created_at")) or utc_now()
                continue
            if first_failure_at is not None:
                resolved += 1
                succeeded_at = parse_datetime(attempt.get("completed_at") or attempt.get("created_at"))
                if succeeded_at:
                    resolution_hours.append(max(0.0, (succeeded_at - first_failure_at).total_seconds() / 3600))
                first_failure_at = None

        return {
            "failures": len(failures),
            "failure_rate": failure_rate,
            "retry_success_rate": resolved / sequences if sequences else None,
            "resolution_hours": _mean(resolution_hours),
        }

    @staticmethod
    def _fulfillment_signals(orders: List[Dict[str, Any]], now: datetime) -> Dict[str, Any]:
        delays: List[float] = []
        processing: List[float] = []
        threshold = LifecycleConfig.THRESHOLDS.delivery_delay_days

        for order in orders:
            created = parse_datetime(order.get("created_at"))
            processed = parse_datetime(order.get("processed_at"))
            if created and processed:
                processing.append(max(0.0, (processed - created).total_seconds() / 3600))

            estimated = parse_datetime(order.get("estimated_delivery_at"))
            if estimated is None:
                continue
            reference = parse_datetime(order.get("delivered_at")) or now
            if reference < estimated and not order.get("delivered_at"):
                # 아직 예정일 이전인 배송은 지연 여부를 판단하지 않는다
                continue
            delays.append(max(0.0, (reference - estimated).total_seconds() / SECONDS_PER_DAY))

        on_time = [d for d in delays if d == 0]
        delayed = [d for d in delays if d > threshold]
        return {
            "on_time_rate": len(on_time) / len(delays) if delays else None,
            "processing_hours": _mean(processing),
            "delay_frequency": len(delayed) / len(delays) if delays else 0.0,
            "average_delay_days": _mean(delays) or 0.0,
        }

    @staticmethod
    def _average_order_interval_days(orders: List[Dict[str, Any]]) -> Optional[float]:
        dates = sorted(d for d in (parse_datetime(o.get("created_at")) for o in orders) if d)
        if len(dates) < 2:
            return None
        gaps = [(b - a).total_seconds() / SECONDS_PER_DAY for a, b in zip(dates, dates[1:])]
        return _mean(gaps)


# 카테고리별 판정 (순수 함수)

def check_payment_health(signals: HealthSignals) -> HealthCheckResult:
    thresholds = LifecycleConfig.THRESHOLDS
    alerts: List[str] = []
    status = HealthStatus.HEALTHY
    if signals.payment_failure_rate > thresholds.payment_failure_rate:
        status = HealthStatus.CRITICAL
        alerts.append(f"payment failure rate {signals.payment_failure_rate:.2%} exceeds {thresholds.payment_failure_rate:.0%}")
    resolution = signals.average_retry_resolution_hours
    if resolution is not None and resolution > thresholds.retry_resolution_hours:
        alerts.append(f"payment retries take {resolution:.1f}h to resolve")
    return HealthCheckResult(
        status=status,
        metrics={
            "failure_rate": signals.payment_failure_rate,
            "retry_success_rate": signals.retry_success_rate,
            "average_resolution_time": resolution,
        },
        alerts=alerts,
    )


def check_fulfillment_health(signals: HealthSignals) -> HealthCheckResult:
    threshold = LifecycleConfig.THRESHOLDS.delivery_delay_days
    delayed = signals.average_delivery_delay_days > threshold
    return HealthCheckResult(
        status=HealthStatus.ATTENTION_NEEDED if delayed else HealthStatus.HEALTHY,
        metrics={
            "on_time_delivery_rate": signals.on_time_delivery_rate,
            "average_processing_time": signals.average_processing_hours,
            "delay_frequency": signals.delay_frequency,
            "average_delivery_delay_days": signals.average_delivery_delay_days,
        },
        alerts=[f"deliveries run {signals.average_delivery_delay_days:.1f} days late"] if delayed else [],
    )


def check_retention_risk(signals: HealthSignals) -> HealthCheckResult:
    high_risk = signals.churn_risk_score > LifecycleConfig.THRESHOLDS.churn_risk
    return HealthCheckResult(
        status=HealthStatus.HIGH_RISK if high_risk else HealthStatus.HEALTHY,
        metrics={"churn_risk_score": signals.churn_risk_score},
        alerts=[f"churn risk score {signals.churn_risk_score:.0f}"] if high_risk else [],
    )


def check_support_health(signals: HealthSignals) -> HealthCheckResult:
    support = signals.support
    slow = support.average_response_hours > LifecycleConfig.THRESHOLDS.support_response_hours
    return HealthCheckResult(
        status=HealthStatus.ATTENTION_NEEDED if slow else HealthStatus.HEALTHY,
        metrics={
            "open_tickets": support.open_tickets,
            "average_response_time": support.average_response_hours,
            "satisfaction_rating": support.satisfaction_rating,
        },
        alerts=[f"support response time {support.average_response_hours:.1f}h"] if slow else [],
    )


def calculate_overall_health(checks: Dict[str, HealthCheckResult]) -> float:
    """healthy 카테고리는 weight*100, 그 외는 0"""
    score = 0.0
    for name, weight in LifecycleConfig.HEALTH_WEIGHTS.items():
        check = checks.get(name)
        if check is not None and check.healthy:
            score += weight * 100
    return round(score, 6)


# (카테고리, 알림 대상 상태, 심각도, 메시지)
HEALTH_ALERT_RULES = (
    ("payment_health", HealthStatus.CRITICAL, AlertSeverity.HIGH, "Critical payment health issues detected"),
    ("retention_risk", HealthStatus.HIGH_RISK, AlertSeverity.MEDIUM, "High retention risk detected"),
    ("fulfillment_health", HealthStatus.ATTENTION_NEEDED, AlertSeverity.MEDIUM, "Fulfillment delays detected"),
    ("support_health", HealthStatus.ATTENTION_NEEDED, AlertSeverity.LOW, "Slow support response detected"),
)


def build_health_alerts(health: HealthMetrics) -> List[Alert]:
    checks = health.checks()
    alerts: List[Alert] = []
    for name, status, severity, message in HEALTH_ALERT_RULES:
        check = checks[name]
        if check.status == status:
            alerts.append(Alert(
                type=name,
                severity=severity,
                message=message,
                metrics=check.metrics,
                subscription_id=health.subscription_id,
            ))
    return alerts


class SubscriptionHealthMonitor(BaseService):
    """구독 헬스 평가 및 알림 전송"""

    def __init__(
        self,
        analytics: IAnalyticsService,
        signal_provider: IHealthSignalProvider,
        metrics: SubscriptionMetrics,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(analytics)
        self.signal_provider = signal_provider
        self.metrics = metrics
        self.clock = clock or utc_now

    async def evaluate(self, subscription: Subscription) -> HealthMetrics:
        """헬스 평가 후 `subscription_health_check` 1건과 임계값 초과 카테고리별 알림 1건씩 전송"""
        signals = await self.signal_provider.collect(subscription)
        checks = {
            "payment_health": check_payment_health(signals),
            "fulfillment_health": check_fulfillment_health(signals),
            "retention_risk": check_retention_risk(signals),
            "support_health": check_support_health(signals),
        }
        health = HealthMetrics(
            subscription_id=subscription.id,
            customer_id=subscription.customer_id,
            overall_health_score=calculate_overall_health(checks),
            evaluated_at=self.clock(),
            **checks,
        )

        logger.info(
            "[HEALTH] subscription=%s score=%.1f statuses=%s",
            subscription.id,
            health.overall_health_score,
            {name: check.status.value for name, check in checks.items()},
        )
        await self.emit("subscription_health_check", health.model_dump(mode="json"))

        alerts = build_health_alerts(health)
        if alerts:
            await self.metrics.emit_alerts(alerts)
        return health

    async def monitor_order_fulfillment(self, order: Order) -> FulfillmentMetrics:
        """주문 처리 시간/배송 지연 확인. 지연이면 `fulfillment_delay` 알림"""
        now = self.clock()
        created = parse_datetime(order.created_at)
        processed = parse_datetime(order.processed_at)
        processing_hours = None
        if created and processed:
            processing_hours = max(0.0, (processed - created).total_seconds() / 3600)

        delay_days = 0.0
        estimated = parse_datetime(order.estimated_delivery_at)
        if estimated is not None:
            reference = parse_datetime(order.delivered_at) or now
            delay_days = max(0.0, (reference - estimated).total_seconds() / SECONDS_PER_DAY)

        fulfillment = FulfillmentMetrics(
            order_id=order.id,
            subscription_id=order.subscription_id,
            processing_time_hours=processing_hours,
            shipping_status=order.fulfillment_status,
            delivery_estimate=order.estimated_delivery_at,
            tracking_info=order.tracking_info,
            delay_days=round(delay_days, 3),
            delayed=delay_days > LifecycleConfig.THRESHOLDS.delivery_delay_days,
        )
        await self.emit("order_fulfillment_check", fulfillment.model_dump(mode="json"))

        if fulfillment.delayed:
            await self.metrics.emit_alerts([Alert(
                type="fulfillment_delay",
                severity=AlertSeverity.MEDIUM,
                message="Order delivery is running late",
                metrics=fulfillment.model_dump(mode="json"),
                subscription_id=order.subscription_id,
            )])
        return fulfillment
