"""
웹훅 이벤트 및 헬스 체크 스키마 정의
커머스 플랫폼이 보내는 필드는 모두 받아두고(extra=allow), 핸들러가 쓰는 필드만 검증합니다.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, validator


def _coerce_id(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(int(value))
    return value


class WebhookEnvelope(BaseModel):
    """웹훅 공통 봉투 (검증 이후 변경하지 않음)"""
    topic: str = Field(..., description="이벤트 topic (예: subscription/created)")
    id: Optional[str] = Field(None, description="이벤트 ID (중복 감지에 사용)")
    payload: Dict[str, Any] = Field(default_factory=dict, description="topic별 본문")

    @validator("id", pre=True)
    def normalize_id(cls, v):
        return _coerce_id(v)

    class Config:
        frozen = True

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "WebhookEnvelope":
        """본문에서 봉투 생성. `payload` 객체가 없으면 최상위 필드를 본문으로 사용"""
        nested = body.get("payload")
        payload = nested if isinstance(nested, dict) else {
            key: value for key, value in body.items() if key not in ("topic", "id")
        }
        return cls(topic=body.get("topic"), id=body.get("id"), payload=payload)


class Customer(BaseModel):
    """구독 고객"""
    id: Optional[str] = None
    email: str
    first_name: Optional[str] = None

    @validator("id", pre=True)
    def normalize_id(cls, v):
        return _coerce_id(v)

    class Config:
        extra = "allow"


class Subscription(BaseModel):
    """커머스 플랫폼 구독 스냅샷 (권한 있는 원본은 플랫폼에 있음)"""
    id: str
    customer: Optional[Dict[str, Any]] = None
    status: Optional[str] = None
    selling_plan: Optional[Dict[str, Any]] = None
    line_items: List[Dict[str, Any]] = Field(default_factory=list)
    price: Any = None
    currency: Optional[str] = None
    created_at: Optional[str] = None
    next_billing_date: Optional[str] = None
    last_order_date: Optional[str] = None

    @validator("id", pre=True)
    def normalize_id(cls, v):
        return _coerce_id(v)

    class Config:
        extra = "allow"

    @property
    def customer_id(self) -> Optional[str]:
        return _coerce_id((self.customer or {}).get("id"))

    @property
    def plan_name(self) -> Optional[str]:
        return (self.selling_plan or {}).get("name")

    @property
    def product_title(self) -> Optional[str]:
        if self.line_items:
            return self.line_items[0].get("title")
        return None

    @property
    def delivery_policy(self) -> Dict[str, Any]:
        policy = (self.selling_plan or {}).get("deliveryPolicy") or (self.selling_plan or {}).get("delivery_policy")
        return policy if isinstance(policy, dict) else {}


class Order(BaseModel):
    """구독 주문"""
    id: str
    order_number: Any = None
    total_price: Any = None
    currency: Optional[str] = None
    financial_status: Optional[str] = None
    fulfillment_status: Optional[str] = None
    line_items: List[Dict[str, Any]] = Field(default_factory=list)
    shipping_lines: List[Dict[str, Any]] = Field(default_factory=list)
    estimated_delivery_at: Optional[str] = None
    delivered_at: Optional[str] = None
    tracking_info: Any = None
    status_url: Optional[str] = None
    created_at: Optional[str] = None
    processed_at: Optional[str] = None
    subscription_id: Optional[str] = None
    customer: Optional[Dict[str, Any]] = None

    @validator("id", "subscription_id", pre=True)
    def normalize_ids(cls, v):
        return _coerce_id(v)

    class Config:
        extra = "allow"


# topic별 본문

class SubscriptionEvent(BaseModel):
    """subscription/created 본문"""
    customer: Customer
    subscription: Subscription

    class Config:
        extra = "allow"


class SubscriptionUpdatedEvent(SubscriptionEvent):
    """subscription/updated 본문"""
    changes: Dict[str, Any] = Field(default_factory=dict)


class SubscriptionCancelledEvent(SubscriptionEvent):
    """subscription/cancelled 본문"""
    reason: Optional[str] = None


class PaymentFailureEvent(SubscriptionEvent):
    """subscription/payment_failure 본문"""
    attempt_number: int = Field(..., description="몇 번째 결제 실패인지 (재시도 표에 없는 값은 최종 실패)")
    failure_reason: Optional[str] = None
    payment_method: Any = None


class PaymentSuccessEvent(SubscriptionEvent):
    """subscription/payment_success 본문"""
    order: Optional[Order] = None
    retry_attempt: Optional[int] = None
    payment_method: Any = None

    @property
    def followed_retry(self) -> bool:
        return bool(self.retry_attempt and self.retry_attempt > 0)


class OrderCreatedEvent(BaseModel):
    """orders/create 본문 (subscription_id가 있을 때만 처리)"""
    customer: Customer
    order: Order
    subscription: Optional[Subscription] = None
    subscription_id: Optional[str] = None

    @validator("subscription_id", pre=True)
    def normalize_subscription_id(cls, v):
        return _coerce_id(v)

    class Config:
        extra = "allow"

    def resolved_subscription(self) -> Subscription:
        if self.subscription is not None:
            return self.subscription
        return Subscription(id=self.subscription_id)


# 헬스 체크

class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    CRITICAL = "critical"
    HIGH_RISK = "high_risk"
    ATTENTION_NEEDED = "attention_needed"


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Alert(BaseModel):
    """외부 싱크로 내보내는 일회성 알림"""
    type: str
    severity: AlertSeverity
    message: str
    metrics: Dict[str, Any] = Field(default_factory=dict)
    subscription_id: Optional[str] = None


class HealthCheckResult(BaseModel):
    """카테고리별 헬스 체크 결과"""
    status: HealthStatus
    metrics: Dict[str, Any] = Field(default_factory=dict)
    alerts: List[str] = Field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return self.status == HealthStatus.HEALTHY


class HealthMetrics(BaseModel):
    """이벤트마다 다시 계산되는 읽기 전용 스냅샷"""
    subscription_id: str
    customer_id: Optional[str] = None
    payment_health: HealthCheckResult
    fulfillment_health: HealthCheckResult
    retention_risk: HealthCheckResult
    support_health: HealthCheckResult
    overall_health_score: float = Field(..., ge=0, le=100)
    evaluated_at: datetime

    def checks(self) -> Dict[str, HealthCheckResult]:
        return {
            "payment_health": self.payment_health,
            "fulfillment_health": self.fulfillment_health,
            "retention_risk": self.retention_risk,
            "support_health": self.support_health,
        }


class SupportMetrics(BaseModel):
    """고객 지원 지표"""
    open_tickets: int = 0
    average_response_hours: float = 0.0
    satisfaction_rating: Optional[float] = None


class ChurnRiskFactors(BaseModel):
    """이탈 위험 모델 입력"""
    subscription_id: str
    customer_id: Optional[str] = None
    payment_failures: int = 0
    subscription_age_days: Optional[int] = None
    order_count: int = 0
    average_order_interval_days: Optional[float] = None
    support_tickets: int = 0


class HealthSignals(BaseModel):
    """헬스 평가에 필요한 과거 집계값"""
    payment_failure_rate: float = 0.0
    retry_success_rate: Optional[float] = None
    average_retry_resolution_hours: Optional[float] = None
    on_time_delivery_rate: Optional[float] = None
    average_processing_hours: Optional[float] = None
    delay_frequency: float = 0.0
    average_delivery_delay_days: float = 0.0
    churn_risk_score: float = Field(0.0, ge=0, le=100)
    support: SupportMetrics = Field(default_factory=SupportMetrics)


class FulfillmentMetrics(BaseModel):
    """주문 이행 모니터링 결과"""
    order_id: str
    subscription_id: Optional[str] = None
    processing_time_hours: Optional[float] = None
    shipping_status: Optional[str] = None
    delivery_estimate: Optional[str] = None
    tracking_info: Any = None
    delay_days: float = 0.0
    delayed: bool = False


class RetryDecision(BaseModel):
    """결제 실패 차수에 대한 재시도/일시정지 결정"""
    attempt_number: int
    retry_days: Optional[int] = None
    retry_at: Optional[datetime] = None

    @property
    def terminal(self) -> bool:
        return self.retry_days is None
