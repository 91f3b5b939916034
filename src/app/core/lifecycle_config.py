"""
구독 라이프사이클 상수 관리
웹훅 topic, 결제 재시도 일정, 헬스 체크 임계값/가중치, 이메일 템플릿 정의
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional


class WebhookTopic(str, Enum):
    """처리 대상 웹훅 topic"""
    SUBSCRIPTION_CREATED = "subscription/created"
    SUBSCRIPTION_UPDATED = "subscription/updated"
    SUBSCRIPTION_CANCELLED = "subscription/cancelled"
    PAYMENT_FAILURE = "subscription/payment_failure"
    PAYMENT_SUCCESS = "subscription/payment_success"
    ORDER_CREATED = "orders/create"


class EmailTemplate(str, Enum):
    """발송 가능한 이메일 템플릿 키"""
    SUBSCRIPTION_WELCOME = "subscription_welcome"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"
    PAYMENT_RETRY_SCHEDULED = "payment_retry_scheduled"
    PAYMENT_FAILED_FINAL = "payment_failed_final"
    PAYMENT_RETRY_SUCCESS = "payment_retry_success"
    RENEWAL_REMINDER = "subscription_renewal_reminder"
    ORDER_CONFIRMATION = "order_confirmation"


@dataclass(frozen=True)
class TemplateDefinition:
    """템플릿별 제목과 SendGrid 템플릿 ID 설정 키"""
    subject: str
    template_setting: str


@dataclass(frozen=True)
class HealthThresholds:
    """헬스 체크 임계값"""
    payment_failure_rate: float = 0.05  # 5% 초과 시 critical
    churn_risk: float = 70.0  # 0~100
    delivery_delay_days: float = 2.0
    retry_resolution_hours: float = 48.0
    support_response_hours: float = 24.0


class LifecycleConfig:
    """라이프사이클 설정 관리자"""

    # 실패 차수 -> 재시도까지 대기 일수. 표에 없는 차수는 최종 실패
    RETRY_SCHEDULE_DAYS: Dict[int, int] = {
        1: 1,
        2: 3,
        3: 7,
    }

    HEALTH_WEIGHTS: Dict[str, float] = {
        "payment_health": 0.4,
        "fulfillment_health": 0.3,
        "retention_risk": 0.2,
        "support_health": 0.1,
    }

    THRESHOLDS = HealthThresholds()

    EMAIL_TEMPLATES: Dict[EmailTemplate, TemplateDefinition] = {
        EmailTemplate.SUBSCRIPTION_WELCOME: TemplateDefinition(
            subject="Welcome to Your Subscription!",
            template_setting="SENDGRID_WELCOME_TEMPLATE_ID",
        ),
        EmailTemplate.SUBSCRIPTION_UPDATED: TemplateDefinition(
            subject="Your Subscription Has Been Updated",
            template_setting="SENDGRID_UPDATE_TEMPLATE_ID",
        ),
        EmailTemplate.SUBSCRIPTION_CANCELLED: TemplateDefinition(
            subject="Your Subscription Has Been Cancelled",
            template_setting="SENDGRID_CANCEL_TEMPLATE_ID",
        ),
        EmailTemplate.PAYMENT_RETRY_SCHEDULED: TemplateDefinition(
            subject="Action Required: Payment Retry Scheduled",
            template_setting="SENDGRID_PAYMENT_RETRY_TEMPLATE_ID",
        ),
        EmailTemplate.PAYMENT_FAILED_FINAL: TemplateDefinition(
            subject="Important: Subscription Paused Due to Payment Failure",
            template_setting="SENDGRID_PAYMENT_FAILED_FINAL_TEMPLATE_ID",
        ),
        EmailTemplate.PAYMENT_RETRY_SUCCESS: TemplateDefinition(
            subject="Good News: Payment Successfully Processed",
            template_setting="SENDGRID_PAYMENT_SUCCESS_TEMPLATE_ID",
        ),
        EmailTemplate.RENEWAL_REMINDER: TemplateDefinition(
            subject="Your Subscription Renewal is Coming Up",
            template_setting="SENDGRID_RENEWAL_REMINDER_TEMPLATE_ID",
        ),
        EmailTemplate.ORDER_CONFIRMATION: TemplateDefinition(
            subject="Your Subscription Order Has Been Processed",
            template_setting="SENDGRID_ORDER_TEMPLATE_ID",
        ),
    }

    @classmethod
    def get_retry_days(cls, attempt_number) -> Optional[int]:
        """실패 차수에 대한 재시도 대기 일수 (없으면 None)"""
        return cls.RETRY_SCHEDULE_DAYS.get(attempt_number)

    @classmethod
    def get_template(cls, template_key: str) -> Optional[TemplateDefinition]:
        """템플릿 키에 대한 정의 반환 (알 수 없는 키는 None)"""
        try:
            return cls.EMAIL_TEMPLATES.get(EmailTemplate(template_key))
        except ValueError:
            return None

