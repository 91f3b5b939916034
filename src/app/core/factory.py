"""
서비스 팩토리 - 기동 시 외부 클라이언트와 도메인 서비스를 한 번 생성
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from supabase import create_client

from core.config import Settings, settings
from core.interfaces import (
    IAnalyticsService, IChurnRiskModel, ICommerceClient, IEmailService,
    IHealthSignalProvider, ISupportMetricsSource, IWebhookEventLedger,
)
from core.lifecycle_config import LifecycleConfig
from database_helper import DatabaseHelper
from services.analytics_service import AnalyticsService
from services.commerce_client import CommerceClient
from services.email_service import EmailService
from services.event_ledger import InMemoryEventLedger
from services.health_monitor import CommerceHealthSignalProvider, SubscriptionHealthMonitor
from services.renewal_reminder_service import RenewalReminderService
from services.retry_scheduler import PaymentRetryScheduler
from services.subscription_metrics import SubscriptionMetrics
from services.webhook_processor import WebhookProcessor

logger = logging.getLogger(__name__)


@dataclass
class LifecycleServices:
    """app.state.services에 보관하는 서비스 묶음 (핸들러에는 명시적으로 전달)"""
    commerce: ICommerceClient
    email: IEmailService
    analytics: IAnalyticsService
    metrics: SubscriptionMetrics
    health: SubscriptionHealthMonitor
    retry_scheduler: PaymentRetryScheduler
    processor: WebhookProcessor
    renewal_reminders: RenewalReminderService
    ledger: Optional[IWebhookEventLedger] = None


class ServiceFactory:
    """서비스 의존성 생성 및 정리"""

    @staticmethod
    def build_commerce_client(config: Settings) -> CommerceClient:
        return CommerceClient(
            store_domain=config.SHOPIFY_STORE_DOMAIN or "",
            access_token=config.SHOPIFY_ACCESS_TOKEN or "",
            api_version=config.SHOPIFY_API_VERSION,
            timeout=config.COMMERCE_API_TIMEOUT_SECONDS,
            max_retries=config.COMMERCE_API_MAX_RETRIES,
        )

    @staticmethod
    def build_email_service(config: Settings) -> EmailService:
        template_ids = {
            template.value: getattr(config, definition.template_setting, None)
            for template, definition in LifecycleConfig.EMAIL_TEMPLATES.items()
        }
        missing = [key for key, value in template_ids.items() if not value]
        if missing:
            logger.warning("[EMAIL] template ids not configured: %s", ", ".join(missing))
        return EmailService(
            api_key=config.SENDGRID_API_KEY or "",
            from_email=config.SENDGRID_FROM_EMAIL,
            template_ids=template_ids,
            base_url=config.SENDGRID_API_BASE_URL,
            company_name=config.COMPANY_NAME,
            support_email=config.SUPPORT_EMAIL,
            storefront_base_url=config.STOREFRONT_BASE_URL,
            timeout=config.EMAIL_TIMEOUT_SECONDS,
        )

    @staticmethod
    def build_analytics_service(config: Settings) -> AnalyticsService:
        return AnalyticsService(
            config.SEGMENT_WRITE_KEY,
            enabled=config.ANALYTICS_ENABLED,
            base_url=config.SEGMENT_API_BASE_URL,
            environment=config.ENVIRONMENT,
            debug=config.DEBUG,
            timeout=config.ANALYTICS_TIMEOUT_SECONDS,
        )

    @staticmethod
    def build_ledger(config: Settings) -> Optional[IWebhookEventLedger]:
        """중복 감지 저장소 (기본값 none이면 사용하지 않음)"""
        backend = config.WEBHOOK_DEDUP_BACKEND
        if backend == "memory":
            return InMemoryEventLedger(max_size=config.WEBHOOK_DEDUP_MEMORY_SIZE)
        if backend == "supabase":
            if not config.SUPABASE_URL or not config.SUPABASE_SERVICE_ROLE_KEY:
                raise ValueError("WEBHOOK_DEDUP_BACKEND=supabase 에는 SUPABASE_URL/SUPABASE_SERVICE_ROLE_KEY가 필요합니다")
            return DatabaseHelper(create_client(config.SUPABASE_URL, config.SUPABASE_SERVICE_ROLE_KEY))
        return None

    @staticmethod
    def build_services(
        config: Settings = settings,
        *,
        commerce: Optional[ICommerceClient] = None,
        email: Optional[IEmailService] = None,
        analytics: Optional[IAnalyticsService] = None,
        ledger: Optional[IWebhookEventLedger] = None,
        signal_provider: Optional[IHealthSignalProvider] = None,
        churn_model: Optional[IChurnRiskModel] = None,
        support_source: Optional[ISupportMetricsSource] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> LifecycleServices:
        """전달되지 않은 구성요소는 설정으로 생성. 필수 자격 증명이 없으면 ValueError"""
        commerce = commerce or ServiceFactory.build_commerce_client(config)
        email = email or ServiceFactory.build_email_service(config)
        analytics = analytics or ServiceFactory.build_analytics_service(config)
        if ledger is None:
            ledger = ServiceFactory.build_ledger(config)

        metrics = SubscriptionMetrics(analytics, commerce, clock=clock)
        signal_provider = signal_provider or CommerceHealthSignalProvider(
            commerce,
            churn_model=churn_model,
            support_source=support_source,
            clock=clock,
        )
        health = SubscriptionHealthMonitor(analytics, signal_provider, metrics, clock=clock)
        retry_scheduler = PaymentRetryScheduler(commerce, clock=clock)

        processor = WebhookProcessor(
            commerce=commerce,
            email=email,
            analytics=analytics,
            metrics=metrics,
            health=health,
            retry_scheduler=retry_scheduler,
            storefront_base_url=config.STOREFRONT_BASE_URL,
            handler_timeout=config.WEBHOOK_HANDLER_TIMEOUT_SECONDS,
            ledger=ledger,
        )
        renewal_reminders = RenewalReminderService(
            analytics,
            commerce,
            email,
            storefront_base_url=config.STOREFRONT_BASE_URL,
            clock=clock,
        )

        logger.info(
            "서비스 초기화 완료 (dedup=%s, analytics=%s)",
            config.WEBHOOK_DEDUP_BACKEND,
            getattr(analytics, "enabled", True),
        )
        return LifecycleServices(
            commerce=commerce,
            email=email,
            analytics=analytics,
            metrics=metrics,
            health=health,
            retry_scheduler=retry_scheduler,
            processor=processor,
            renewal_reminders=renewal_reminders,
            ledger=ledger,
        )

    @staticmethod
    async def shutdown(services: LifecycleServices) -> None:
        """생성 역순으로 커넥션 정리"""
        for client in (services.analytics, services.email, services.commerce):
            aclose = getattr(client, "aclose", None)
            if aclose is None:
                continue
            try:
                await aclose()
            except Exception as e:
                logger.error(f"클라이언트 정리 실패 ({client.__class__.__name__}): {e}")
