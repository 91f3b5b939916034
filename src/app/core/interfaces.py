"""
서비스 인터페이스 정의
핸들러는 아래 인터페이스만 의존하며, 구현체는 ServiceFactory가 기동 시 한 번 생성합니다.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Any, Optional, List

from schemas import ChurnRiskFactors, HealthSignals, Subscription, SupportMetrics


class ICommerceClient(ABC):
    """커머스 플랫폼 API 인터페이스"""

    @abstractmethod
    async def cancel_subscription(self, subscription_id: str) -> Dict[str, Any]:
        """구독 해지"""
        pass

    @abstractmethod
    async def pause_subscription(self, subscription_id: str) -> Dict[str, Any]:
        """구독 일시정지"""
        pass

    @abstractmethod
    async def schedule_payment_retry(self, subscription_id: str, retry_date: datetime) -> Dict[str, Any]:
        """결제 재시도 예약"""
        pass

    @abstractmethod
    async def get_subscription(self, subscription_id: str) -> Optional[Dict[str, Any]]:
        """구독 조회"""
        pass

    @abstractmethod
    async def get_subscription_orders(self, subscription_id: str) -> List[Dict[str, Any]]:
        """구독에 연결된 과거 주문 목록"""
        pass

    @abstractmethod
    async def get_billing_attempts(self, subscription_id: str) -> List[Dict[str, Any]]:
        """구독 결제 시도 이력"""
        pass

    @abstractmethod
    async def get_upcoming_renewals(self, within_days: int = 3, first: int = 100) -> List[Dict[str, Any]]:
        """N일 이내 갱신 예정 구독 목록"""
        pass


class IEmailService(ABC):
    """트랜잭션 이메일 인터페이스"""

    @abstractmethod
    async def send_email(self, to: str, template_key: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """템플릿 이메일 발송 (알 수 없는 템플릿은 예외)"""
        pass


class IAnalyticsService(ABC):
    """분석 이벤트 인터페이스"""

    @abstractmethod
    async def track_event(self, name: str, properties: Optional[Dict[str, Any]] = None) -> None:
        """이벤트 전송 (실패는 호출자에게 전파)"""
        pass


class IChurnRiskModel(ABC):
    """이탈 위험 점수 전략 (0~100)"""

    @abstractmethod
    async def score(self, factors: ChurnRiskFactors) -> float:
        """이탈 위험 점수 계산"""
        pass


class ISupportMetricsSource(ABC):
    """고객 지원 지표 제공자"""

    @abstractmethod
    async def get_support_metrics(self, customer_id: Optional[str]) -> SupportMetrics:
        """고객별 지원 티켓 지표 조회"""
        pass


class IHealthSignalProvider(ABC):
    """헬스 평가 입력값 제공자"""

    @abstractmethod
    async def collect(self, subscription: Subscription) -> HealthSignals:
        """구독의 과거 집계값 수집"""
        pass


class IWebhookEventLedger(ABC):
    """웹훅 처리 기록 (중복 전송 감지용)"""

    @abstractmethod
    async def has_processed_webhook_event(self, provider: str, event_id: str) -> bool:
        """이미 처리한 이벤트인지 확인"""
        pass

    @abstractmethod
    async def claim_webhook_event(self, provider: str, event_id: str) -> bool:
        """이벤트 처리 선점. 이미 처리됐거나 처리 중이면 False"""
        pass

    @abstractmethod
    async def release_webhook_event(self, provider: str, event_id: str) -> None:
        """처리 실패 시 선점 해제 (재전송이 다시 처리할 수 있도록)"""
        pass

    @abstractmethod
    async def record_webhook_event(
        self,
        provider: str,
        event_id: str,
        status: str,
        payload: Dict[str, Any] = None,
    ) -> bool:
        """이벤트 처리 기록"""
        pass
