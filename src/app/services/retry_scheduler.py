"""
결제 실패 재시도/일시정지 스케줄러
재시도 간격은 고정 표(1→1일, 2→3일, 3→7일)로 결정하고, 표에 없는 차수는 일시정지로 끝난다.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from core.interfaces import ICommerceClient
from core.lifecycle_config import LifecycleConfig
from core.responses import PauseFailed, RetrySchedulingFailed
from schemas import RetryDecision
from utils.value_parsers import utc_now

logger = logging.getLogger(__name__)


def retry_delay_days(attempt_number: int) -> Optional[int]:
    """실패 차수에 대한 재시도 대기 일수. 최종 실패면 None"""
    return LifecycleConfig.get_retry_days(attempt_number)


class PaymentRetryScheduler:
    """결제 재시도 예약 / 구독 일시정지 (원격 mutation 1회씩)"""

    def __init__(self, commerce: ICommerceClient, clock: Optional[Callable[[], datetime]] = None):
        self.commerce = commerce
        self.clock = clock or utc_now

    def decide(self, attempt_number: int) -> RetryDecision:
        days = retry_delay_days(attempt_number)
        retry_at = self.clock() + timedelta(days=days) if days is not None else None
        return RetryDecision(attempt_number=attempt_number, retry_days=days, retry_at=retry_at)

    async def schedule_retry(
        self,
        subscription_id: str,
        days: int,
        *,
        attempt_number: Optional[int] = None,
        retry_at: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """now + days 시각으로 결제 재시도 예약

        Raises:
            RetrySchedulingFailed: 원격 호출이 오류를 보고한 경우
        """
        retry_at = retry_at or self.clock() + timedelta(days=days)
        try:
            result = await self.commerce.schedule_payment_retry(subscription_id, retry_at)
        except Exception as e:
            logger.error(
                "[COMMERCE] retry scheduling failed: subscription=%s attempt=%s days=%s error=%s",
                subscription_id,
                attempt_number,
                days,
                e,
            )
            raise RetrySchedulingFailed(subscription_id, attempt_number, days, cause=e) from e

        logger.info(
            "[COMMERCE] payment retry scheduled: subscription=%s attempt=%s retry_at=%s",
            subscription_id,
            attempt_number,
            retry_at.isoformat(),
        )
        return result

    async def pause_subscription(self, subscription_id: str, *, attempt_number: Optional[int] = None) -> Dict[str, Any]:
        """구독 일시정지

        Raises:
            PauseFailed: 원격 호출이 오류를 보고한 경우
        """
        try:
            result = await self.commerce.pause_subscription(subscription_id)
        except Exception as e:
            logger.error(
                "[COMMERCE] pause failed: subscription=%s attempt=%s error=%s",
                subscription_id,
                attempt_number,
                e,
            )
            raise PauseFailed(subscription_id, attempt_number, cause=e) from e

        logger.info("[COMMERCE] subscription paused: subscription=%s attempt=%s", subscription_id, attempt_number)
        return result
