"""
구독 내부 API 라우터 (크론/운영자 전용, Bearer 토큰 보호)
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query

from core.config import Settings
from core.factory import LifecycleServices
from core.responses import BusinessException, NotFoundException, success_response
from routers.dependencies import authorize_internal, get_services, get_settings
from schemas import Subscription
from services.commerce_client import CommerceAPIError

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/subscriptions",
    tags=["subscriptions"],
    dependencies=[Depends(authorize_internal)],
)


@router.post("/renewal-reminders")
async def send_renewal_reminders(
    within_days: Optional[int] = Query(None, ge=1, le=30),
    config: Settings = Depends(get_settings),
    services: LifecycleServices = Depends(get_services),
):
    """갱신 예정 구독 알림 메일 발송 (크론 호출용)"""
    days = within_days or config.RENEWAL_REMINDER_WINDOW_DAYS
    sent = await services.renewal_reminders.send_upcoming_reminders(within_days=days)
    return success_response(
        data={"notifications_sent": len(sent), "details": sent},
        message="갱신 알림 발송 완료",
    )


@router.post("/{subscription_id}/cancel")
async def cancel_subscription(
    subscription_id: str = Path(..., min_length=1),
    services: LifecycleServices = Depends(get_services),
):
    """구독 해지 요청 (후속 처리는 subscription/cancelled 웹훅에서 진행)"""
    try:
        subscription = await services.commerce.cancel_subscription(subscription_id)
    except CommerceAPIError as e:
        logger.error("[COMMERCE] cancel failed: subscription=%s code=%s", subscription_id, e.code)
        raise BusinessException(f"구독 해지에 실패했습니다: {e}", "SUBSCRIPTION_CANCEL_FAILED", 502) from e

    return success_response(data=subscription, message="구독 해지 요청 완료")


@router.get("/{subscription_id}/health")
async def get_subscription_health(
    subscription_id: str = Path(..., min_length=1),
    services: LifecycleServices = Depends(get_services),
):
    """구독 헬스 점수 즉시 계산"""
    raw = await services.commerce.get_subscription(subscription_id)
    if not raw:
        raise NotFoundException("구독을 찾을 수 없습니다")

    health = await services.health.evaluate(Subscription.model_validate(raw))
    return success_response(data=health.model_dump(mode="json"), message="헬스 체크 완료")
