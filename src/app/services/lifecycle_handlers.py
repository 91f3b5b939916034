"""
구독 라이프사이클 웹훅 핸들러

topic 하나당 핸들러 하나이며, 모든 핸들러는 같은 순서로 동작한다.
1. 라이프사이클 지표 기록
2. 헬스/위험 재계산 (해지는 제외)
3. 분석 이벤트 전송
4. 알림 이메일 1건 발송

하위 호출 실패는 잡지 않고 그대로 올려보낸다. 처리기가 HandlerFailure(500)로 바꿔
이벤트 소스가 재전송하게 한다.
"""
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple
from urllib.parse import quote

from core.base_service import parse_model
from core.interfaces import IAnalyticsService, ICommerceClient, IEmailService
from core.lifecycle_config import EmailTemplate, WebhookTopic
from schemas import (
    Customer, OrderCreatedEvent, PaymentFailureEvent, PaymentSuccessEvent, Subscription,
    SubscriptionCancelledEvent, SubscriptionEvent, SubscriptionUpdatedEvent,
)
from services.health_monitor import SubscriptionHealthMonitor
from services.retry_scheduler import PaymentRetryScheduler
from services.subscription_metrics import SubscriptionMetrics
from utils.value_parsers import get_path, utc_now

logger = logging.getLogger(__name__)


HandlerResult = Tuple[Optional[str], Dict[str, Any]]
HandlerFunc = Callable[["WebhookHandlerContext"], Awaitable[HandlerResult]]


@dataclass(slots=True)
class WebhookHandlerContext:
    topic: str
    event_id: Optional[str]
    payload: Dict[str, Any]
    commerce: ICommerceClient
    email: IEmailService
    analytics: IAnalyticsService
    metrics: SubscriptionMetrics
    health: SubscriptionHealthMonitor
    retry_scheduler: PaymentRetryScheduler
    storefront_base_url: str

    def subscription_url(self, subscription_id: str, suffix: str = "") -> str:
        base = self.storefront_base_url.rstrip("/")
        return f"{base}/account/subscriptions/{quote(str(subscription_id), safe='')}{suffix}"


def _attach_customer(subscription: Subscription, customer: Customer) -> Subscription:
    # 구독 스냅샷에 고객 정보가 없으면 이벤트의 고객으로 채운다
    if not subscription.customer or not subscription.customer.get("id"):
        subscription.customer = {**(subscription.customer or {}), "id": customer.id, "email": customer.email}
    return subscription


def _subscription_details(subscription: Subscription) -> Dict[str, Any]:
    return subscription.model_dump(mode="json", exclude_none=True)


async def _handle_subscription_created(ctx: WebhookHandlerContext) -> HandlerResult:
    event = parse_model(SubscriptionEvent, ctx.payload, ctx.topic)
    customer = event.customer
    subscription = _attach_customer(event.subscription, customer)

    logger.info("[WEBHOOK] processing new subscription: subscription=%s", subscription.id)

    await ctx.metrics.track_subscription_metrics(subscription, "created")
    health = await ctx.health.evaluate(subscription)

    await ctx.analytics.track_event("subscription_created", {
        "subscription_id": subscription.id,
        "customer_id": customer.id,
        "plan_name": subscription.plan_name,
        "product_title": subscription.product_title,
        "price": subscription.price,
        "currency": subscription.currency,
        "health_score": health.overall_health_score,
    })

    await ctx.email.send_email(customer.email, EmailTemplate.SUBSCRIPTION_WELCOME.value, {
        "customer_name": customer.first_name,
        "subscription_details": _subscription_details(subscription),
        "manage_url": ctx.subscription_url(subscription.id),
    })

    return "created", {
        "subscription_id": subscription.id,
        "health_score": health.overall_health_score,
        "email": EmailTemplate.SUBSCRIPTION_WELCOME.value,
    }


async def _handle_subscription_updated(ctx: WebhookHandlerContext) -> HandlerResult:
    event = parse_model(SubscriptionUpdatedEvent, ctx.payload, ctx.topic)
    customer = event.customer
    subscription = _attach_customer(event.subscription, customer)

    await ctx.metrics.track_subscription_metrics(subscription, "updated", {"changes": event.changes})
    health = await ctx.health.evaluate(subscription)
    await ctx.metrics.track_retention_metrics(
        subscription,
        churn_risk_score=health.retention_risk.metrics.get("churn_risk_score"),
    )

    await ctx.analytics.track_event("subscription_updated", {
        "subscription_id": subscription.id,
        "customer_id": customer.id,
        "changes": event.changes,
        "new_plan": subscription.plan_name,
        "health_score": health.overall_health_score,
    })

    await ctx.email.send_email(customer.email, EmailTemplate.SUBSCRIPTION_UPDATED.value, {
        "customer_name": customer.first_name,
        "subscription_details": _subscription_details(subscription),
        "changes": event.changes,
        "manage_url": ctx.subscription_url(subscription.id),
    })

    return "updated", {
        "subscription_id": subscription.id,
        "health_score": health.overall_health_score,
        "email": EmailTemplate.SUBSCRIPTION_UPDATED.value,
    }


async def _handle_subscription_cancelled(ctx: WebhookHandlerContext) -> HandlerResult:
    event = parse_model(SubscriptionCancelledEvent, ctx.payload, ctx.topic)
    customer = event.customer
    subscription = _attach_customer(event.subscription, customer)

    # 해지는 종료 상태이므로 헬스 평가 없이 최종 LTV만 계산한다
    orders = await ctx.commerce.get_subscription_orders(subscription.id)
    lifetime_value = await ctx.metrics.calculate_lifetime_value(subscription.id, orders=orders)

    await ctx.metrics.track_subscription_metrics(subscription, "cancelled", {
        "reason": event.reason,
        "lifetime_value": lifetime_value,
    })
    await ctx.metrics.track_retention_metrics(subscription, orders=orders, lifetime_value=lifetime_value)

    await ctx.analytics.track_event("subscription_cancelled", {
        "subscription_id": subscription.id,
        "customer_id": customer.id,
        "reason": event.reason,
        "cancelled_at": utc_now().isoformat(),
        "lifetime_value": lifetime_value,
    })

    await ctx.email.send_email(customer.email, EmailTemplate.SUBSCRIPTION_CANCELLED.value, {
        "customer_name": customer.first_name,
        "subscription_details": _subscription_details(subscription),
        "reactivate_url": ctx.subscription_url(subscription.id, "/reactivate"),
    })

    return "cancelled", {
        "subscription_id": subscription.id,
        "lifetime_value": str(lifetime_value),
        "email": EmailTemplate.SUBSCRIPTION_CANCELLED.value,
    }


async def _handle_payment_failure(ctx: WebhookHandlerContext) -> HandlerResult:
    event = parse_model(PaymentFailureEvent, ctx.payload, ctx.topic)
    customer = event.customer
    subscription = _attach_customer(event.subscription, customer)
    attempt_number = event.attempt_number

    await ctx.metrics.track_payment_metrics(subscription, {
        "payment_method": event.payment_method,
        "retry_count": attempt_number,
        "last_failure_reason": event.failure_reason,
        "success": False,
    })
    health = await ctx.health.evaluate(subscription)
    decision = ctx.retry_scheduler.decide(attempt_number)

    await ctx.analytics.track_event("subscription_payment_failure", {
        "subscription_id": subscription.id,
        "customer_id": customer.id,
        "attempt_number": attempt_number,
        "failure_reason": event.failure_reason,
        "retry_days": decision.retry_days,
        "paused": decision.terminal,
        "health_score": health.overall_health_score,
    })

    update_payment_url = ctx.subscription_url(subscription.id, "/payment")

    if decision.terminal:
        await ctx.retry_scheduler.pause_subscription(subscription.id, attempt_number=attempt_number)
        template = EmailTemplate.PAYMENT_FAILED_FINAL.value
        await ctx.email.send_email(customer.email, template, {
            "customer_name": customer.first_name,
            "subscription_details": _subscription_details(subscription),
            "failure_reason": event.failure_reason,
            "update_payment_url": update_payment_url,
        })
        return "paused", {
            "subscription_id": subscription.id,
            "attempt_number": attempt_number,
            "email": template,
        }

    await ctx.retry_scheduler.schedule_retry(
        subscription.id,
        decision.retry_days,
        attempt_number=attempt_number,
        retry_at=decision.retry_at,
    )
    template = EmailTemplate.PAYMENT_RETRY_SCHEDULED.value
    await ctx.email.send_email(customer.email, template, {
        "customer_name": customer.first_name,
        "subscription_details": _subscription_details(subscription),
        "failure_reason": event.failure_reason,
        "retry_date": decision.retry_at.isoformat(),
        "update_payment_url": update_payment_url,
    })
    return "retry_scheduled", {
        "subscription_id": subscription.id,
        "attempt_number": attempt_number,
        "retry_days": decision.retry_days,
        "retry_at": decision.retry_at.isoformat(),
        "email": template,
    }


async def _handle_payment_success(ctx: WebhookHandlerContext) -> HandlerResult:
    event = parse_model(PaymentSuccessEvent, ctx.payload, ctx.topic)
    customer = event.customer
    subscription = _attach_customer(event.subscription, customer)

    await ctx.metrics.track_payment_metrics(subscription, {
        "payment_method": event.payment_method,
        "retry_count": event.retry_attempt or 0,
        "followed_retry": event.followed_retry,
        "success": True,
    })
    health = await ctx.health.evaluate(subscription)

    await ctx.analytics.track_event("subscription_payment_success", {
        "subscription_id": subscription.id,
        "customer_id": customer.id,
        "order_id": event.order.id if event.order else None,
        "retry_attempt": event.retry_attempt,
        "health_score": health.overall_health_score,
    })

    results: Dict[str, Any] = {
        "subscription_id": subscription.id,
        "followed_retry": event.followed_retry,
        "email": None,
    }
    # 첫 시도 성공(정상 갱신)은 메일을 보내지 않는다
    if event.followed_retry:
        template = EmailTemplate.PAYMENT_RETRY_SUCCESS.value
        await ctx.email.send_email(customer.email, template, {
            "customer_name": customer.first_name,
            "subscription_details": _subscription_details(subscription),
            "order_details": event.order.model_dump(mode="json", exclude_none=True) if event.order else None,
        })
        results["email"] = template

    return "payment_success", results


async def _handle_order_created(ctx: WebhookHandlerContext) -> HandlerResult:
    subscription_id = ctx.payload.get("subscription_id") or get_path(ctx.payload, "order", "subscription_id")
    if not subscription_id:
        logger.info("[WEBHOOK] order event without subscription reference ignored")
        return None, {"reason": "not_subscription_order"}

    event = parse_model(OrderCreatedEvent, {**ctx.payload, "subscription_id": subscription_id}, ctx.topic)
    customer = event.customer
    subscription = _attach_customer(event.resolved_subscription(), customer)
    order = event.order
    if not order.subscription_id:
        order.subscription_id = subscription.id
    if not order.customer:
        order.customer = {"id": customer.id, "email": customer.email}

    await ctx.metrics.track_order_metrics(order, subscription)
    fulfillment = await ctx.health.monitor_order_fulfillment(order)

    await ctx.analytics.track_event("subscription_order_created", {
        "subscription_id": subscription.id,
        "customer_id": customer.id,
        "order_id": order.id,
        "order_total": order.total_price,
        "currency": order.currency,
        "fulfillment_status": fulfillment.shipping_status,
        "estimated_delivery": fulfillment.delivery_estimate,
    })

    template = EmailTemplate.ORDER_CONFIRMATION.value
    await ctx.email.send_email(customer.email, template, {
        "customer_name": customer.first_name,
        "order_details": order.model_dump(mode="json", exclude_none=True),
        "subscription_details": _subscription_details(subscription),
        "order_status_url": order.status_url,
        "tracking_info": fulfillment.tracking_info,
    })

    return "order_created", {
        "subscription_id": subscription.id,
        "order_id": order.id,
        "delayed": fulfillment.delayed,
        "email": template,
    }


# topic 추가는 이 표에 한 줄을 더하는 것으로 끝난다
HANDLER_MAP: Dict[str, HandlerFunc] = {
    WebhookTopic.SUBSCRIPTION_CREATED.value: _handle_subscription_created,
    WebhookTopic.SUBSCRIPTION_UPDATED.value: _handle_subscription_updated,
    WebhookTopic.SUBSCRIPTION_CANCELLED.value: _handle_subscription_cancelled,
    WebhookTopic.PAYMENT_FAILURE.value: _handle_payment_failure,
    WebhookTopic.PAYMENT_SUCCESS.value: _handle_payment_success,
    WebhookTopic.ORDER_CREATED.value: _handle_order_created,
}
