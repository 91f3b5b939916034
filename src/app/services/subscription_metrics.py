"""
구독 라이프사이클 지표 전송
핸들러가 이벤트마다 호출하며, 지표는 모두 분석 서비스로만 내보내고 로컬에 저장하지 않습니다.
"""
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional

from core.base_service import BaseService
from core.interfaces import IAnalyticsService, ICommerceClient
from schemas import Alert, Order, Subscription
from utils.value_parsers import parse_datetime, to_decimal, utc_now


def sum_order_totals(orders: Iterable[Dict[str, Any]]) -> Decimal:
    """주문 합계 (금액을 해석할 수 없는 주문은 0으로 계산)"""
    total = Decimal("0")
    for order in orders:
        amount = to_decimal(order.get("total_price"))
        if amount is not None:
            total += amount
    return total


def subscription_age_days(created_at: Any, now) -> Optional[int]:
    created = parse_datetime(created_at)
    if created is None:
        return None
    return max(0, (now - created).days)


class SubscriptionMetrics(BaseService):
    """구독/주문/결제/유지율 지표 이벤트 전송"""

    def __init__(
        self,
        analytics: IAnalyticsService,
        commerce: ICommerceClient,
        clock: Optional[Callable] = None,
    ):
        super().__init__(analytics)
        self.commerce = commerce
        self.clock = clock or utc_now

    def base_metrics(self, subscription: Subscription) -> Dict[str, Any]:
        policy = subscription.delivery_policy
        return {
            "subscription_id": subscription.id,
            "customer_id": subscription.customer_id,
            "plan_name": subscription.plan_name,
            "product_title": subscription.product_title,
            "price": subscription.price,
            "currency": subscription.currency,
            "billing_interval": policy.get("interval"),
            "billing_interval_count": policy.get("intervalCount") or policy.get("interval_count"),
            "status": subscription.status,
            "created_at": subscription.created_at,
        }

    async def track_subscription_metrics(
        self,
        subscription: Subscription,
        event: str,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """`subscription_{event}_metrics` 이벤트 전송 후 지표 묶음 반환"""
        metrics = {**self.base_metrics(subscription), **(extra or {})}
        await self.emit(f"subscription_{event}_metrics", metrics)
        return metrics

    async def track_order_metrics(self, order: Order, subscription: Subscription) -> Dict[str, Any]:
        orders = await self.commerce.get_subscription_orders(subscription.id)
        shipping_method = order.shipping_lines[0].get("title") if order.shipping_lines else None
        metrics = {
            "order_id": order.id,
            "subscription_id": subscription.id,
            "customer_id": (order.customer or {}).get("id") or subscription.customer_id,
            "order_number": order.order_number,
            "total_price": order.total_price,
            "currency": order.currency,
            "payment_status": order.financial_status,
            "fulfillment_status": order.fulfillment_status,
            "items_count": len(order.line_items),
            "shipping_method": shipping_method,
            "estimated_delivery_date": order.estimated_delivery_at,
            "actual_delivery_date": order.delivered_at,
            "is_subscription_order": True,
            "subscription_order_number": len(orders),
        }
        await self.emit("subscription_order_tracked", metrics)
        return metrics

    async def calculate_lifetime_value(
        self,
        subscription_id: str,
        orders: Optional[List[Dict[str, Any]]] = None,
    ) -> Decimal:
        """구독의 과거 주문 합계 (주문 목록을 넘기면 재조회하지 않음)"""
        if orders is None:
            orders = await self.commerce.get_subscription_orders(subscription_id)
        return sum_order_totals(orders)

    async def track_retention_metrics(
        self,
        subscription: Subscription,
        *,
        orders: Optional[List[Dict[str, Any]]] = None,
        lifetime_value: Optional[Decimal] = None,
        churn_risk_score: Optional[float] = None,
    ) -> Dict[str, Any]:
        """유지율 지표 전송. 주문 목록이 없으면 한 번 조회한다"""
        if orders is None:
            orders = await self.commerce.get_subscription_orders(subscription.id)
        if lifetime_value is None:
            lifetime_value = sum_order_totals(orders)

        metrics = {
            "subscription_id": subscription.id,
            "customer_id": subscription.customer_id,
            "lifetime_value": lifetime_value,
            "total_orders": len(orders),
            "subscription_age_days": subscription_age_days(subscription.created_at, self.clock()),
            "last_order_date": subscription.last_order_date,
            "next_order_date": subscription.next_billing_date,
        }
        if churn_risk_score is not None:
            metrics["churn_risk_score"] = churn_risk_score

        await self.emit("subscription_retention_metrics", metrics)
        return metrics

    async def track_payment_metrics(self, subscription: Subscription, payment_data: Dict[str, Any]) -> Dict[str, Any]:
        metrics = {
            "subscription_id": subscription.id,
            "customer_id": subscription.customer_id,
            **payment_data,
        }
        await self.emit("subscription_payment_metrics", metrics)
        return metrics

    async def emit_alerts(self, alerts: List[Alert]) -> None:
        """알림 1건당 `subscription_alert` 이벤트 1건"""
        for alert in alerts:
            self.logger.warning("[HEALTH] alert type=%s severity=%s", alert.type, alert.severity.value)
            await self.emit("subscription_alert", alert.model_dump(mode="json"))
