"""갱신 예정 구독 알림 메일 발송 (일 1회 스케줄러/내부 API에서 호출)"""
import math
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote

from core.base_service import BaseService
from core.interfaces import IAnalyticsService, ICommerceClient, IEmailService
from core.lifecycle_config import EmailTemplate
from schemas import Subscription
from utils.value_parsers import parse_datetime, utc_now

SECONDS_PER_DAY = 86400.0


class RenewalReminderService(BaseService):

    def __init__(
        self,
        analytics: IAnalyticsService,
        commerce: ICommerceClient,
        email: IEmailService,
        storefront_base_url: str,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(analytics)
        self.commerce = commerce
        self.email = email
        self.storefront_base_url = storefront_base_url.rstrip("/")
        self.clock = clock or utc_now

    def _days_until(self, next_billing_date: Any) -> Optional[int]:
        next_billing = parse_datetime(next_billing_date)
        if next_billing is None:
            return None
        return max(0, math.ceil((next_billing - self.clock()).total_seconds() / SECONDS_PER_DAY))

    async def send_upcoming_reminders(self, within_days: int = 3) -> List[Dict[str, Any]]:
        """N일 이내 갱신 예정 구독마다 알림 메일 1건. 발송 실패는 호출자에게 전파"""
        renewals = await self.commerce.get_upcoming_renewals(within_days=within_days)
        sent: List[Dict[str, Any]] = []
        skipped = 0

        for raw in renewals:
            subscription = Subscription.model_validate(raw)
            customer = subscription.customer or {}
            if not customer.get("email"):
                self.logger.warning("[EMAIL] renewal reminder skipped (no email): subscription=%s", subscription.id)
                skipped += 1
                continue

            days_until_renewal = self._days_until(subscription.next_billing_date)
            await self.email.send_email(customer["email"], EmailTemplate.RENEWAL_REMINDER.value, {
                "customer_name": customer.get("first_name"),
                "subscription_details": {
                    "product_title": subscription.product_title,
                    "next_billing_date": subscription.next_billing_date,
                    "price": subscription.price,
                    "currency": subscription.currency,
                    "days_until_renewal": days_until_renewal,
                },
                "manage_url": f"{self.storefront_base_url}/account/subscriptions/{quote(str(subscription.id), safe='')}",
            })
            sent.append({
                "subscription_id": subscription.id,
                "customer_id": subscription.customer_id,
                "days_until_renewal": days_until_renewal,
            })

        self.logger.info("[EMAIL] renewal reminders sent=%s skipped=%s", len(sent), skipped)
        await self.emit("renewal_reminders_sent", {
            "within_days": within_days,
            "notifications_sent": len(sent),
            "skipped": skipped,
        })
        return sent
