"""
웹훅 이벤트 처리기

검증된 원본 본문을 봉투로 해석하고 topic으로 핸들러를 찾아 실행합니다.
- 본문 해석 실패 / topic 누락 → 400 (재전송해도 결과가 같음)
- 지원하지 않는 topic → 처리 없이 성공 응답
- 핸들러 실패 / 시간 초과 → HandlerFailure(500), 이벤트 소스가 재전송
"""
import asyncio
import json
import logging
import time
from typing import Any, Dict, Optional

from pydantic import ValidationError

from core.interfaces import IAnalyticsService, ICommerceClient, IEmailService, IWebhookEventLedger
from core.responses import BusinessException, HandlerFailure, MalformedPayloadException, MissingTopicException
from schemas import WebhookEnvelope
from services.health_monitor import SubscriptionHealthMonitor
from services.lifecycle_handlers import HANDLER_MAP, HandlerFunc, WebhookHandlerContext
from services.retry_scheduler import PaymentRetryScheduler
from services.subscription_metrics import SubscriptionMetrics

logger = logging.getLogger(__name__)

LEDGER_PROVIDER = "subscription"


class WebhookProcessor:
    """topic → 핸들러 디스패치 (이벤트 간 공유 상태 없음)"""

    def __init__(
        self,
        *,
        commerce: ICommerceClient,
        email: IEmailService,
        analytics: IAnalyticsService,
        metrics: SubscriptionMetrics,
        health: SubscriptionHealthMonitor,
        retry_scheduler: PaymentRetryScheduler,
        storefront_base_url: str,
        handler_timeout: float = 25.0,
        ledger: Optional[IWebhookEventLedger] = None,
        handlers: Optional[Dict[str, HandlerFunc]] = None,
    ):
        self.commerce = commerce
        self.email = email
        self.analytics = analytics
        self.metrics = metrics
        self.health = health
        self.retry_scheduler = retry_scheduler
        self.storefront_base_url = storefront_base_url
        self.handler_timeout = handler_timeout
        self.ledger = ledger
        self.handlers = dict(handlers if handlers is not None else HANDLER_MAP)

    @staticmethod
    def parse_envelope(raw: bytes) -> WebhookEnvelope:
        """원본 본문 → 봉투

        Raises:
            MalformedPayloadException: JSON이 아니거나 객체가 아님
            MissingTopicException: topic이 비어 있음
        """
        try:
            body = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise MalformedPayloadException(f"웹훅 본문을 해석할 수 없습니다: {e}") from e

        if not isinstance(body, dict):
            raise MalformedPayloadException("웹훅 본문은 JSON 객체여야 합니다")

        topic = body.get("topic")
        if not isinstance(topic, str) or not topic.strip():
            raise MissingTopicException()

        try:
            return WebhookEnvelope.from_body(body)
        except ValidationError as e:
            raise MalformedPayloadException(
                "웹훅 봉투 형식이 올바르지 않습니다",
                errors=e.errors(include_url=False, include_context=False),
            ) from e

    def _build_context(self, envelope: WebhookEnvelope) -> WebhookHandlerContext:
        return WebhookHandlerContext(
            topic=envelope.topic,
            event_id=envelope.id,
            payload=envelope.payload,
            commerce=self.commerce,
            email=self.email,
            analytics=self.analytics,
            metrics=self.metrics,
            health=self.health,
            retry_scheduler=self.retry_scheduler,
            storefront_base_url=self.storefront_base_url,
        )

    async def process(self, raw: bytes) -> Dict[str, Any]:
        """검증된 본문 처리. 핸들러 완료 후에만 성공 결과를 반환한다"""
        started = time.perf_counter()
        envelope = self.parse_envelope(raw)
        topic = envelope.topic
        event_id = envelope.id

        logger.info("[WEBHOOK] processing: topic=%s event_id=%s", topic, event_id)

        handler = self.handlers.get(topic)
        if handler is None:
            logger.warning("[WEBHOOK] unhandled topic acknowledged: %s", topic)
            return self._outcome("ignored", topic, event_id, started)

        if self.ledger is not None and event_id:
            # 확인과 선점을 한 번에 해야 동시 재전송이 둘 다 처리되지 않는다
            if not await self.ledger.claim_webhook_event(LEDGER_PROVIDER, event_id):
                logger.info("[WEBHOOK] duplicate event ignored: %s", event_id)
                return self._outcome("duplicate", topic, event_id, started, duplicate=True)

        try:
            status, results = await asyncio.wait_for(
                handler(self._build_context(envelope)),
                timeout=self.handler_timeout,
            )
        except asyncio.TimeoutError as e:
            failure = HandlerFailure(
                f"웹훅 처리 시간 초과 ({self.handler_timeout}s)",
                topic=topic,
                event_id=event_id,
                cause=e,
                error_code="HANDLER_TIMEOUT",
            )
            await self._release_claim(event_id)
            await self._on_failure(failure, topic, event_id, started)
            raise failure from e
        except HandlerFailure as e:
            e.topic = e.topic or topic
            e.event_id = e.event_id or event_id
            await self._release_claim(event_id)
            await self._on_failure(e, topic, event_id, started)
            raise
        except BusinessException as e:
            # 핸들러 본문 검증 실패 (400)
            await self._release_claim(event_id)
            await self._on_failure(e, topic, event_id, started)
            raise
        except asyncio.CancelledError:
            await self._release_claim(event_id)
            raise
        except Exception as e:
            failure = HandlerFailure(
                f"웹훅 처리 실패: {e}",
                topic=topic,
                event_id=event_id,
                cause=e,
            )
            await self._release_claim(event_id)
            await self._on_failure(failure, topic, event_id, started)
            raise failure from e

        await self._record_processed(topic, event_id)

        if status is None:
            return self._outcome("skipped", topic, event_id, started, result=results)

        outcome = self._outcome(status, topic, event_id, started, result=results)
        logger.info(
            "[WEBHOOK] processed: topic=%s event_id=%s status=%s elapsed_ms=%s",
            topic,
            event_id,
            status,
            outcome["processing_time_ms"],
        )
        await self._track_bookkeeping("webhook_processed", {
            "topic": topic,
            "processing_time": outcome["processing_time_ms"],
            "success": True,
        })
        return outcome

    async def _record_processed(self, topic: str, event_id: Optional[str]) -> None:
        if self.ledger is None or not event_id:
            return
        try:
            await self.ledger.record_webhook_event(LEDGER_PROVIDER, event_id, "processed", {"topic": topic})
        except Exception as e:
            logger.error("[WEBHOOK] ledger record failed: event_id=%s error=%s", event_id, e)

    async def _release_claim(self, event_id: Optional[str]) -> None:
        # 실패한 이벤트는 재전송 때 다시 처리되어야 한다
        if self.ledger is None or not event_id:
            return
        try:
            await self.ledger.release_webhook_event(LEDGER_PROVIDER, event_id)
        except Exception as e:
            logger.error("[WEBHOOK] ledger release failed: event_id=%s error=%s", event_id, e)

    async def _on_failure(self, error: BusinessException, topic: str, event_id: Optional[str], started: float) -> None:
        elapsed_ms = self._elapsed_ms(started)
        logger.error(
            "[WEBHOOK] processing failed: topic=%s event_id=%s code=%s elapsed_ms=%s error=%s",
            topic,
            event_id,
            error.error_code,
            elapsed_ms,
            error.message,
        )
        await self._track_bookkeeping("webhook_error", {
            "topic": topic,
            "error": error.message,
            "error_code": error.error_code,
            "processing_time": elapsed_ms,
        })

    async def _track_bookkeeping(self, name: str, properties: Dict[str, Any]) -> None:
        # 처리 결과 집계용 이벤트는 핸들러 결과를 바꾸지 않는다
        try:
            await self.analytics.track_event(name, properties)
        except Exception as e:
            logger.error("[ANALYTICS] %s event failed: %s", name, e)

    def _outcome(
        self,
        status: str,
        topic: str,
        event_id: Optional[str],
        started: float,
        *,
        duplicate: bool = False,
        result: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        return {
            "success": True,
            "status": status,
            "topic": topic,
            "event_id": event_id,
            "duplicate": duplicate,
            "processing_time_ms": self._elapsed_ms(started),
            "result": result or {},
        }

    @staticmethod
    def _elapsed_ms(started: float) -> float:
        return round((time.perf_counter() - started) * 1000, 2)
