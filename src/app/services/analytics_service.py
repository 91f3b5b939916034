"""분석 이벤트 전송 서비스 (Segment HTTP Tracking API)"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
from fastapi.encoders import jsonable_encoder

from core.interfaces import IAnalyticsService


logger = logging.getLogger(__name__)

# 서버 측 이벤트의 기본 사용자 ID
SERVER_ANONYMOUS_ID = "subscription-lifecycle-server"


class AnalyticsDeliveryError(RuntimeError):
    """분석 이벤트 전송 실패"""

    def __init__(self, message: str, status_code: int = 0, *, event_name: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.event_name = event_name


class AnalyticsService(IAnalyticsService):
    """분석 이벤트 전송

    비활성화(설정 off 또는 write key 없음) 상태에서는 debug 로그만 남기고 반환한다.
    전송 실패는 호출자에게 전파하며, DEBUG 모드에서만 로그 후 계속 진행한다.
    """

    def __init__(
        self,
        write_key: Optional[str],
        *,
        enabled: bool = True,
        base_url: str = "https://api.segment.io",
        environment: str = "production",
        debug: bool = False,
        timeout: float = 5.0,
    ) -> None:
        self.write_key = write_key
        self.base_url = base_url.rstrip("/")
        self.environment = environment
        self.debug = debug
        self.timeout = timeout
        self.disabled_reason: Optional[str] = None
        self._client: Optional[httpx.AsyncClient] = None

        if not enabled:
            self.disabled_reason = "analytics disabled via configuration"
        elif not write_key:
            self.disabled_reason = "segment write key is missing"

        if self.disabled_reason:
            logger.info("[ANALYTICS] %s", self.disabled_reason)

    @property
    def enabled(self) -> bool:
        return self.disabled_reason is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, auth=(self.write_key or "", ""))
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def track_event(self, name: str, properties: Optional[Dict[str, Any]] = None) -> None:
        """이벤트 전송"""

        if not self.enabled:
            logger.debug("[ANALYTICS] skipped %s: %s", name, self.disabled_reason)
            return

        timestamp = datetime.now(timezone.utc).isoformat()
        body = {
            "event": name,
            "anonymousId": SERVER_ANONYMOUS_ID,
            "messageId": str(uuid.uuid4()),
            "timestamp": timestamp,
            "properties": jsonable_encoder(
                {**(properties or {}), "timestamp": timestamp, "environment": self.environment}
            ),
        }

        try:
            response = await self._get_client().request("POST", f"{self.base_url}/v1/track", json=body)
        except httpx.RequestError as exc:
            self._handle_failure(AnalyticsDeliveryError(f"analytics transport error: {exc}", event_name=name), exc)
            return

        if response.status_code >= 300:
            self._handle_failure(
                AnalyticsDeliveryError(
                    f"analytics request failed (status={response.status_code})",
                    response.status_code,
                    event_name=name,
                )
            )
            return

        logger.debug("[ANALYTICS] tracked %s", name)

    def _handle_failure(self, error: AnalyticsDeliveryError, cause: Optional[BaseException] = None) -> None:
        if self.debug:
            logger.warning("[ANALYTICS] %s (debug mode, continuing)", error)
            return
        logger.error("[ANALYTICS] %s", error)
        if cause is not None:
            raise error from cause
        raise error
