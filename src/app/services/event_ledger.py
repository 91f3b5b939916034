"""프로세스 내 웹훅 처리 기록 (단일 인스턴스 배포용)"""
import asyncio
from collections import OrderedDict
from typing import Any, Dict, Tuple

from core.interfaces import IWebhookEventLedger

PROCESSING = "processing"
PROCESSED = "processed"


class InMemoryEventLedger(IWebhookEventLedger):
    """최근 처리한 이벤트 ID를 최대 max_size개까지 보관 (오래된 것부터 제거)"""

    def __init__(self, max_size: int = 10000):
        if max_size <= 0:
            raise ValueError("max_size는 0보다 커야 합니다")
        self.max_size = max_size
        self._entries: "OrderedDict[Tuple[str, str], str]" = OrderedDict()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def _store(self, key: Tuple[str, str], status: str) -> None:
        # 호출자가 self._lock을 잡고 있어야 한다
        self._entries[key] = status
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)

    async def has_processed_webhook_event(self, provider: str, event_id: str) -> bool:
        if not event_id:
            return False
        async with self._lock:
            return self._entries.get((provider, event_id)) == PROCESSED

    async def claim_webhook_event(self, provider: str, event_id: str) -> bool:
        """확인과 선점을 한 번의 잠금 안에서 수행"""
        if not event_id:
            return True
        async with self._lock:
            key = (provider, event_id)
            if self._entries.get(key) in (PROCESSING, PROCESSED):
                return False
            self._store(key, PROCESSING)
            return True

    async def release_webhook_event(self, provider: str, event_id: str) -> None:
        if not event_id:
            return
        async with self._lock:
            key = (provider, event_id)
            if self._entries.get(key) == PROCESSING:
                del self._entries[key]

    async def record_webhook_event(
        self,
        provider: str,
        event_id: str,
        status: str,
        payload: Dict[str, Any] = None,
    ) -> bool:
        if not event_id:
            return False
        async with self._lock:
            self._store((provider, event_id), status)
        return True
