"""
Supabase 기반 웹훅 처리 기록 저장소
system_logs 테이블에 이벤트 ID를 남겨 중복 전송을 감지합니다.
"""
import logging
from typing import Any, Dict

from supabase import Client

from core.interfaces import IWebhookEventLedger

logger = logging.getLogger(__name__)


class DatabaseHelper(IWebhookEventLedger):
    def __init__(self, admin_client: Client):
        self.admin_client = admin_client

    async def log_system_event(self, event_type: str = 'info', event_data: Dict = None) -> bool:
        """시스템 이벤트 로그 기록"""
        try:
            log_data = {
                'event_type': event_type,
                'event_data': event_data or {},
            }

            result = self.admin_client.table('system_logs').insert(log_data).execute()
            return len(result.data) > 0
        except Exception as e:
            logger.error(f"시스템 로그 기록 실패: {e}")
            return False

    async def has_processed_webhook_event(self, provider: str, event_id: str) -> bool:
        """지정한 공급자 웹훅 이벤트가 이미 처리되었는지 확인

        조회 실패 시 False를 반환해 처리를 계속한다 (중복 처리가 누락보다 낫다).
        """
        try:
            if not event_id:
                return False

            event_type = f"{provider}_webhook"
            result = (
                self.admin_client.table('system_logs')
                .select('id')
                .eq('event_type', event_type)
                .contains('event_data', {'event_id': event_id, 'status': 'processed'})
                .limit(1)
                .execute()
            )
            return bool(result.data)
        except Exception as e:
            logger.error(f"웹훅 이벤트 중복 확인 실패: {e}")
            return False

    async def claim_webhook_event(self, provider: str, event_id: str) -> bool:
        """웹훅 이벤트 처리 선점

        processing 행을 먼저 넣고, 같은 이벤트의 processing 행 중 가장 오래된 것이 자기 행일 때만 선점한다.
        처리 완료 기록은 processing 행 삭제보다 먼저 들어가므로 선점 뒤 processed 여부를 다시 확인한다.
        저장소 오류 시에는 처리를 계속한다.
        """
        if not event_id:
            return True

        event_type = f"{provider}_webhook"
        try:
            inserted = self.admin_client.table('system_logs').insert({
                'event_type': event_type,
                'event_data': {'event_id': event_id, 'status': 'processing'},
            }).execute()
            claim_id = inserted.data[0]['id'] if inserted.data else None

            earliest = (
                self.admin_client.table('system_logs')
                .select('id')
                .eq('event_type', event_type)
                .contains('event_data', {'event_id': event_id, 'status': 'processing'})
                .order('id')
                .limit(1)
                .execute()
            )
            if claim_id is not None and earliest.data and earliest.data[0]['id'] != claim_id:
                self.admin_client.table('system_logs').delete().eq('id', claim_id).execute()
                return False

            if await self.has_processed_webhook_event(provider, event_id):
                if claim_id is not None:
                    self.admin_client.table('system_logs').delete().eq('id', claim_id).execute()
                return False
            return True
        except Exception as e:
            logger.error(f"웹훅 이벤트 선점 실패: {e}")
            return True

    async def release_webhook_event(self, provider: str, event_id: str) -> None:
        """processing 행 삭제"""
        if not event_id:
            return
        try:
            self._delete_claims(provider, event_id)
        except Exception as e:
            logger.error(f"웹훅 이벤트 선점 해제 실패: {e}")

    def _delete_claims(self, provider: str, event_id: str) -> None:
        (
            self.admin_client.table('system_logs')
            .delete()
            .eq('event_type', f"{provider}_webhook")
            .contains('event_data', {'event_id': event_id, 'status': 'processing'})
            .execute()
        )

    async def record_webhook_event(self, provider: str, event_id: str, status: str, payload: Dict[str, Any] = None) -> bool:
        """웹훅 이벤트 처리 기록 (processed 기록 후 선점 행 삭제)"""
        if not event_id:
            return False

        event_payload = {
            'event_id': event_id,
            'status': status,
        }
        if payload:
            event_payload['payload'] = payload

        recorded = await self.log_system_event(event_type=f"{provider}_webhook", event_data=event_payload)
        if recorded and status == 'processed':
            try:
                self._delete_claims(provider, event_id)
            except Exception as e:
                logger.error(f"웹훅 이벤트 선점 행 정리 실패: {e}")
        return recorded
