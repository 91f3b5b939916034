"""트랜잭션 이메일 발송 서비스 (SendGrid v3 Mail Send)"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
from fastapi.encoders import jsonable_encoder

from core.interfaces import IEmailService
from core.lifecycle_config import LifecycleConfig


logger = logging.getLogger(__name__)


class TemplateNotFoundError(LookupError):
    """등록되지 않은 템플릿 키 (조용히 무시하지 않는다)"""

    def __init__(self, template_key: str) -> None:
        super().__init__(f"Email template '{template_key}' not found")
        self.template_key = template_key


class EmailDeliveryError(RuntimeError):
    """이메일 공급자 호출 실패"""

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        payload: Optional[Dict[str, Any]] = None,
        *,
        code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload or {}
        self.code = code


class EmailService(IEmailService):
    """템플릿 키 기반 이메일 발송

    - 템플릿 키는 LifecycleConfig.EMAIL_TEMPLATES에 등록된 값만 허용
    - 공통 데이터(support_email, company_name, help_center_url, current_year, subject)를
      모든 메시지에 병합하고, 호출자가 넘긴 값이 우선한다
    """

    def __init__(
        self,
        api_key: str,
        from_email: str,
        template_ids: Dict[str, Optional[str]],
        *,
        base_url: str = "https://api.sendgrid.com",
        company_name: Optional[str] = None,
        support_email: Optional[str] = None,
        storefront_base_url: str = "",
        timeout: float = 10.0,
    ) -> None:
        if not api_key or not api_key.strip():
            raise ValueError("SendGrid API 키가 설정되지 않았습니다.")

        self.api_key = api_key
        self.from_email = from_email
        self.template_ids = dict(template_ids)
        self.base_url = base_url.rstrip("/")
        self.company_name = company_name
        self.support_email = support_email
        self.storefront_base_url = storefront_base_url.rstrip("/")
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _common_data(self) -> Dict[str, Any]:
        return {
            "support_email": self.support_email,
            "company_name": self.company_name,
            "help_center_url": f"{self.storefront_base_url}/help",
            "current_year": datetime.now(timezone.utc).year,
        }

    async def send_email(self, to: str, template_key: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """템플릿 이메일 발송

        Raises:
            TemplateNotFoundError: 알 수 없는 템플릿 키 (네트워크 호출 전)
            EmailDeliveryError: 템플릿 ID 미설정, 전송 오류, 2xx 이외 응답
        """

        definition = LifecycleConfig.get_template(template_key)
        if definition is None:
            logger.error("[EMAIL] unknown template requested: %s", template_key)
            raise TemplateNotFoundError(template_key)

        template_id = self.template_ids.get(template_key)
        if not template_id:
            raise EmailDeliveryError(
                f"이메일 템플릿 ID가 설정되지 않았습니다: {definition.template_setting}",
                code="template_not_configured",
            )

        dynamic_data = {"subject": definition.subject, **self._common_data(), **(data or {})}
        message = {
            "personalizations": [
                {
                    "to": [{"email": to}],
                    "dynamic_template_data": jsonable_encoder(dynamic_data),
                }
            ],
            "from": {"email": self.from_email, "name": self.company_name},
            "template_id": template_id,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            response = await self._get_client().request(
                "POST",
                f"{self.base_url}/v3/mail/send",
                headers=headers,
                json=message,
            )
        except httpx.TimeoutException as exc:
            logger.error("[EMAIL] send timeout: template=%s", template_key)
            raise EmailDeliveryError("이메일 발송 시간이 초과되었습니다.", code="timeout") from exc
        except httpx.RequestError as exc:
            logger.error("[EMAIL] send network error: template=%s error=%s", template_key, exc)
            raise EmailDeliveryError("이메일 발송 중 네트워크 오류가 발생했습니다.", code="network_error") from exc

        if response.status_code >= 300:
            payload = self._safe_json(response)
            logger.error(
                "[EMAIL] send failed: template=%s status=%s",
                template_key,
                response.status_code,
            )
            raise EmailDeliveryError(
                self._resolve_error_message(payload, response.status_code),
                response.status_code,
                payload,
            )

        logger.info("[EMAIL] sent: template=%s", template_key)
        return {"template": template_key, "status_code": response.status_code}

    @staticmethod
    def _resolve_error_message(payload: Dict[str, Any], status_code: int) -> str:
        errors = payload.get("errors") if isinstance(payload, dict) else None
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            message = errors[0].get("message")
            if isinstance(message, str) and message.strip():
                return message
        return f"이메일 발송에 실패했습니다 (status={status_code})"

    @staticmethod
    def _safe_json(response: httpx.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
            return payload if isinstance(payload, dict) else {"data": payload}
        except Exception:
            return {"errors": [{"message": response.text}]}
