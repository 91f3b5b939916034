"""
서비스 기본 클래스
"""
import logging
from typing import Dict, Any, Optional

from pydantic import BaseModel, ValidationError

from core.interfaces import IAnalyticsService
from core.responses import MalformedPayloadException


def parse_model(model: type[BaseModel], data: Optional[Dict[str, Any]], context: str):
    """본문을 모델로 변환. 필수 필드 누락/형식 오류는 MalformedPayloadException"""
    try:
        return model.model_validate(data or {})
    except ValidationError as e:
        fields = sorted({".".join(str(loc) for loc in err["loc"]) for err in e.errors()})
        raise MalformedPayloadException(
            f"{context} 본문 검증 실패: {', '.join(fields)}",
            errors=e.errors(include_url=False, include_context=False),
        ) from e


class BaseService:
    """분석 이벤트를 내보내는 모든 서비스의 기본 클래스"""

    parse_model = staticmethod(parse_model)

    def __init__(self, analytics: IAnalyticsService):
        self.analytics = analytics
        self.logger = logging.getLogger(self.__class__.__name__)

    async def emit(self, event_name: str, properties: Dict[str, Any]) -> None:
        """분석 이벤트 전송 (실패는 삼키지 않고 그대로 전파)"""
        await self.analytics.track_event(event_name, properties)
