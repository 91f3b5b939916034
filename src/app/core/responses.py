"""
공통 응답 모델 및 예외 클래스
"""
from typing import Generic, TypeVar, Optional, Any
from pydantic import BaseModel
import logging

logger = logging.getLogger(__name__)

T = TypeVar('T')

class APIResponse(BaseModel, Generic[T]):
    """표준 API 응답 모델"""
    status: str  # "success" or "error"
    data: Optional[T] = None
    message: Optional[str] = None
    error_code: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "status": "success",
                "data": {"key": "value"},
                "message": "작업이 성공적으로 완료되었습니다."
            }
        }

# 커스텀 예외 클래스들
class BusinessException(Exception):
    """비즈니스 로직 예외"""
    def __init__(self, message: str, error_code: str = None, status_code: int = 400):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        super().__init__(message)

class AuthenticationException(BusinessException):
    """인증 관련 예외 (웹훅 서명 불일치 포함)"""
    def __init__(self, message: str = "인증에 실패했습니다", error_code: str = "AUTH_FAILED"):
        super().__init__(message, error_code, 401)

class NotFoundException(BusinessException):
    """리소스 찾을 수 없음 예외"""
    def __init__(self, message: str = "요청한 리소스를 찾을 수 없습니다"):
        super().__init__(message, "NOT_FOUND", 404)

class MalformedPayloadException(BusinessException):
    """웹훅 본문을 해석할 수 없음 (재시도해도 결과가 같으므로 400)"""
    def __init__(self, message: str = "웹훅 본문을 해석할 수 없습니다", errors: list = None):
        super().__init__(message, "MALFORMED_PAYLOAD", 400)
        self.errors = errors or []

class MissingTopicException(BusinessException):
    """웹훅 topic 누락"""
    def __init__(self, message: str = "웹훅 topic이 없습니다"):
        super().__init__(message, "MISSING_TOPIC", 400)

class HandlerFailure(BusinessException):
    """핸들러 하위 호출 실패 - 500으로 응답해 이벤트 소스가 재전송하도록 한다"""
    def __init__(
        self,
        message: str = "웹훅 처리 중 오류가 발생했습니다",
        *,
        topic: Optional[str] = None,
        event_id: Optional[str] = None,
        cause: Optional[BaseException] = None,
        error_code: str = "HANDLER_FAILURE",
    ):
        super().__init__(message, error_code, 500)
        self.topic = topic
        self.event_id = event_id
        self.cause = cause

class RetrySchedulingFailed(HandlerFailure):
    """결제 재시도 예약 실패"""
    def __init__(
        self,
        subscription_id: str,
        attempt_number: Optional[int] = None,
        retry_days: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(
            f"결제 재시도 예약 실패: subscription={subscription_id} attempt={attempt_number} days={retry_days}",
            cause=cause,
            error_code="RETRY_SCHEDULING_FAILED",
        )
        self.subscription_id = subscription_id
        self.attempt_number = attempt_number
        self.retry_days = retry_days

class PauseFailed(HandlerFailure):
    """구독 일시정지 실패"""
    def __init__(
        self,
        subscription_id: str,
        attempt_number: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(
            f"구독 일시정지 실패: subscription={subscription_id} attempt={attempt_number}",
            cause=cause,
            error_code="PAUSE_FAILED",
        )
        self.subscription_id = subscription_id
        self.attempt_number = attempt_number

# 응답 헬퍼 함수들
def success_response(data: Any = None, message: str = "성공") -> APIResponse:
    """성공 응답 생성"""
    return APIResponse(status="success", data=data, message=message)

def error_response(
    message: str = "오류가 발생했습니다",
    error_code: str = None,
    data: Any = None
) -> APIResponse:
    """오류 응답 생성"""
    return APIResponse(
        status="error",
        message=message,
        error_code=error_code,
        data=data
    )
