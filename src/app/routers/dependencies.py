"""
라우터 공용 의존성
서비스 묶음과 설정은 기동 시 app.state에 보관됩니다.
"""
import hmac

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from core.config import Settings
from core.factory import LifecycleServices
from core.responses import AuthenticationException

# HTTP Bearer 인증 스키마 (내부 API 전용)
security = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_services(request: Request) -> LifecycleServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="서비스가 아직 초기화되지 않았습니다.",
        )
    return services


async def authorize_internal(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    config: Settings = Depends(get_settings),
) -> None:
    """크론/운영자 전용 엔드포인트의 Bearer 토큰 검증"""
    expected = config.INTERNAL_API_TOKEN
    if not expected:
        raise AuthenticationException("내부 API 토큰이 설정되지 않았습니다", error_code="INTERNAL_TOKEN_NOT_CONFIGURED")
    if credentials is None:
        raise AuthenticationException("인증 토큰이 필요합니다")
    if not hmac.compare_digest(credentials.credentials.encode("utf-8"), expected.encode("utf-8")):
        raise AuthenticationException("인증 토큰이 올바르지 않습니다", error_code="INVALID_TOKEN")
