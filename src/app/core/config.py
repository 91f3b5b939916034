"""
애플리케이션 설정 관리
"""
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import validator
from pydantic_settings import BaseSettings


_FILE_PATH = Path(__file__).resolve()

DEDUP_BACKENDS = ("none", "memory", "supabase")


def _collect_env_files(file_path: Path) -> tuple[Path, ...]:
    """환경 파일 후보를 가까운 디렉터리부터 수집"""

    collected: list[Path] = []
    seen: set[Path] = set()

    for directory in file_path.parents:
        for name in (".env", ".env.local"):
            candidate = directory / name
            if candidate.exists() and candidate not in seen:
                collected.append(candidate)
                seen.add(candidate)

    return tuple(collected)


_ENV_FILES = _collect_env_files(_FILE_PATH)


def _load_dotenv_files() -> None:
    """프로젝트 전체에서 활용할 .env 파일들을 순차적으로 로드"""

    for dotenv_path in _ENV_FILES:
        load_dotenv(dotenv_path, override=False)


_load_dotenv_files()

class Settings(BaseSettings):
    """애플리케이션 설정"""

    # 서버 설정
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    DEBUG: bool = False
    ENVIRONMENT: str = "production"

    # 로깅 설정
    LOG_LEVEL: str = "INFO"

    # 웹훅 설정 (시크릿이 없으면 서명 검증이 항상 실패한다)
    SHOPIFY_WEBHOOK_SECRET: Optional[str] = None
    WEBHOOK_SIGNATURE_HEADER: str = "X-Shopify-Hmac-Sha256"
    WEBHOOK_HANDLER_TIMEOUT_SECONDS: float = 25.0
    # none | memory | supabase
    WEBHOOK_DEDUP_BACKEND: str = "none"
    WEBHOOK_DEDUP_MEMORY_SIZE: int = 10000

    # 커머스 플랫폼 (GraphQL Admin API)
    SHOPIFY_STORE_DOMAIN: Optional[str] = None
    SHOPIFY_ACCESS_TOKEN: Optional[str] = None
    SHOPIFY_API_VERSION: str = "2024-01"
    COMMERCE_API_TIMEOUT_SECONDS: float = 10.0
    COMMERCE_API_MAX_RETRIES: int = 2

    # 이메일 (SendGrid)
    SENDGRID_API_KEY: Optional[str] = None
    SENDGRID_API_BASE_URL: str = "https://api.sendgrid.com"
    SENDGRID_FROM_EMAIL: str = "no-reply@example.com"
    SENDGRID_WELCOME_TEMPLATE_ID: Optional[str] = None
    SENDGRID_UPDATE_TEMPLATE_ID: Optional[str] = None
    SENDGRID_CANCEL_TEMPLATE_ID: Optional[str] = None
    SENDGRID_PAYMENT_RETRY_TEMPLATE_ID: Optional[str] = None
    SENDGRID_PAYMENT_FAILED_FINAL_TEMPLATE_ID: Optional[str] = None
    SENDGRID_PAYMENT_SUCCESS_TEMPLATE_ID: Optional[str] = None
    SENDGRID_RENEWAL_REMINDER_TEMPLATE_ID: Optional[str] = None
    SENDGRID_ORDER_TEMPLATE_ID: Optional[str] = None
    EMAIL_TIMEOUT_SECONDS: float = 10.0
    COMPANY_NAME: str = "Subscription Store"
    SUPPORT_EMAIL: Optional[str] = None

    # 분석 이벤트 (Segment)
    ANALYTICS_ENABLED: bool = False
    SEGMENT_WRITE_KEY: Optional[str] = None
    SEGMENT_API_BASE_URL: str = "https://api.segment.io"
    ANALYTICS_TIMEOUT_SECONDS: float = 5.0

    # 스토어프론트 (이메일 딥링크 생성용)
    STOREFRONT_BASE_URL: str = "http://localhost:3000"

    # 내부 API 보호 토큰 (크론/운영자 전용 엔드포인트)
    INTERNAL_API_TOKEN: Optional[str] = None

    # 갱신 알림 스케줄러
    RENEWAL_REMINDER_ENABLED: bool = False
    RENEWAL_REMINDER_HOUR_UTC: int = 9
    RENEWAL_REMINDER_WINDOW_DAYS: int = 3

    # Supabase (선택: 웹훅 처리 기록 저장소)
    SUPABASE_URL: Optional[str] = None
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = None

    @validator('WEBHOOK_DEDUP_BACKEND')
    def validate_dedup_backend(cls, v):
        normalized = (v or "none").strip().lower()
        if normalized not in DEDUP_BACKENDS:
            raise ValueError(f'WEBHOOK_DEDUP_BACKEND는 {", ".join(DEDUP_BACKENDS)} 중 하나여야 합니다')
        return normalized

    @validator('WEBHOOK_HANDLER_TIMEOUT_SECONDS')
    def validate_handler_timeout(cls, v):
        if v <= 0:
            raise ValueError('WEBHOOK_HANDLER_TIMEOUT_SECONDS는 0보다 커야 합니다')
        return v

    @validator('RENEWAL_REMINDER_HOUR_UTC')
    def validate_reminder_hour(cls, v):
        if not 0 <= v <= 23:
            raise ValueError('RENEWAL_REMINDER_HOUR_UTC는 0~23 사이여야 합니다')
        return v

    class Config:
        env_file = tuple(str(path) for path in _ENV_FILES) if _ENV_FILES else None
        case_sensitive = True
        extra = "allow"  # 추가 환경변수 허용

# 전역 설정 인스턴스
settings = Settings()
