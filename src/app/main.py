from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn
import signal
import asyncio
import time
from contextlib import asynccontextmanager
import logging
from datetime import datetime, timezone
from typing import Optional

from core.config import Settings, settings
from core.factory import LifecycleServices, ServiceFactory
from core.middleware import setup_exception_handlers
from core.scheduler import initialize_scheduler, cleanup_scheduler
from core.responses import success_response

# Routers Import
from routers import subscription_router, webhook_router

# 로깅 설정
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"

# Graceful shutdown을 위한 글로벌 변수
shutdown_event = asyncio.Event()


def signal_handler(signum, frame):
    """SIGINT (Ctrl+C) 및 SIGTERM 처리"""
    shutdown_event.set()
    # 강제 종료를 위한 시스템 종료
    import sys
    sys.exit(0)


@asynccontextmanager
async def lifespan(app: FastAPI):
    config: Settings = app.state.settings
    owns_services = getattr(app.state, "services", None) is None

    # 자격 증명이 없으면 여기서 ValueError로 기동 실패
    if owns_services:
        app.state.services = ServiceFactory.build_services(config)

    if config.RENEWAL_REMINDER_ENABLED:
        try:
            await initialize_scheduler(
                app.state.services.renewal_reminders,
                hour_utc=config.RENEWAL_REMINDER_HOUR_UTC,
                window_days=config.RENEWAL_REMINDER_WINDOW_DAYS,
            )
        except Exception as e:
            logger.error(f"백그라운드 스케줄러 초기화 실패: {e}")

    yield

    # 백그라운드 스케줄러 종료
    try:
        await cleanup_scheduler()
    except Exception as e:
        logger.error(f"백그라운드 스케줄러 종료 실패: {e}")

    # 외부 클라이언트 커넥션 정리
    if owns_services:
        await ServiceFactory.shutdown(app.state.services)
        app.state.services = None


def create_app(config: Settings = settings, services: Optional[LifecycleServices] = None) -> FastAPI:
    app = FastAPI(
        title="Subscription Lifecycle Server",
        description="Webhook-driven subscription lifecycle processor",
        version=APP_VERSION,
        lifespan=lifespan,
        debug=config.DEBUG
    )
    app.state.settings = config
    app.state.services = services
    app.state.started_at = time.monotonic()

    # 예외 처리 미들웨어 설정
    setup_exception_handlers(app)

    # CORS 미들웨어 추가
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health_check():
        # 외부 의존성은 검사하지 않고 프로세스 상태만 반환
        return success_response(
            data={
                "status": "healthy",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "uptime_seconds": round(time.monotonic() - app.state.started_at, 3),
                "version": APP_VERSION,
                "environment": config.ENVIRONMENT,
            },
            message="헬스 체크"
        )

    # 라우터 등록
    app.include_router(webhook_router.router)  # 구독 웹훅 라우터
    app.include_router(subscription_router.router)  # 내부 구독 API 라우터
    return app


app = create_app()


if __name__ == "__main__":
    # 메인 스레드에서만 신호 핸들러 등록
    try:
        import threading
        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGINT, signal_handler)
            signal.signal(signal.SIGTERM, signal_handler)
        else:
            logger.warning("메인 스레드가 아니므로 signal 핸들러 등록을 건너뜁니다")
    except Exception as e:
        logger.warning(f"signal 핸들러 등록 실패, uvicorn 기본 처리에 위임: {e}")

    uvicorn.run(
        app,
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
        reload=settings.DEBUG
    )
