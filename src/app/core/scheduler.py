"""
배경 작업 스케줄러
매일 지정 시각(UTC)에 갱신 예정 구독 알림 메일을 발송
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

logger = logging.getLogger(__name__)


def seconds_until_next_run(now: datetime, hour_utc: int) -> float:
    """다음 실행 시각까지 남은 초 (이미 지났으면 다음 날)"""
    now = now.astimezone(timezone.utc)
    next_run = now.replace(hour=hour_utc, minute=0, second=0, microsecond=0)
    if next_run <= now:
        next_run += timedelta(days=1)
    return (next_run - now).total_seconds()


class BackgroundScheduler:
    def __init__(self, reminder_service, hour_utc: int = 9, window_days: int = 3,
                 clock: Optional[Callable[[], datetime]] = None):
        self.reminder_service = reminder_service
        self.hour_utc = hour_utc
        self.window_days = window_days
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.running = False
        self.tasks = []

    async def start(self):
        """스케줄러 시작"""
        if self.running:
            return

        self.running = True
        logger.info("백그라운드 스케줄러 시작 (갱신 알림 %02d:00 UTC)", self.hour_utc)

        self.tasks.append(
            asyncio.create_task(self._daily_reminder_scheduler())
        )

    async def stop(self):
        """스케줄러 중지"""
        if not self.running:
            return

        self.running = False
        logger.info("백그라운드 스케줄러 중지")

        # 모든 실행 중인 작업 취소
        for task in self.tasks:
            if not task.done():
                task.cancel()

        # 작업이 완료될 때까지 대기
        if self.tasks:
            await asyncio.gather(*self.tasks, return_exceptions=True)

        self.tasks.clear()

    async def _daily_reminder_scheduler(self):
        """매일 지정 시각에 갱신 알림 실행"""
        while self.running:
            try:
                sleep_seconds = seconds_until_next_run(self.clock(), self.hour_utc)
                logger.info(f"다음 갱신 알림까지 {sleep_seconds:.0f}초 대기")
                await asyncio.sleep(sleep_seconds)

                if not self.running:
                    break

                await self.run_renewal_reminders()

            except asyncio.CancelledError:
                logger.info("갱신 알림 스케줄러 취소됨")
                break
            except Exception as e:
                logger.error(f"갱신 알림 스케줄러 오류: {e}")
                # 오류 발생 시 1시간 후 재시도
                await asyncio.sleep(3600)

    async def run_renewal_reminders(self) -> list:
        """갱신 알림 1회 실행"""
        logger.info("갱신 알림 작업 시작")
        sent = await self.reminder_service.send_upcoming_reminders(within_days=self.window_days)
        logger.info(f"갱신 알림 {len(sent)}건 발송 완료")
        return sent


# 전역 스케줄러 인스턴스
scheduler: Optional[BackgroundScheduler] = None

def get_scheduler() -> Optional[BackgroundScheduler]:
    """스케줄러 인스턴스 반환"""
    return scheduler

async def initialize_scheduler(reminder_service, hour_utc: int, window_days: int):
    """스케줄러 초기화"""
    global scheduler
    if scheduler is None:
        scheduler = BackgroundScheduler(reminder_service, hour_utc=hour_utc, window_days=window_days)
        await scheduler.start()
        logger.info("백그라운드 스케줄러 초기화 완료")

async def cleanup_scheduler():
    """스케줄러 정리"""
    global scheduler
    if scheduler:
        await scheduler.stop()
        scheduler = None
        logger.info("백그라운드 스케줄러 정리 완료")
