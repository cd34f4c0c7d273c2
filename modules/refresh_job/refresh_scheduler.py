"""
토큰 갱신 스케줄러

OAUTH2_REFRESH_TOKEN_JOB_CRON 표현식에 맞춰 RefreshTokenJob 을 실행합니다.
"""

from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from infra.core.config import Config, get_config
from infra.core.logger import get_logger

from .refresh_job_schema import RefreshJobReport
from .refresh_token_job import RefreshTokenJob

logger = get_logger(__name__)

JOB_ID = "refresh_token_job"


class RefreshTokenScheduler:
    """토큰 갱신 스케줄러"""

    def __init__(
        self,
        job: RefreshTokenJob,
        config: Optional[Config] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.job = job
        self.config = config or get_config()
        self.scheduler = scheduler or AsyncIOScheduler()
        self.last_report: Optional[RefreshJobReport] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> bool:
        """
        스케줄러 시작

        Returns:
            bool: 시작했으면 True (OAUTH2_ENABLE_REFRESH_TOKEN_JOB=false 이면 False)
        """
        if not self.config.enable_refresh_token_job:
            logger.info("토큰 갱신 스케줄러 비활성화됨")
            return False
        if self._running:
            logger.warning("스케줄러가 이미 실행 중입니다")
            return True

        cron = self.config.refresh_token_job_cron
        self.scheduler.add_job(
            self._run_scheduled,
            CronTrigger.from_crontab(cron),
            id=JOB_ID,
            name="토큰 갱신",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.start()
        self._running = True
        logger.info(f"토큰 갱신 스케줄러 시작: cron='{cron}'")
        return True

    async def stop(self) -> None:
        """스케줄러 중지"""
        if not self._running:
            return
        self.scheduler.shutdown(wait=False)
        self._running = False
        logger.info("토큰 갱신 스케줄러 중지 완료")

    async def run_now(self) -> RefreshJobReport:
        """즉시 한 번 실행"""
        self.last_report = await self.job.run()
        return self.last_report

    async def _run_scheduled(self) -> None:
        try:
            await self.run_now()
        except Exception as e:
            logger.error(f"토큰 갱신 작업 실패: {str(e)}", exc_info=True)
