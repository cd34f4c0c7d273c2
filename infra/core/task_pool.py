"""
호출자 실행(caller-runs) 정책을 가진 비동기 작업 풀

동시 실행 수(max_workers)와 대기 허용량(queue_capacity)을 넘는 제출은
새 태스크를 만들지 않고 제출한 코루틴에서 직접 실행됩니다.
"""

import asyncio
from typing import Any, Awaitable, Optional, Set

from .logger import get_logger

logger = get_logger(__name__)


class CallerRunsTaskPool:
    """제한된 크기의 asyncio 작업 풀"""

    def __init__(self, name: str, max_workers: int, queue_capacity: Optional[int] = None):
        """
        Args:
            name: 풀 이름 (로그용)
            max_workers: 동시에 실행할 최대 작업 수
            queue_capacity: 실행 대기 허용량 (기본값: max_workers * 2)
        """
        if max_workers < 1:
            raise ValueError("max_workers 는 1 이상이어야 합니다")
        self.name = name
        self.max_workers = max_workers
        self.queue_capacity = max_workers * 2 if queue_capacity is None else queue_capacity
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._active_tasks: Set[asyncio.Task] = set()
        self.caller_runs_count = 0

    def _get_semaphore(self) -> asyncio.Semaphore:
        # 이벤트 루프 안에서 생성
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_workers)
        return self._semaphore

    @property
    def in_flight(self) -> int:
        """실행 중이거나 대기 중인 작업 수"""
        return len(self._active_tasks)

    async def _run(self, coro: Awaitable[Any]) -> Any:
        async with self._get_semaphore():
            return await coro

    async def submit(self, coro: Awaitable[Any]) -> Optional[asyncio.Task]:
        """
        작업 제출

        Args:
            coro: 실행할 코루틴

        Returns:
            Optional[asyncio.Task]: 풀에서 실행되면 태스크, 호출자가 직접 실행했으면 None
        """
        if self.in_flight >= self.max_workers + self.queue_capacity:
            self.caller_runs_count += 1
            logger.debug(f"[{self.name}] 풀 포화, 호출자에서 직접 실행")
            try:
                await coro
            except Exception as e:
                logger.error(f"[{self.name}] 작업 실패: {str(e)}")
            return None

        task = asyncio.create_task(self._run(coro))
        self._active_tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._active_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"[{self.name}] 작업 실패: {str(error)}")

    async def join(self) -> None:
        """실행 중인 모든 작업 완료 대기"""
        while self._active_tasks:
            await asyncio.gather(*list(self._active_tasks), return_exceptions=True)
