"""
Bounded fire-and-forget task runner.

Work submitted here is decoupled from the request that scheduled it: the
caller never awaits it, failures are logged and counted, and at most
``max_concurrency`` jobs run at once.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Set

logger = logging.getLogger(__name__)


class BackgroundDispatcher:
    """Runs coroutine jobs in the background with bounded concurrency"""

    def __init__(self, max_concurrency: int = 4):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.max_concurrency = max_concurrency
        self._semaphore = None
        self._tasks: Set[asyncio.Task] = set()
        self.submitted = 0
        self.succeeded = 0
        self.failed = 0

    def _get_semaphore(self) -> asyncio.Semaphore:
        # Created lazily so it binds to the running loop
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_concurrency)
        return self._semaphore

    def submit(self, name: str, job: Callable[[], Awaitable[None]]) -> asyncio.Task:
        """Schedule ``job`` and return immediately"""
        self.submitted += 1
        task = asyncio.create_task(self._run(name, job), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, name: str, job: Callable[[], Awaitable[None]]) -> None:
        async with self._get_semaphore():
            try:
                await job()
            except asyncio.CancelledError:
                self.failed += 1
                logger.warning(f"Background job {name} cancelled")
                raise
            except Exception:
                self.failed += 1
                logger.exception(f"Background job {name} failed")
            else:
                self.succeeded += 1

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait for outstanding jobs, cancelling whatever exceeds ``timeout``"""
        if not self._tasks:
            return
        tasks = list(self._tasks)
        done, still_running = await asyncio.wait(tasks, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning(f"Cancelled {len(still_running)} background job(s) on drain")
            await asyncio.gather(*still_running, return_exceptions=True)

    def stats(self) -> Dict[str, int]:
        return {
            "submitted": self.submitted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "pending": self.pending,
        }
