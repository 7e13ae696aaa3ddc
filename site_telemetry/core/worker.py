import asyncio
import logging
from typing import Awaitable, Callable, Optional

from site_telemetry.config.settings import Settings

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[None]]


class BackgroundWorker:
    """Bounded job queue drained by a fixed pool of asyncio tasks.

    Jobs run on the worker tasks, not on the request task that submitted
    them, so a cancelled request never cancels its side effects.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.queue: Optional[asyncio.Queue] = None
        self.workers: list[asyncio.Task] = []
        self.running = False
        self.dropped_count = 0

    async def start(self):
        self.queue = asyncio.Queue(maxsize=self.settings.worker_queue_max_size)
        self.running = True

        for i in range(self.settings.worker_count):
            worker = asyncio.create_task(self._worker(i))
            self.workers.append(worker)

        logger.info(f"Background worker started with {self.settings.worker_count} tasks")

    async def stop(self, drain_timeout: float = 5.0):
        if self.queue is not None:
            try:
                await asyncio.wait_for(self.queue.join(), timeout=drain_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    f"Background worker stopping with {self.queue.qsize()} pending jobs"
                )

        self.running = False

        for worker in self.workers:
            worker.cancel()

        await asyncio.gather(*self.workers, return_exceptions=True)
        self.workers.clear()

        logger.info("Background worker stopped")

    def submit(self, name: str, job: Job) -> bool:
        if not self.running:
            self.dropped_count += 1
            logger.error(f"Background worker not running, dropping job: {name}")
            return False

        try:
            self.queue.put_nowait((name, job))
        except asyncio.QueueFull:
            self.dropped_count += 1
            logger.error(f"Job queue full, dropping job: {name}")
            return False
        return True

    async def drain(self):
        if self.queue is not None:
            await self.queue.join()

    async def _worker(self, worker_id: int):
        logger.debug(f"Worker {worker_id} started")

        while self.running:
            name, job = await self.queue.get()
            try:
                await job()
            except Exception as e:
                logger.error(f"Worker {worker_id} job {name} failed: {e}", exc_info=True)
            finally:
                self.queue.task_done()

    def get_queue_size(self) -> int:
        return self.queue.qsize() if self.queue else 0
