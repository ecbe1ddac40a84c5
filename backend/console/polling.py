import asyncio
import logging
from typing import Awaitable, Callable, Optional
from services.errors import EntregaError

logger = logging.getLogger(__name__)


class PollingTask:
    """
    Run an async action every `interval` seconds until stopped.

    The owner keeps the handle and must call stop(); nothing is torn down
    implicitly. A failed cycle is logged and the next one runs on schedule.
    """

    def __init__(self, name: str, interval: float,
                 action: Callable[[], Awaitable[None]],
                 on_error: Optional[Callable[[Exception], None]] = None):
        self.name = name
        self.interval = interval
        self._action = action
        self._on_error = on_error
        self._task: asyncio.Task | None = None
        self.cycles = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=self.name)
        logger.info(f"[{self.name}] polling a cada {self.interval}s")

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            logger.info(f"[{self.name}] polling encerrado")

    async def _run(self) -> None:
        while True:
            try:
                await self._action()
            except EntregaError as e:
                logger.warning(f"[{self.name}] ciclo falhou: {e.message}")
                if self._on_error:
                    self._on_error(e)
            except Exception as e:
                # CancelledError is not an Exception, so stop() still ends the loop
                logger.exception(f"[{self.name}] erro inesperado no ciclo")
                if self._on_error:
                    self._on_error(e)
            self.cycles += 1
            await asyncio.sleep(self.interval)
