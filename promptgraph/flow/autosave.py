import asyncio
from logging import getLogger
from typing import Optional

from .serializer import FlowSerializer

logger = getLogger(__name__)

DEFAULT_INTERVAL = 60.0


class Autosaver:
    """
    Periodically writes the current flow to the autosave slot.
    Saving is best effort: a failed tick is logged and the loop keeps going.
    """

    def __init__(self, serializer: FlowSerializer, interval: float = DEFAULT_INTERVAL):
        self.serializer = serializer
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def tick(self) -> bool:
        try:
            self.serializer.autosave()
        except Exception as exc:
            logger.warning("autosave failed: %s", exc)
            return False
        logger.debug("autosaved flow")
        return True

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.tick()

    def start(self) -> None:
        if self.running:
            return
        logger.info("autosaving every %ss", self.interval)
        self._task = asyncio.ensure_future(self._loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
