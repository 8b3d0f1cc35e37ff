import asyncio
from collections.abc import Awaitable

import structlog

logger = structlog.get_logger()


class BackgroundSaver:
    """Runs conversation saves off the reply path.

    Failures are logged and dropped; there are no retries. Tasks are held
    until they finish so the event loop does not garbage-collect them.
    """

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def schedule(self, save: Awaitable, **log_context) -> asyncio.Task:
        task = asyncio.create_task(self._run(save, log_context))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every scheduled save to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _run(self, save: Awaitable, log_context: dict) -> None:
        try:
            await save
        except asyncio.CancelledError:
            logger.warning("conversation_save_cancelled", **log_context)
            raise
        except Exception as e:
            logger.error(
                "conversation_save_failed",
                error=str(e),
                error_type=type(e).__name__,
                **log_context,
            )
        else:
            logger.debug("conversation_saved", **log_context)
