"""Recurring BNS staleness sweep."""

import asyncio

from truthchain.core.logging import get_logger
from truthchain.services.bns import BNSValidator, SweepReport

logger = get_logger(__name__)


class BNSValidationScheduler:
    """Runs :meth:`BNSValidator.validate_stale` on a fixed interval.

    The first sweep runs after ``warmup`` seconds so startup is not slowed
    down by registry traffic.
    """

    def __init__(
        self,
        validator: BNSValidator,
        warmup: float = 300.0,
        interval: float = 86400.0,
    ) -> None:
        self.validator = validator
        self.warmup = warmup
        self.interval = interval
        self.last_report: SweepReport | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task[None]:
        if self._task is not None and not self._task.done():
            logger.warning("bns_scheduler_already_running")
            return self._task
        logger.info(
            "bns_scheduler_started", warmup=self.warmup, interval=self.interval
        )
        self._task = asyncio.create_task(self._run(), name="bns-validation")
        return self._task

    async def _run(self) -> None:
        await asyncio.sleep(self.warmup)
        while True:
            try:
                self.last_report = await self.validator.validate_stale()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("bns_sweep_failed")
            await asyncio.sleep(self.interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("bns_scheduler_stopped")

    async def trigger(self) -> SweepReport:
        """Run a sweep now and wait for it."""
        self.last_report = await self.validator.validate_stale()
        return self.last_report
