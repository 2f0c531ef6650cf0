"""Fixed-interval driver for :class:`~alerts.engine.AlertEngine`."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Union

from alerts.engine import AlertEngine, RoomMonitor

# Anything with async ``poll(token)`` and ``reset()``.
PollTarget = Union[AlertEngine, RoomMonitor]

logger = logging.getLogger(__name__)

_DEFAULT_INTERVAL_SECONDS = 30.0


class CancellationToken:
    """Flag shared between a poller and the engine it drives."""

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


class AlertPoller:
    """Poll once on start, then once every *interval* seconds until stopped.

    Cycles run one after another inside a single task, so they never
    overlap.  After :meth:`stop`, a cycle that was still waiting on the
    network is discarded by the engine instead of notifying.
    """

    def __init__(
        self,
        engine: PollTarget,
        interval: float = _DEFAULT_INTERVAL_SECONDS,
        on_update: Callable[[Any], None] | None = None,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"Polling interval must be positive, got {interval}")
        self._engine = engine
        self._interval = interval
        self._on_update = on_update
        self._token = CancellationToken()
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task[None]:
        """Start polling in a background task (clears the target's state)."""
        if self.running:
            raise RuntimeError("Poller is already running")
        self._engine.reset()
        self._token = CancellationToken()
        self._task = asyncio.get_running_loop().create_task(self._run(self._token))
        return self._task

    async def stop(self) -> None:
        """Cancel the timer and wait for the polling task to finish."""
        self._token.cancel()
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def run_forever(self) -> None:
        """Start polling and block until the task ends or is cancelled."""
        task = self.start()
        try:
            await task
        finally:
            await self.stop()

    async def _run(self, token: CancellationToken) -> None:
        while not token.cancelled:
            await self._cycle(token)
            await asyncio.sleep(self._interval)

    async def _cycle(self, token: CancellationToken) -> None:
        try:
            view = await self._engine.poll(token)
        except Exception:
            logger.exception("Polling cycle failed")
            return

        if view is not None and self._on_update is not None:
            try:
                self._on_update(view)
            except Exception:
                logger.exception("Alert view update callback failed")
