"""Background health probe feeding connectivity changes into the sync engine."""

from __future__ import annotations

import asyncio
from typing import Optional

from timetrack.client.sync_engine import SyncEngine
from timetrack.client.transport import TransportError
from timetrack.config import get_settings
from timetrack.utils.log import log


class ConnectivityProbe:
    """Poll ``GET /health`` and call ``handle_online``/``handle_offline`` on transitions."""

    def __init__(self, engine: SyncEngine, *, interval: float | None = None):
        self._engine = engine
        self._interval = interval if interval is not None else get_settings().health_probe_interval_seconds
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        if self._running:
            log.warning("connectivity-probe-already-running")
            return

        self._running = True
        self._task = asyncio.create_task(self._probe_loop())
        log.info("connectivity-probe-started", interval=self._interval)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        log.info("connectivity-probe-stopped")

    async def check(self) -> bool:
        """Probe once and forward a state change to the engine."""
        try:
            await self._engine.transport.health()
        except TransportError as exc:
            log.debug("health-probe-failed", error=str(exc))
            reachable = False
        else:
            reachable = True

        if reachable and not self._engine.is_online:
            await self._engine.handle_online()
        elif not reachable and self._engine.is_online:
            await self._engine.handle_offline()
        return reachable

    async def _probe_loop(self) -> None:
        while self._running:
            try:
                await self.check()
            except Exception as exc:  # noqa: BLE001 – keep probing
                log.exception("connectivity-probe-error", error=str(exc))

            await asyncio.sleep(self._interval)
