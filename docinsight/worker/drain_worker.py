import asyncio

from docinsight.config.settings import Settings
from docinsight.logging.logger import Log
from docinsight.orchestrator.orchestrator import CaptureOrchestrator


class DrainWorker:
    """Periodic drain loop: sleep or wake on a connectivity event -> drain."""

    def __init__(self, orchestrator: CaptureOrchestrator, settings: Settings) -> None:
        self._orchestrator = orchestrator
        self._interval_seconds = settings.drain_interval_seconds
        self._wakeup = asyncio.Event()

    def on_connectivity_change(self, is_online: bool) -> None:
        """Hook for the connectivity collaborator; going online wakes the loop."""
        self._orchestrator.set_online(is_online)
        if is_online:
            self._wakeup.set()

    async def run(self, max_cycles: int | None = None) -> None:
        """Main loop. Runs until cancelled.

        If max_cycles is set, stop after that many drain cycles (for testing).
        """
        Log.info("Drain worker started")
        cycles = 0
        try:
            while max_cycles is None or cycles < max_cycles:
                await self._drain_once()
                cycles += 1
                if max_cycles is not None and cycles >= max_cycles:
                    break
                await self._sleep()
        except asyncio.CancelledError:
            Log.info("Drain worker shutting down gracefully")
            raise

    async def _drain_once(self) -> None:
        """Drain when online. Store errors are logged and retried next cycle."""
        if not self._orchestrator.is_online:
            Log.debug("Offline, skipping drain")
            return
        try:
            await self._orchestrator.drain_offline_queue()
        except Exception as exc:
            Log.warning(f"Drain failed, will retry: {exc}")

    async def _sleep(self) -> None:
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=self._interval_seconds)
        except TimeoutError:
            Log.debug("Drain interval elapsed")
        self._wakeup.clear()
