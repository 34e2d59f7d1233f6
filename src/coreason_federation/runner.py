# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_federation

"""
ControllerRunner: the single reconciliation worker loop.
"""

import anyio

from coreason_federation.controller import SyncOutcome, SyncResult, UpstreamWatcherController
from coreason_federation.reconciler import COMPONENT
from coreason_federation.store import ConfigurationStore
from coreason_federation.utils.logger import logger


class ControllerRunner:
    """
    Drives sync passes on store change notifications and on a resync timer.

    Passes that do not return `OK` are requeued with exponential backoff. A change
    notification always wakes the loop early, since every pass re-derives the
    full state.

    Attributes:
        controller (UpstreamWatcherController): Runs a single pass.
        store (ConfigurationStore): Source of change notifications.
        resync_interval (float): Seconds to wait after a successful pass.
        sync_timeout (float): Deadline in seconds for one pass.
        backoff_initial (float): First requeue delay in seconds.
        backoff_max (float): Maximum requeue delay in seconds.
    """

    def __init__(
        self,
        controller: UpstreamWatcherController,
        store: ConfigurationStore,
        resync_interval: float = 180.0,
        sync_timeout: float = 60.0,
        backoff_initial: float = 0.5,
        backoff_max: float = 60.0,
    ) -> None:
        self.controller = controller
        self.store = store
        self.resync_interval = resync_interval
        self.sync_timeout = sync_timeout
        self.backoff_initial = backoff_initial
        self.backoff_max = backoff_max
        self._consecutive_failures = 0

    def next_delay(self, result: SyncResult) -> float:
        """
        Returns how long to wait before the next pass, and updates the failure count.

        Args:
            result: The result of the pass that just finished.
        """
        if not result.should_requeue:
            self._consecutive_failures = 0
            return self.resync_interval

        delay = min(self.backoff_initial * (2**self._consecutive_failures), self.backoff_max)
        self._consecutive_failures += 1
        return delay

    async def run_once(self) -> SyncResult:
        """
        Runs one pass under the sync deadline.

        An expired deadline cancels every in-flight discovery and store call and is
        reported as `ERROR`; the cache keeps its previous snapshot. Any other
        exception escaping the pass is reported as `ERROR` as well, so the loop
        requeues it instead of stopping.
        """
        try:
            with anyio.fail_after(self.sync_timeout):
                return await self.controller.sync()
        except TimeoutError as e:
            return SyncResult.error(e)
        except Exception as e:
            logger.bind(component=COMPONENT).exception(f"Unexpected error during sync: {e}")
            return SyncResult.error(e)

    async def run(self) -> None:
        """Runs passes until cancelled."""
        log = logger.bind(component=COMPONENT)
        log.info("Starting upstream provider controller")

        while True:
            result = await self.run_once()

            if result.outcome == SyncOutcome.ERROR:
                log.bind(error=str(result.cause)).warning(f"Sync failed: {result.cause!r}")
            elif result.outcome == SyncOutcome.RETRY_REQUESTED:
                log.debug("Sync requested a retry")

            delay = self.next_delay(result)
            with anyio.move_on_after(delay):
                await self.store.wait_for_change()
