"""
ReconciliationScheduler -- in-process polling driver for both stages.

Contract:
    Runs the verifier and the transfer executor on independent fixed
    intervals, each on its own background thread.  A failing cycle is
    logged and the loop carries on; only the startup store check can stop
    the driver.

Architecture: approval_batch/services.  Depends on the stage services and
    the approval store.

Invariants enforced:
    - Cycle failures never end a loop.
    - Graceful shutdown: ``stop()`` signals both loops and waits; a cycle
      already running completes its current record first.
    - An unreachable store at startup raises ``StoreUnavailableError``.
"""

from __future__ import annotations

import threading
from typing import Callable

from approval_kernel.domain.types import StageCycleResult
from approval_kernel.logging_config import get_logger
from approval_kernel.services.approval_store import ApprovalStore

logger = get_logger("batch.scheduler")


class StageLoop:
    """Runs one stage's ``run_cycle`` every ``interval_seconds``.

    Contract:
        - ``tick()`` runs one cycle; exceptions are logged, never raised.
        - ``start()`` / ``stop()`` for background thread operation.
    """

    def __init__(
        self,
        name: str,
        run_cycle: Callable[[], StageCycleResult],
        interval_seconds: float = 30.0,
    ):
        self._name = name
        self._run_cycle = run_cycle
        self._interval = interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def name(self) -> str:
        return self._name

    def tick(self) -> StageCycleResult | None:
        """Run one cycle (public for testing).

        Returns the cycle summary, or None if the cycle raised.
        """
        try:
            return self._run_cycle()
        except Exception:
            logger.exception("stage_cycle_failed", extra={"loop": self._name})
            return None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name=f"sweeper-{self._name}",
            daemon=True,
        )
        self._thread.start()
        logger.info(
            "stage_loop_started",
            extra={"loop": self._name, "interval_seconds": self._interval},
        )

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current cycle to finish.

        Args:
            timeout: Max seconds to wait for the thread to finish.
        """
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("stage_loop_stopped", extra={"loop": self._name})

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.tick()
            # Wait for interval or until stopped
            self._stop_event.wait(timeout=self._interval)


class ReconciliationScheduler:
    """Drives the verifier and transfer executor.

    Contract:
        - ``start()`` checks the store, then starts both loops.
        - ``run_forever()`` blocks until ``stop()`` is called.
        - ``run_once()`` runs the verifier, then the executor, once each.

    Non-goals:
        - NOT a distributed scheduler; overlapping drivers are tolerated
          by the store's guarded transitions, not coordinated.
    """

    def __init__(
        self,
        store: ApprovalStore,
        verify_cycle: Callable[[], StageCycleResult] | None,
        transfer_cycle: Callable[[], StageCycleResult] | None,
        verify_interval_seconds: float = 30.0,
        transfer_interval_seconds: float = 30.0,
    ):
        self._store = store
        self._loops: list[StageLoop] = []
        if verify_cycle is not None:
            self._loops.append(
                StageLoop("verify", verify_cycle, verify_interval_seconds),
            )
        if transfer_cycle is not None:
            self._loops.append(
                StageLoop("transfer", transfer_cycle, transfer_interval_seconds),
            )
        self._stopped = threading.Event()

    @property
    def loops(self) -> tuple[StageLoop, ...]:
        return tuple(self._loops)

    def start(self) -> None:
        """Start every loop.

        Raises:
            StoreUnavailableError: If the approval store cannot be reached.
        """
        self._store.ping()
        self._stopped.clear()
        for loop in self._loops:
            loop.start()
        logger.info(
            "scheduler_started",
            extra={"loops": [loop.name for loop in self._loops]},
        )

    def run_forever(self) -> None:
        """Start and block until ``stop()`` is called from another thread."""
        self.start()
        self._stopped.wait()

    def run_once(self) -> tuple[StageCycleResult | None, ...]:
        """Run every stage once, in order, on the calling thread.

        Raises:
            StoreUnavailableError: If the approval store cannot be reached.
        """
        self._store.ping()
        return tuple(loop.tick() for loop in self._loops)

    def stop(self, timeout: float = 30.0) -> None:
        for loop in self._loops:
            loop.stop(timeout=timeout)
        self._stopped.set()
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return any(loop.is_running for loop in self._loops)
