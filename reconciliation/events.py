"""Reconciliation event listeners and asynchronous delivery.

Listeners are notified off the pipeline thread. Delivery is best-effort:
a slow or failing listener never blocks the run or other listeners.
"""

from concurrent.futures import ThreadPoolExecutor
from threading import Lock
from typing import Any, Dict, List, Optional

from core.observability.logging import get_logger
from reconciliation.models import (
    Discrepancy,
    DiscrepancyResolution,
    RecordMatch,
    ReconciliationSummary,
)

logger = get_logger(__name__)


class ReconciliationEventListener:
    """Base listener. Override the hooks you care about."""

    def on_reconciliation_event(self, event_type: str, data: Dict[str, Any]) -> None:
        pass

    def on_reconciliation_started(self, engine_id: str, run_id: str) -> None:
        pass

    def on_reconciliation_completed(self, engine_id: str, summary: ReconciliationSummary) -> None:
        pass

    def on_reconciliation_failed(self, engine_id: str, run_id: str, error: str) -> None:
        pass

    def on_match_found(self, engine_id: str, match: RecordMatch) -> None:
        pass

    def on_discrepancy_detected(self, engine_id: str, discrepancy: Discrepancy) -> None:
        pass

    def on_discrepancy_resolved(self, engine_id: str, resolution: DiscrepancyResolution) -> None:
        pass


class EventDispatcher:
    """Fans events out to listeners on a dedicated executor."""

    def __init__(self, max_workers: int = 2, executor: Optional[ThreadPoolExecutor] = None):
        self._listeners: List[ReconciliationEventListener] = []
        self._lock = Lock()
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="recon-events"
        )

    def add_listener(self, listener: ReconciliationEventListener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove_listener(self, listener: ReconciliationEventListener) -> bool:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)
                return True
            return False

    @property
    def listeners(self) -> List[ReconciliationEventListener]:
        with self._lock:
            return list(self._listeners)

    def dispatch(self, hook: str, *args) -> None:
        """Call listener.<hook>(*args) for every listener, asynchronously."""
        for listener in self.listeners:
            try:
                self._executor.submit(self._deliver, listener, hook, args)
            except RuntimeError:
                # Executor already shut down
                logger.warning(f"Dropped event {hook}: dispatcher is shut down")
                return

    @staticmethod
    def _deliver(listener: ReconciliationEventListener, hook: str, args: tuple) -> None:
        try:
            getattr(listener, hook)(*args)
        except Exception as e:
            logger.warning(
                f"Listener {type(listener).__name__}.{hook} failed: {e}",
                extra_fields={"hook": hook},
            )

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
