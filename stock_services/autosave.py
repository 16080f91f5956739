"""
AutoSaveService -- fire-and-forget snapshots of in-progress receipt forms.

Responsibility:
    Keep the latest snapshot of each (user, document key) form so an
    interrupted editing session can be restored.

Invariants enforced:
    - ``save`` never raises.  A failure is logged and reported as False.
    - Independent of the database: snapshots live in process memory under
      a lock, so auto-save never joins or blocks a commit transaction.
    - Uses ``ValidationMode.AUTO_SAVE``, which accepts any form.
"""

from __future__ import annotations

import json
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime

from stock_engines.validation import ValidationEngine, ValidationMode
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.logging_config import get_logger
from stock_modules.receipts.models import GoodsReceiptForm

logger = get_logger("services.autosave")


@dataclass(frozen=True)
class AutoSaveEntry:
    user_id: str
    document_key: str
    snapshot: dict
    saved_at: datetime
    dirty: bool = False


class AutoSaveService:
    """Process-local snapshot store.  Thread-safe."""

    def __init__(self, clock: Clock | None = None, max_workers: int = 1):
        self._clock = clock or SystemClock()
        self._validation = ValidationEngine()
        self._entries: dict[tuple[str, str], AutoSaveEntry] = {}
        self._lock = threading.Lock()
        self._max_workers = max_workers
        self._executor: ThreadPoolExecutor | None = None

    def save(self, user_id: str, document_key: str, form: GoodsReceiptForm) -> bool:
        try:
            self._validation.validate_receipt(
                form, mode=ValidationMode.AUTO_SAVE, today=self._clock.today(),
            )
            # Detached, JSON-safe copy.
            snapshot = json.loads(json.dumps(form.to_snapshot()))
            entry = AutoSaveEntry(user_id, document_key, snapshot, self._clock.now())
            with self._lock:
                self._entries[(user_id, document_key)] = entry
        except Exception:
            logger.exception(
                "autosave_failed",
                extra={"user_id": user_id, "document_key": document_key},
            )
            return False
        logger.debug("autosave_stored", extra={"user_id": user_id, "document_key": document_key})
        return True

    def save_async(self, user_id: str, document_key: str, form: GoodsReceiptForm) -> Future:
        """Schedule ``save`` on a background worker.  The future resolves to a bool."""
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix="autosave",
                )
            executor = self._executor
        return executor.submit(self.save, user_id, document_key, form)

    def get(self, user_id: str, document_key: str) -> AutoSaveEntry | None:
        with self._lock:
            return self._entries.get((user_id, document_key))

    def restore(self, user_id: str, document_key: str) -> GoodsReceiptForm | None:
        entry = self.get(user_id, document_key)
        if entry is None:
            return None
        return GoodsReceiptForm.from_snapshot(entry.snapshot)

    def mark_dirty(self, user_id: str, document_key: str) -> bool:
        """Flag an entry as edited since its last save.  False if there is none."""
        with self._lock:
            entry = self._entries.get((user_id, document_key))
            if entry is None:
                return False
            self._entries[(user_id, document_key)] = AutoSaveEntry(
                entry.user_id, entry.document_key, entry.snapshot, entry.saved_at, dirty=True,
            )
            return True

    def clear(self, user_id: str, document_key: str) -> None:
        with self._lock:
            self._entries.pop((user_id, document_key), None)

    def shutdown(self) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)
