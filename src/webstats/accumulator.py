from __future__ import annotations

import threading
from typing import List, Optional

from webstats.records import Batch, RequestRecord


class BatchAccumulator:
    """
    Collects records into one open batch and detaches it once it holds
    exactly max_size records.

    Append, threshold check and swap-out happen under a single lock so that
    exactly one caller receives each completed batch. The returned batch is
    no longer referenced by the accumulator; encode it outside any lock.

    max_size <= 0 disables flushing: append never returns a batch.
    """

    def __init__(self, max_size: int):
        self.max_size = max_size
        self._open: List[RequestRecord] = []
        self._lock = threading.Lock()

    def append(self, record: RequestRecord) -> Optional[Batch]:
        with self._lock:
            self._open.append(record)
            if self.max_size <= 0 or len(self._open) != self.max_size:
                return None
            full, self._open = self._open, []
        return tuple(full)

    def drain(self) -> Batch:
        """Detach the open batch whatever its size (may be empty)."""
        with self._lock:
            partial, self._open = self._open, []
        return tuple(partial)

    def __len__(self) -> int:
        with self._lock:
            return len(self._open)
