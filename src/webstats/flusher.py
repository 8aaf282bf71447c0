from __future__ import annotations

import logging
import queue
import threading
from typing import Optional, Union

from webstats.encoders import BatchEncoder, EncodeError
from webstats.records import Batch

logger = logging.getLogger(__name__)

_STOP = object()


class BatchFlusher:
    """
    Hands detached batches to the encoder on one background thread.

    submit() never blocks the request path. Batches are encoded in submission
    order, one at a time. A failed encode is logged and the batch dropped.
    """

    def __init__(self, encoder: BatchEncoder, directory: str):
        self.encoder = encoder
        self.directory = directory
        self.q: "queue.Queue[Union[Batch, object]]" = queue.Queue()
        self._closed = False
        # orders submit against close so nothing lands behind the stop marker
        self._lock = threading.Lock()
        self._thread = threading.Thread(target=self._worker, name="webstats-flusher", daemon=True)
        self._thread.start()

    def submit(self, batch: Batch) -> None:
        if not batch:
            return
        with self._lock:
            if not self._closed:
                self.q.put_nowait(batch)
                return
        logger.warning("Flusher closed, dropping batch of %d records", len(batch))

    def join(self) -> None:
        """Block until every submitted batch has been handled."""
        self.q.join()

    def close(self, timeout: Optional[float] = None) -> None:
        """Write what is queued, then stop the worker."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self.q.put_nowait(_STOP)
        self._thread.join(timeout)

    def flush(self, batch: Batch) -> Optional[str]:
        try:
            name = self.encoder.encode(batch, self.directory)
        except EncodeError as exc:
            logger.error("Dropping batch of %d records: %s", len(batch), exc)
            return None
        except Exception:
            logger.exception("Unexpected error encoding batch of %d records, dropping it", len(batch))
            return None
        if name:
            logger.info("Wrote log file: %s (%d records)", name, len(batch))
        return name

    def _worker(self):
        while True:
            item = self.q.get()
            try:
                if item is _STOP:
                    return
                self.flush(item)
            finally:
                self.q.task_done()
