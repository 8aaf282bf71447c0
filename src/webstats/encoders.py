from __future__ import annotations

import itertools
import logging
import os
from datetime import datetime
from typing import BinaryIO, Dict, List, Optional, Sequence, Tuple, Type

import orjson
import pyarrow as pa
import pyarrow.parquet as pq

from webstats.records import RequestRecord

logger = logging.getLogger(__name__)

# second precision, local wall clock at flush time
FILENAME_FORMAT = "%Y-%m-%dT%H:%M:%S"


class EncodeError(Exception):
    """A batch could not be persisted. The batch is dropped, never retried."""


def open_batch_file(directory: str, suffix: str, now: Optional[datetime] = None) -> Tuple[str, BinaryIO]:
    """
    Claim a new file named after the current time.

    Names are taken with exclusive create, so a second flush within the same
    second gets "<stamp>-1<suffix>", then "-2", ... instead of overwriting.
    """
    stamp = (now or datetime.now()).strftime(FILENAME_FORMAT)
    for n in itertools.count():
        name = f"{stamp}{suffix}" if n == 0 else f"{stamp}-{n}{suffix}"
        try:
            return name, open(os.path.join(directory, name), "xb")
        except FileExistsError:
            continue
        except OSError as exc:
            raise EncodeError(f"cannot create {name} in {directory}: {exc}") from exc


def _discard(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Could not remove partial file %s: %s", path, exc)


class BatchEncoder:
    """
    Writes one batch to one new file in a directory.

    encode() returns the file name (relative to directory), None for an
    empty batch, and raises EncodeError on failure. Each call claims its own
    file, so concurrent calls never write to the same path.
    """

    name = "base"
    suffix = ""

    def encode(self, batch: Sequence[RequestRecord], directory: str) -> Optional[str]:
        raise NotImplementedError

    def decode(self, path: str) -> List[RequestRecord]:
        raise NotImplementedError


class JsonBatchEncoder(BatchEncoder):
    """Whole batch as one JSON array, written in a single write."""

    name = "json"
    suffix = ".json"

    def encode(self, batch: Sequence[RequestRecord], directory: str) -> Optional[str]:
        if not batch:
            return None
        try:
            data = orjson.dumps([r.to_dict() for r in batch])
        except orjson.JSONEncodeError as exc:
            raise EncodeError(f"cannot serialize batch of {len(batch)} records: {exc}") from exc

        name, handle = open_batch_file(directory, self.suffix)
        path = os.path.join(directory, name)
        try:
            with handle:
                handle.write(data)
        except OSError as exc:
            _discard(path)
            raise EncodeError(f"cannot write {name}: {exc}") from exc
        return name

    def decode(self, path: str) -> List[RequestRecord]:
        with open(path, "rb") as f:
            rows = orjson.loads(f.read())
        return [RequestRecord.from_dict(row) for row in rows]


SCHEMA = pa.schema([
    ("time", pa.timestamp("us", tz="UTC")),
    ("ip", pa.string()),
    ("user_agent", pa.string()),
])


class ParquetBatchEncoder(BatchEncoder):
    """
    Compressed columnar file. Records are converted one by one; a record that
    does not fit the schema is logged and skipped. The writer is closed
    exactly once and a failed close discards the whole file.
    """

    name = "parquet"
    suffix = ".parquet"

    def __init__(self, compression: str = "snappy", row_group_size: int = 10000):
        self.compression = compression
        self.row_group_size = row_group_size

    def _convert(self, record: RequestRecord) -> Tuple[object, object, object]:
        return (
            pa.scalar(record.timestamp, type=SCHEMA.field("time").type).as_py(),
            pa.scalar(record.source_ip, type=pa.string()).as_py(),
            pa.scalar(record.user_agent, type=pa.string()).as_py(),
        )

    def _write_rows(self, writer: "pq.ParquetWriter", columns: Dict[str, list]) -> None:
        writer.write_table(pa.Table.from_pydict(columns, schema=SCHEMA))
        for col in columns.values():
            col.clear()

    def _write_records(self, writer: "pq.ParquetWriter", batch: Sequence[RequestRecord], name: str) -> int:
        columns: Dict[str, list] = {"time": [], "ip": [], "user_agent": []}
        skipped = 0
        for i, record in enumerate(batch):
            try:
                ts, ip, ua = self._convert(record)
            except (pa.ArrowException, TypeError, ValueError) as exc:
                skipped += 1
                logger.warning("Skipping record %d of %s: %s", i, name, exc)
                continue
            columns["time"].append(ts)
            columns["ip"].append(ip)
            columns["user_agent"].append(ua)
            if len(columns["time"]) >= self.row_group_size:
                self._write_rows(writer, columns)
        if columns["time"]:
            self._write_rows(writer, columns)
        return skipped

    def encode(self, batch: Sequence[RequestRecord], directory: str) -> Optional[str]:
        if not batch:
            return None

        name, handle = open_batch_file(directory, self.suffix)
        path = os.path.join(directory, name)

        try:
            with handle:
                writer = pq.ParquetWriter(handle, SCHEMA, compression=self.compression)
                try:
                    skipped = self._write_records(writer, batch, name)
                except (pa.ArrowException, OSError, ValueError):
                    # release the writer while its handle is still open
                    try:
                        writer.close()
                    except (pa.ArrowException, OSError, ValueError) as exc:
                        logger.debug("Closing abandoned writer for %s failed: %s", name, exc)
                    raise
                # finalize: writes the footer, without it the file is unreadable
                writer.close()
        except (pa.ArrowException, OSError, ValueError) as exc:
            _discard(path)
            raise EncodeError(f"cannot write {name}: {exc}") from exc

        if skipped:
            logger.warning("Wrote %s without %d unconvertible records", name, skipped)
        return name

    def decode(self, path: str) -> List[RequestRecord]:
        rows = pq.read_table(path).to_pylist()
        return [RequestRecord.from_dict(row) for row in rows]


ENCODERS: Dict[str, Type[BatchEncoder]] = {
    JsonBatchEncoder.name: JsonBatchEncoder,
    ParquetBatchEncoder.name: ParquetBatchEncoder,
}


def make_encoder(name: str, **options) -> BatchEncoder:
    try:
        cls = ENCODERS[name]
    except KeyError:
        raise ValueError(f"unknown encoding {name!r}, expected one of {sorted(ENCODERS)}") from None
    return cls(**options)
