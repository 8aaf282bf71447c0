from datetime import datetime, timedelta, timezone

import pytest

from webstats.records import RequestRecord

BASE_TIME = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_record(i: int) -> RequestRecord:
    return RequestRecord(
        timestamp=BASE_TIME + timedelta(microseconds=i * 1001),
        source_ip=f"10.0.{i // 256}.{i % 256}",
        user_agent=f"agent/{i}",
    )


@pytest.fixture
def records():
    return [make_record(i) for i in range(5)]


@pytest.fixture
def log_dir(tmp_path):
    path = tmp_path / "logs"
    path.mkdir()
    return str(path)
