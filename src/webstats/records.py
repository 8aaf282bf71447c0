from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Tuple

from starlette.requests import Request


@dataclass(frozen=True)
class RequestRecord:
    timestamp: datetime
    source_ip: str
    user_agent: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time": self.timestamp,
            "ip": self.source_ip,
            "user_agent": self.user_agent,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RequestRecord":
        ts = data["time"]
        if isinstance(ts, str):
            ts = datetime.fromisoformat(ts)
        return cls(timestamp=ts, source_ip=data.get("ip") or "", user_agent=data.get("user_agent") or "")


Batch = Tuple[RequestRecord, ...]

# first non-empty header wins, then the socket peer
IP_HEADERS = ("x-real-ip", "x-forwarded-for")


def client_ip(request: Request) -> str:
    for key in IP_HEADERS:
        val = request.headers.get(key)
        if val:
            return val
    return request.client.host if request.client else ""


def extract_record(request: Request) -> RequestRecord:
    return RequestRecord(
        timestamp=datetime.now(timezone.utc),
        source_ip=client_ip(request),
        user_agent=request.headers.get("user-agent", ""),
    )
