from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def from_epoch_millis(value: float) -> datetime:
    """Convert an epoch-millisecond value to a UTC datetime, dropping sub-second precision."""
    return datetime.fromtimestamp(int(value) // 1000, tz=timezone.utc)


@dataclass(frozen=True)
class HeartbeatRecord:
    host: str
    last_seen: datetime


@dataclass(frozen=True)
class InventorySnapshot:
    """Private IP addresses of running instances at one point in time.

    captured_at is a monotonic clock reading, only meaningful for age checks.
    """

    addresses: frozenset[str]
    captured_at: float

    def __contains__(self, address: object) -> bool:
        return address in self.addresses

    def __len__(self) -> int:
        return len(self.addresses)


@dataclass(frozen=True)
class MetricPoint:
    metric: str
    dimensions: Mapping[str, str]
    value: int | float
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        """SignalFx /v2/datapoint representation (timestamp in epoch millis)."""
        return {
            "metric": self.metric,
            "dimensions": dict(self.dimensions),
            "value": self.value,
            "timestamp": int(self.timestamp.timestamp() * 1000),
        }
