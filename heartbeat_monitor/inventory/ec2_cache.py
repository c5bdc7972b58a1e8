"""Cached view of running EC2 instances, keyed by private IP address."""

import time
from typing import Any, Callable, Optional

import boto3
import structlog
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, NoRegionError

from ..config import MonitorConfig
from ..errors import ConfigurationError, InventoryError
from ..models import InventorySnapshot


logger = structlog.get_logger(__name__)

RUNNING_FILTER = [{"Name": "instance-state-name", "Values": ["running"]}]


def build_ec2_client(config: MonitorConfig) -> Any:
    """Create an EC2 client with bounded timeouts and retries."""
    botocore_config = Config(
        connect_timeout=config.request_timeout_seconds,
        read_timeout=config.request_timeout_seconds,
        retries={"max_attempts": 2, "mode": "standard"},
    )
    try:
        return boto3.client("ec2", region_name=config.aws_region, config=botocore_config)
    except NoRegionError as e:
        raise ConfigurationError("Must specify AWS_REGION or an AWS default region") from e


class InventoryCache:
    """Answers "is this private IP running?" from a snapshot refreshed at most once per TTL.

    The snapshot is rebuilt off to the side and published with a single
    attribute assignment, so readers only ever see a complete set. When a
    refresh fails the previous snapshot stays published and the error goes
    to the caller. Later calls re-raise that error without new I/O until
    retry_after_seconds have passed, so one cycle costs at most one query.
    """

    def __init__(
        self,
        ec2_client: Any,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        retry_after_seconds: float = 10.0,
    ):
        self.ec2_client = ec2_client
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self.retry_after_seconds = retry_after_seconds
        self._snapshot: Optional[InventorySnapshot] = None
        self._failed_at: Optional[float] = None
        self._last_error: Optional[InventoryError] = None

    @classmethod
    def from_config(cls, config: MonitorConfig) -> "InventoryCache":
        return cls(build_ec2_client(config), ttl_seconds=config.inventory_ttl_seconds)

    @property
    def snapshot(self) -> Optional[InventorySnapshot]:
        """The currently published snapshot, or None before the first successful refresh."""
        return self._snapshot

    def is_stale(self) -> bool:
        snapshot = self._snapshot
        if snapshot is None:
            return True
        return self._clock() - snapshot.captured_at >= self.ttl_seconds

    def refresh(self) -> InventorySnapshot:
        """Query every running instance and publish a new snapshot."""
        addresses = set()
        try:
            paginator = self.ec2_client.get_paginator("describe_instances")
            for page in paginator.paginate(Filters=RUNNING_FILTER):
                for reservation in page.get("Reservations", []):
                    for instance in reservation.get("Instances", []):
                        address = instance.get("PrivateIpAddress")
                        if address:
                            addresses.add(address)
        except (BotoCoreError, ClientError) as e:
            error = InventoryError(f"describe_instances failed: {e}")
            self._failed_at = self._clock()
            self._last_error = error
            raise error from e

        snapshot = InventorySnapshot(addresses=frozenset(addresses), captured_at=self._clock())
        self._snapshot = snapshot
        self._failed_at = None
        self._last_error = None
        logger.info("Refreshed running instance cache", running=len(snapshot))
        return snapshot

    def is_running(self, address: str) -> bool:
        """Return whether address belongs to a running instance.

        Raises InventoryError if a needed refresh fails.
        """
        snapshot = self._snapshot
        if self.is_stale():
            if self._failed_at is not None and self._clock() - self._failed_at < self.retry_after_seconds:
                raise self._last_error
            snapshot = self.refresh()
        return address in snapshot
