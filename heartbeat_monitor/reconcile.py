from __future__ import annotations

import ipaddress
from datetime import datetime
from typing import Callable, Iterable, Mapping, Protocol

import structlog

from .errors import InventoryError
from .models import utc_now


logger = structlog.get_logger(__name__)


class RunningCheck(Protocol):
    def is_running(self, address: str) -> bool: ...


def decode_address(host: str, prefixes: Iterable[str] = ("ip-",)) -> str | None:
    """
    Hostnames of the form <prefix>10-0-0-1 encode the private IP 10.0.0.1.
    Returns None for anything else, including names with extra labels.
    """
    for prefix in prefixes:
        if not prefix or not host.startswith(prefix):
            continue
        parts = host[len(prefix) :].split("-")
        if len(parts) != 4 or not all(p.isdigit() for p in parts):
            continue
        try:
            return str(ipaddress.IPv4Address(".".join(parts)))
        except ValueError:
            continue
    return None


class ReconciliationPolicy:
    """Rewrites heartbeat times of hosts whose instance is no longer running to now.

    Terminated instances stop heartbeating on purpose; reporting them as
    current keeps their lag gauge under alert thresholds. When the inventory
    check itself fails the host's timestamp is kept as-is.
    """

    def __init__(
        self,
        inventory: RunningCheck,
        prefixes: Iterable[str] = ("ip-",),
        now: Callable[[], datetime] = utc_now,
    ):
        self.inventory = inventory
        self.prefixes = tuple(prefixes)
        self._now = now

    def reconcile(self, timestamps: Mapping[str, datetime]) -> dict[str, datetime]:
        corrected: dict[str, datetime] = {}
        for host, ts in timestamps.items():
            corrected[host] = ts
            address = decode_address(host, self.prefixes)
            if address is None:
                continue
            try:
                running = self.inventory.is_running(address)
            except InventoryError as e:
                logger.error("Inventory check failed", operation="ec2-ip-check", host=host, error=str(e))
                continue
            if not running:
                corrected[host] = self._now()
                logger.debug("Host not running, reporting heartbeat as current", host=host, address=address)
        return corrected
