"""Fixed-delay loop sequencing fetch, reconcile and emit."""

import enum
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Mapping, Optional, Protocol

import structlog

from ..errors import EmitError, FetchError


logger = structlog.get_logger(__name__)


class CycleState(str, enum.Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    RECONCILING = "reconciling"
    EMITTING = "emitting"


class Fetcher(Protocol):
    def fetch_latest_per_host(self) -> Dict[str, datetime]: ...


class Reconciler(Protocol):
    def reconcile(self, timestamps: Mapping[str, datetime]) -> Dict[str, datetime]: ...


class Emitter(Protocol):
    def emit(self, timestamps: Mapping[str, datetime]) -> object: ...


@dataclass(frozen=True)
class CycleResult:
    """Outcome of one cycle; stage is where it stopped."""
    ok: bool
    stage: CycleState
    host_count: int = 0
    corrected: int = 0
    error: Optional[str] = None


class MonitorLoop:
    """Runs one fetch -> reconcile -> emit cycle per tick.

    The interval is a delay between completed cycles, so a slow cycle pushes
    the next one back instead of overlapping it. Per-cycle failures are logged
    and never stop the loop.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        policy: Reconciler,
        emitter: Emitter,
        interval_seconds: float = 15.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.fetcher = fetcher
        self.policy = policy
        self.emitter = emitter
        self.interval_seconds = interval_seconds
        self._sleep = sleep
        self.state = CycleState.IDLE
        self.running = False
        self.cycles_run = 0
        self.last_result: Optional[CycleResult] = None

    def run_cycle(self) -> CycleResult:
        """Execute a single cycle and return to IDLE regardless of outcome."""
        try:
            result = self._run_cycle()
        finally:
            self.state = CycleState.IDLE
            self.cycles_run += 1
        self.last_result = result
        return result

    def _run_cycle(self) -> CycleResult:
        self.state = CycleState.FETCHING
        try:
            timestamps = self.fetcher.fetch_latest_per_host()
        except FetchError as e:
            logger.error("Failed to fetch heartbeat timestamps", operation="timestamp", error=str(e))
            return CycleResult(ok=False, stage=CycleState.FETCHING, error=str(e))

        self.state = CycleState.RECONCILING
        corrected = self.policy.reconcile(timestamps)
        changed = sum(1 for host, ts in corrected.items() if timestamps.get(host) != ts)
        logger.debug("Fetched heartbeat timestamps", operation="timestamp", count=len(corrected), corrected=changed)

        self.state = CycleState.EMITTING
        try:
            self.emitter.emit(corrected)
        except EmitError as e:
            logger.error("Failed to send datapoints", operation="send-to-signalfx", error=str(e))
            return CycleResult(
                ok=False, stage=CycleState.EMITTING, host_count=len(corrected), corrected=changed, error=str(e)
            )

        logger.debug("Sent datapoints", operation="send-to-signalfx", count=len(corrected))
        return CycleResult(ok=True, stage=CycleState.EMITTING, host_count=len(corrected), corrected=changed)

    def stop(self):
        """Ask run_forever to return after the current cycle."""
        self.running = False

    def run_forever(self, max_cycles: Optional[int] = None):
        """Loop until stopped (or max_cycles cycles have run)."""
        self.running = True
        logger.info("Heartbeat monitor loop started", interval_seconds=self.interval_seconds)
        completed = 0
        while self.running:
            try:
                self.run_cycle()
            except Exception as e:
                logger.exception("Unexpected cycle failure", operation="cycle", error=str(e))
            completed += 1
            if max_cycles is not None and completed >= max_cycles:
                break
            if self.running:
                self._sleep(self.interval_seconds)
        self.running = False
        logger.info("Heartbeat monitor loop stopped", cycles=completed)
