from __future__ import annotations

from datetime import datetime
from typing import Callable, Mapping

import httpx
import structlog

from ..config import MonitorConfig
from ..errors import EmitError
from ..models import MetricPoint, utc_now


logger = structlog.get_logger(__name__)


def build_points(
    timestamps: Mapping[str, datetime],
    *,
    metric_name: str,
    component: str,
    environment: str,
    now: datetime,
) -> list[MetricPoint]:
    """Two gauges per host: the heartbeat time in epoch seconds, and its lag in seconds."""
    points: list[MetricPoint] = []
    for host, ts in timestamps.items():
        dimensions = {
            "hostname": host,
            "component": component,
            "environment": environment,
        }
        points.append(MetricPoint(metric_name, dimensions, int(ts.timestamp()), now))
        points.append(MetricPoint(f"{metric_name}-lag", dimensions, (now - ts).total_seconds(), now))
    return points


class MetricsEmitter:
    """Ships heartbeat gauges to the SignalFx ingest API, one request per batch."""

    def __init__(
        self,
        config: MonitorConfig,
        client: httpx.Client | None = None,
        now: Callable[[], datetime] = utc_now,
    ):
        self.config = config
        self.client = client or httpx.Client(timeout=config.request_timeout_seconds)
        self._owns_client = client is None
        self._now = now

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def datapoint_url(self) -> str:
        return f"{self.config.signalfx_ingest_url.rstrip('/')}/v2/datapoint"

    def send(self, points: list[MetricPoint]) -> None:
        if not points:
            logger.debug("No datapoints to send")
            return
        payload = {"gauge": [p.to_dict() for p in points]}
        try:
            resp = self.client.post(
                self.datapoint_url(),
                headers={"X-SF-Token": self.config.signalfx_api_key},
                json=payload,
                timeout=self.config.request_timeout_seconds,
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise EmitError(f"SignalFx rejected datapoints: HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise EmitError(f"Failed to send datapoints: {e}") from e

    def emit(self, timestamps: Mapping[str, datetime]) -> list[MetricPoint]:
        """Build and send the batch; returns the points sent. Raises EmitError."""
        points = build_points(
            timestamps,
            metric_name=self.config.metric_name,
            component=self.config.component_name,
            environment=self.config.environment,
            now=self._now(),
        )
        self.send(points)
        return points
