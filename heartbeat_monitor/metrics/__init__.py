"""Metrics sink for heartbeat gauges."""

from .signalfx_emitter import MetricsEmitter, build_points

__all__ = ["MetricsEmitter", "build_points"]
