"""Heartbeat lag monitor: Elasticsearch heartbeats, EC2 liveness, SignalFx gauges."""

__version__ = "0.1.0"
