"""Scheduler module for the heartbeat monitoring cycle."""

from .monitor_loop import CycleResult, CycleState, MonitorLoop

__all__ = ["CycleResult", "CycleState", "MonitorLoop"]
