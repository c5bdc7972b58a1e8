from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import boto3
import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from heartbeat_monitor.config import MonitorConfig
from heartbeat_monitor.errors import ConfigurationError, InventoryError
from heartbeat_monitor.inventory import InventoryCache, build_ec2_client
from heartbeat_monitor.reconcile import ReconciliationPolicy


def _page(*addresses: str | None) -> dict:
    instances = [{"InstanceId": f"i-{n}", "PrivateIpAddress": a} if a else {"InstanceId": f"i-{n}"} for n, a in enumerate(addresses)]
    return {"Reservations": [{"Instances": instances}]}


class _FakeEC2:
    def __init__(self, pages: list[dict]) -> None:
        self.pages = pages
        self.error: Exception | None = None
        self.calls: list[dict] = []

    def get_paginator(self, name: str) -> "_FakeEC2":
        assert name == "describe_instances"
        return self

    def paginate(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return iter(self.pages)


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_collects_running_addresses_across_pages() -> None:
    ec2 = _FakeEC2([_page("10.0.0.1", None), _page("10.0.0.2")])
    cache = InventoryCache(ec2, ttl_seconds=60, clock=_Clock())

    assert cache.is_running("10.0.0.1") is True
    assert cache.is_running("10.0.0.2") is True
    assert cache.is_running("10.0.0.9") is False
    assert ec2.calls == [{"Filters": [{"Name": "instance-state-name", "Values": ["running"]}]}]
    assert cache.snapshot is not None
    assert cache.snapshot.addresses == frozenset({"10.0.0.1", "10.0.0.2"})


def test_calls_within_ttl_hit_the_cache() -> None:
    clock = _Clock()
    ec2 = _FakeEC2([_page("10.0.0.1")])
    cache = InventoryCache(ec2, ttl_seconds=60, clock=clock)

    cache.is_running("10.0.0.1")
    clock.now += 59
    cache.is_running("10.0.0.2")
    assert len(ec2.calls) == 1


def test_expired_snapshot_is_fully_replaced() -> None:
    clock = _Clock()
    ec2 = _FakeEC2([_page("10.0.0.1", "10.0.0.2")])
    cache = InventoryCache(ec2, ttl_seconds=60, clock=clock)
    assert cache.is_running("10.0.0.1") is True
    first = cache.snapshot

    ec2.pages = [_page("10.0.0.3")]
    clock.now += 60
    assert cache.is_running("10.0.0.1") is False
    assert cache.is_running("10.0.0.3") is True
    assert len(ec2.calls) == 2
    # The old snapshot object is untouched.
    assert first is not None and first.addresses == frozenset({"10.0.0.1", "10.0.0.2"})
    assert cache.snapshot is not first


def test_refresh_failure_without_snapshot_raises() -> None:
    ec2 = _FakeEC2([])
    ec2.error = EndpointConnectionError(endpoint_url="https://ec2.us-west-1.amazonaws.com")
    cache = InventoryCache(ec2, ttl_seconds=60, clock=_Clock())

    with pytest.raises(InventoryError):
        cache.is_running("10.0.0.1")
    assert cache.snapshot is None


def test_refresh_failure_keeps_previous_snapshot() -> None:
    clock = _Clock()
    ec2 = _FakeEC2([_page("10.0.0.1")])
    cache = InventoryCache(ec2, ttl_seconds=60, clock=clock)
    cache.is_running("10.0.0.1")
    previous = cache.snapshot

    clock.now += 120
    ec2.error = ClientError({"Error": {"Code": "RequestLimitExceeded", "Message": "slow down"}}, "DescribeInstances")
    with pytest.raises(InventoryError, match="RequestLimitExceeded"):
        cache.is_running("10.0.0.1")
    assert cache.snapshot is previous

    # Once the retry delay passes the next call refreshes and recovers.
    ec2.error = None
    clock.now += 10
    assert cache.is_running("10.0.0.1") is True
    assert len(ec2.calls) == 3


def test_failed_refresh_is_not_repeated_for_every_host_in_a_cycle() -> None:
    clock = _Clock()
    ec2 = _FakeEC2([])
    ec2.error = ClientError({"Error": {"Code": "RequestLimitExceeded", "Message": "slow down"}}, "DescribeInstances")
    cache = InventoryCache(ec2, ttl_seconds=60, clock=clock, retry_after_seconds=10)
    policy = ReconciliationPolicy(cache)
    ts = datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc)
    timestamps = {f"ip-10-0-0-{n}": ts for n in range(1, 201)}

    out = policy.reconcile(timestamps)

    assert out == timestamps
    assert len(ec2.calls) == 1

    # The next cycle, after the retry delay, queries exactly once more.
    clock.now += 15
    policy.reconcile(timestamps)
    assert len(ec2.calls) == 2


def test_build_ec2_client_without_region_is_configuration_error(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in ("AWS_REGION", "AWS_DEFAULT_REGION", "AWS_PROFILE"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("AWS_EC2_METADATA_DISABLED", "true")
    monkeypatch.setenv("AWS_CONFIG_FILE", str(tmp_path / "config"))
    monkeypatch.setenv("AWS_SHARED_CREDENTIALS_FILE", str(tmp_path / "credentials"))
    monkeypatch.setattr(boto3, "DEFAULT_SESSION", None)
    config = MonitorConfig(
        elasticsearch_uri="https://logs.example.internal",
        elasticsearch_index="app-logs",
        signalfx_api_key="token",
        metric_name="log-heartbeat",
        component_name="log-monitor-es",
        environment="test",
    )

    with pytest.raises(ConfigurationError, match="AWS_REGION"):
        build_ec2_client(config)
