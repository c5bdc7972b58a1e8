from __future__ import annotations

from datetime import datetime
from typing import Any

import httpx
import structlog

from ..config import MonitorConfig
from ..errors import FetchError
from ..models import HeartbeatRecord, from_epoch_millis


logger = structlog.get_logger(__name__)

HOSTS_AGG = "hosts"
LATEST_AGG = "latestTimes"


def normalize_base_url(uri: str) -> str:
    """Elasticsearch endpoints without a scheme are reached over https."""
    s = uri.strip()
    if "://" not in s:
        s = f"https://{s}"
    return s.rstrip("/")


def build_search_body(
    *,
    title: str = "heartbeat",
    hostname_field: str = "hostname",
    timestamp_field: str = "timestamp",
    window: str = "1h",
    max_hosts: int = 200,
    timeout_seconds: float = 15.0,
) -> dict[str, Any]:
    """Count-only search: latest heartbeat timestamp per host within the window."""
    return {
        "size": 0,
        "timeout": f"{max(1, int(timeout_seconds * 1000))}ms",
        "query": {
            "bool": {
                "must": [
                    {"term": {"title": title}},
                    {"range": {timestamp_field: {"gte": f"now-{window}", "lte": "now"}}},
                ]
            }
        },
        "aggs": {
            HOSTS_AGG: {
                "terms": {"field": hostname_field, "size": max_hosts},
                "aggs": {LATEST_AGG: {"max": {"field": timestamp_field}}},
            }
        },
    }


def parse_search_response(data: Any) -> list[HeartbeatRecord]:
    """
    Extract one record per host bucket from a _search response.
    Buckets whose max is null (no timestamp values) are skipped.
    """
    if not isinstance(data, dict):
        raise FetchError("Unexpected search response (not a JSON object)")
    if data.get("error"):
        raise FetchError(f"Error while searching: {data['error']}")

    aggs = data.get("aggregations")
    hosts = aggs.get(HOSTS_AGG) if isinstance(aggs, dict) else None
    if not isinstance(hosts, dict) or not isinstance(hosts.get("buckets"), list):
        raise FetchError(f"No results found: response has no {HOSTS_AGG!r} aggregation")

    records: list[HeartbeatRecord] = []
    for bucket in hosts["buckets"]:
        if not isinstance(bucket, dict):
            raise FetchError(f"Malformed {HOSTS_AGG!r} bucket: {bucket!r}")
        host = bucket.get("key")
        if not isinstance(host, str):
            raise FetchError(f"Malformed {HOSTS_AGG!r} bucket: {bucket!r}")
        latest = bucket.get(LATEST_AGG)
        if not isinstance(latest, dict):
            continue
        value = latest.get("value")
        if value is None:
            continue
        try:
            records.append(HeartbeatRecord(host=host, last_seen=from_epoch_millis(float(value))))
        except (TypeError, ValueError, OverflowError, OSError) as e:
            raise FetchError(f"Malformed {LATEST_AGG!r} value for host {host!r}: {value!r}") from e
    return records


class HeartbeatFetcher:
    """Reads the latest heartbeat per host from Elasticsearch."""

    def __init__(self, config: MonitorConfig, client: httpx.Client | None = None):
        self.config = config
        self.base_url = normalize_base_url(config.elasticsearch_uri)
        self.client = client or httpx.Client(timeout=config.request_timeout_seconds)
        self._owns_client = client is None

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def search_url(self) -> str:
        return f"{self.base_url}/{self.config.elasticsearch_index}/_search"

    def fetch_records(self) -> list[HeartbeatRecord]:
        cfg = self.config
        body = build_search_body(
            title=cfg.heartbeat_title,
            hostname_field=cfg.hostname_field,
            timestamp_field=cfg.timestamp_field,
            window=cfg.heartbeat_window,
            max_hosts=cfg.max_hosts,
            timeout_seconds=cfg.request_timeout_seconds,
        )
        try:
            resp = self.client.post(self.search_url(), json=body, timeout=cfg.request_timeout_seconds)
        except httpx.HTTPError as e:
            raise FetchError(f"Error while searching: {e}") from e

        if resp.is_error:
            # Elasticsearch reports query-level failures as an error body on a 4xx/5xx.
            raise FetchError(f"Error while searching: HTTP {resp.status_code}: {resp.text[:500]}")
        try:
            data = resp.json()
        except ValueError as e:
            raise FetchError("Unexpected search response (invalid JSON)") from e
        records = parse_search_response(data)
        if data.get("timed_out"):
            logger.warning("Search timed out, results may be partial", index=cfg.elasticsearch_index)
        return records

    def fetch_latest_per_host(self) -> dict[str, datetime]:
        """Return host -> latest heartbeat time (UTC, whole seconds). Raises FetchError."""
        return {record.host: record.last_seen for record in self.fetch_records()}
