"""Log store access for heartbeat entries."""

from .heartbeat_fetcher import HeartbeatFetcher, build_search_body, parse_search_response

__all__ = ["HeartbeatFetcher", "build_search_body", "parse_search_response"]
