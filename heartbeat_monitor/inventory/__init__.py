"""Cloud inventory lookups used to suppress alarms for terminated hosts."""

from .ec2_cache import InventoryCache, build_ec2_client

__all__ = ["InventoryCache", "build_ec2_client"]
