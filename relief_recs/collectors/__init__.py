"""Directory provider client and call-result helpers."""

from .base import CallResult, partition
from .directory_client import DirectoryClient, RetryPolicy, parse_location

__all__ = ["CallResult", "DirectoryClient", "RetryPolicy", "parse_location", "partition"]
