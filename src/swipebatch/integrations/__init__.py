"""External system adapters - submission relay."""

from swipebatch.integrations.relay import DryRunRelay, RelayCall

__all__ = [
    "DryRunRelay",
    "RelayCall",
]
