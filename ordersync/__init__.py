"""Order Sync - reconcile order emails into a per-user order store"""

from __future__ import annotations

__version__ = "0.3.0"


# Lazy imports so lightweight modules don't pull in the LLM and storage stack
def __getattr__(name: str):
    if name == "OrderSyncOrchestrator":
        from ordersync.orders.sync import OrderSyncOrchestrator

        return OrderSyncOrchestrator
    if name in ("SyncSummary", "ExtractedOrder", "StoredOrder", "RawMessage"):
        from ordersync.orders import models

        return getattr(models, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = ["OrderSyncOrchestrator", "SyncSummary", "ExtractedOrder", "StoredOrder", "RawMessage"]
