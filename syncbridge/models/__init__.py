# syncbridge/models/__init__.py
from .alert import Alert
from .change_log import ChangeLogEntry
from .mappings import CustomerMapping, ItemMapping, OrderMapping
from .product import Product
from .rate_limit import RateLimitState, SyncConfiguration
from .snapshot import ProductSnapshot, RestorePoint, RollbackOperation
from .sync_event import EventProcessingHistory, SyncEventRecord
from .sync_log import SyncHistory, SyncLog, SystemMetric

__all__ = [
    "Alert",
    "ChangeLogEntry",
    "CustomerMapping",
    "EventProcessingHistory",
    "ItemMapping",
    "OrderMapping",
    "Product",
    "ProductSnapshot",
    "RateLimitState",
    "RestorePoint",
    "RollbackOperation",
    "SyncConfiguration",
    "SyncEventRecord",
    "SyncHistory",
    "SyncLog",
    "SystemMetric",
]
