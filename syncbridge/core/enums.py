"""
Shared enums and constants used across the application.
"""

from enum import Enum


class PlatformName(str, Enum):
    SHOPIFY = "shopify"
    NETSUITE = "netsuite"

    @property
    def display_name(self):
        return {"shopify": "Shopify", "netsuite": "NetSuite"}[self.value]


class SyncDirection(str, Enum):
    NETSUITE_TO_SHOPIFY = "netsuite_to_shopify"
    SHOPIFY_TO_NETSUITE = "shopify_to_netsuite"
    BIDIRECTIONAL = "bidirectional"

    def legs(self):
        """(source, target) platform pairs covered by this direction."""
        if self is SyncDirection.NETSUITE_TO_SHOPIFY:
            return [(PlatformName.NETSUITE, PlatformName.SHOPIFY)]
        if self is SyncDirection.SHOPIFY_TO_NETSUITE:
            return [(PlatformName.SHOPIFY, PlatformName.NETSUITE)]
        return [
            (PlatformName.NETSUITE, PlatformName.SHOPIFY),
            (PlatformName.SHOPIFY, PlatformName.NETSUITE),
        ]


class SyncDataType(str, Enum):
    PRODUCTS = "products"
    INVENTORY = "inventory"
    ORDERS = "orders"


class SyncRunStatus(str, Enum):
    """Lifecycle of a sync_logs row"""
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"


class MappingKind(str, Enum):
    ITEM = "item"
    ORDER = "order"
    CUSTOMER = "customer"


class MappingStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class SnapshotType(str, Enum):
    PRE_SYNC = "pre_sync"
    POST_SYNC = "post_sync"
    MANUAL = "manual"


class RestorePointType(str, Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"
    PRE_SYNC = "pre_sync"


class RestorePointStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    ARCHIVED = "archived"
    RESTORED = "restored"


class RollbackStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ChangeOperation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class ChangeSource(str, Enum):
    SYNC = "sync"
    MANUAL = "manual"
    WEBHOOK = "webhook"
    SCHEDULED = "scheduled"
    ROLLBACK = "rollback"


class EventType(str, Enum):
    ENTITY_CREATED = "entity_created"
    ENTITY_UPDATED = "entity_updated"
    ENTITY_DELETED = "entity_deleted"
    SYNC_REQUESTED = "sync_requested"
    SYNC_COMPLETED = "sync_completed"
    SYNC_FAILED = "sync_failed"
    WEBHOOK_RECEIVED = "webhook_received"
    SCHEDULE_TRIGGERED = "schedule_triggered"
    CONFLICT_DETECTED = "conflict_detected"
    DATA_VALIDATION_FAILED = "data_validation_failed"
    API_RATE_LIMITED = "api_rate_limited"
    SYSTEM_HEALTH_CHANGED = "system_health_changed"
    USER_ACTION_PERFORMED = "user_action_performed"


class EventSource(str, Enum):
    NETSUITE = "netsuite"
    SHOPIFY = "shopify"
    SYSTEM = "system"
    USER = "user"
    SCHEDULER = "scheduler"


class EntityType(str, Enum):
    PRODUCT = "product"
    INVENTORY = "inventory"
    ORDER = "order"
    CUSTOMER = "customer"
    SYSTEM = "system"


class EventPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return {"low": 1, "normal": 2, "high": 3, "critical": 4}[self.value]


class BusinessImpact(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class EventStatus(str, Enum):
    """Dispatch state of a stored event"""
    CREATED = "created"
    DISPATCHED = "dispatched"
    SUCCESS = "success"
    DEFERRED = "deferred"
    ESCALATED = "escalated"


class ProcessingResult(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    DEFERRED = "deferred"


class BackoffType(str, Enum):
    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    FIXED = "fixed"


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertType(str, Enum):
    RATE_LIMIT = "rate_limit"
    SYNC_FAILURE = "sync_failure"
    DATA_INTEGRITY = "data_integrity"
    EVENT_ESCALATED = "event_escalated"
    SYSTEM_HEALTH = "system_health"


class ErrorCategory(str, Enum):
    TRANSIENT = "transient"
    RATE_LIMITED = "rate_limited"
    PERMANENT = "permanent"
    INTEGRITY = "integrity"
