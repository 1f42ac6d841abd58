"""Store de snapshots, buckets e historial."""

from .base import ComplianceStore
from .memory import InMemoryComplianceStore, StoreConfig
from .subscription import Subscription

__all__ = ["ComplianceStore", "InMemoryComplianceStore", "StoreConfig", "Subscription"]
