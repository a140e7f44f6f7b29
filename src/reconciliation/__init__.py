"""Reconciliation package: mutation sequencing and view state."""

from src.reconciliation.coordinator import (
    DELETE_CONFIRMATION_MESSAGE,
    ConfirmCallback,
    ReconciliationCoordinator,
)
from src.reconciliation.view_store import (
    CURRENT_VIEW_KEY,
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    KeyValueStoreInterface,
)

__all__ = [
    "CURRENT_VIEW_KEY",
    "ConfirmCallback",
    "DELETE_CONFIRMATION_MESSAGE",
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "KeyValueStoreInterface",
    "ReconciliationCoordinator",
]
