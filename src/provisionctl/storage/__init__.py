"""
Environment store abstraction for provisionctl.

Example:
    from provisionctl.storage import get_store, StoreType

    store = get_store(StoreType.FILE, data_dir="./data")
    with store.lock("dev"):
        environment = store.load("dev")
        store.save(environment)
"""

from provisionctl.storage.base import (
    EnvironmentStore,
    StoreType,
    get_store,
    register_store,
)
from provisionctl.storage.file import FileEnvironmentStore
from provisionctl.storage.locking import NamedLocks, file_lock
from provisionctl.storage.memory import InMemoryEnvironmentStore

__all__ = [
    "EnvironmentStore",
    "StoreType",
    "get_store",
    "register_store",
    "FileEnvironmentStore",
    "InMemoryEnvironmentStore",
    "NamedLocks",
    "file_lock",
]
