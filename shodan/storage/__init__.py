from shodan.storage.base import Storage, StorageNotFoundError
from shodan.storage.informers import STORAGE_CHANGED, StorageChanged, StorageInformer
from shodan.storage.memory import MemoryStorage
from shodan.storage.sql import SQLStorage, StorageOpenError

__all__ = [
    "Storage",
    "StorageNotFoundError",
    "StorageOpenError",
    "StorageInformer",
    "StorageChanged",
    "STORAGE_CHANGED",
    "MemoryStorage",
    "SQLStorage",
]
