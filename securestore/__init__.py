"""Typed key-value facade over an access-controlled secure vault."""

from .backend import MemoryVaultBackend, SQLiteVaultBackend, VaultBackend, set_root_path
from .client import SecureStoreClient
from .codec import Codec, JSONCodec, PickleCodec
from .errors import (
    DecodingError,
    DuplicateItemError,
    EncodingError,
    ItemNotFoundError,
    SecureStoreError,
    StoreFailure,
)
from .item import SecureItem
from .log import set_logger
from .status import describe_status
from .stream import StoreObserver, save_to_store

__all__ = [
    "Codec",
    "DecodingError",
    "DuplicateItemError",
    "EncodingError",
    "ItemNotFoundError",
    "JSONCodec",
    "MemoryVaultBackend",
    "PickleCodec",
    "SQLiteVaultBackend",
    "SecureItem",
    "SecureStoreClient",
    "SecureStoreError",
    "StoreFailure",
    "StoreObserver",
    "VaultBackend",
    "describe_status",
    "save_to_store",
    "set_logger",
    "set_root_path",
]
