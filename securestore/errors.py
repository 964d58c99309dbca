"""Errors raised by :class:`securestore.SecureStoreClient` and its codecs."""

from .status import DUPLICATE_ITEM, ITEM_NOT_FOUND, describe_status


class SecureStoreError(Exception):
    """Base class for everything the store raises."""


class StoreFailure(SecureStoreError):
    """The vault answered with a status the operation cannot treat as success."""

    def __init__(self, status: int, key=None):
        self.status = status
        self.key = key
        message = describe_status(status)
        if key is not None:
            message = f"{message} (key: '{key}', status: {status})"
        else:
            message = f"{message} (status: {status})"
        super().__init__(message)

    @classmethod
    def from_status(cls, status: int, key=None) -> "StoreFailure":
        if status == DUPLICATE_ITEM:
            return DuplicateItemError(status, key)
        if status == ITEM_NOT_FOUND:
            return ItemNotFoundError(status, key)
        return cls(status, key)


class DuplicateItemError(StoreFailure):
    pass


class ItemNotFoundError(StoreFailure):
    pass


class EncodingError(SecureStoreError):
    pass


class DecodingError(SecureStoreError):
    pass
