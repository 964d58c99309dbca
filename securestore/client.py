from collections.abc import Mapping
from typing import Any, Optional

from .backend import VaultBackend
from .codec import Codec
from .errors import DecodingError, DuplicateItemError, EncodingError, SecureStoreError, StoreFailure
from .log import get_logger
from .status import (
    DUPLICATE_ITEM,
    ITEM_NOT_FOUND,
    SUCCESS,
    VALUE_DATA,
    add_query,
    fetch_query,
    search_query,
    update_attributes,
)


class SecureStoreClient:
    """Typed key-value facade over a :class:`VaultBackend`.

    Values are encoded with the injected :class:`Codec` and stored under the
    literal string form of their key. The named operations (``insert``,
    ``save``, ``update_value``, ``value``, ``delete_value``) raise
    :class:`SecureStoreError` subclasses. The item accessor
    (``client[key]``) and the ``quiet_*`` methods are best-effort: they log
    and discard every store error.

    The client keeps no state between calls; backend and codec may be shared
    with other clients.
    """

    __slots__ = {"backend", "codec"}

    def __init__(self, backend: VaultBackend, codec: Codec):
        self.backend = backend
        self.codec = codec

    def _encode(self, value) -> bytes:
        try:
            return self.codec.encode(value)
        except EncodingError:
            raise
        except Exception as e:
            raise EncodingError(f"Codec failed to encode value of type {type(value).__name__}: {e}") from e

    def _decode(self, data: bytes):
        try:
            return self.codec.decode(data)
        except DecodingError:
            raise
        except Exception as e:
            raise DecodingError(f"Codec failed to decode payload: {e}") from e

    def insert(self, value: Any, key, overwrite: bool = False):
        """Add a new record for ``key``.

        With ``overwrite=False`` an existing record raises
        :class:`DuplicateItemError` and is left untouched. With
        ``overwrite=True`` an existing record is updated instead.
        """
        log = get_logger()
        key = str(key)
        data = self._encode(value)
        log.debug(f"Adding key: {key} to vault.")
        status = self.backend.add(add_query(key, data))
        if status == SUCCESS:
            log.info(f"Key '{key}' inserted into vault.")
            return
        if status == DUPLICATE_ITEM and overwrite:
            log.debug(f"Key '{key}' already exists, updating instead.")
            self.update_value(value, key)
            return
        raise StoreFailure.from_status(status, key)

    def save(self, value: Any, key):
        """Insert ``value`` under ``key``, replacing any existing record."""
        try:
            self.insert(value, key)
        except DuplicateItemError:
            get_logger().debug(f"Key '{key}' already exists, updating instead.")
            self.update_value(value, key)

    def update_value(self, new_value: Any, key):
        log = get_logger()
        key = str(key)
        data = self._encode(new_value)
        log.debug(f"Updating key: {key} in vault.")
        status = self.backend.update(search_query(key), update_attributes(data))
        if status != SUCCESS:
            raise StoreFailure.from_status(status, key)
        log.info(f"Key '{key}' updated in vault.")

    def value(self, key) -> Optional[Any]:
        """Return the decoded value stored under ``key``, or None if there is none.

        A missing key is a normal result here. A record whose payload is
        missing also reads as None; a payload the codec rejects raises
        :class:`DecodingError`.
        """
        log = get_logger()
        key = str(key)
        log.debug(f"Retrieving key: {key} from vault.")
        status, item = self.backend.fetch(fetch_query(key))
        if status == ITEM_NOT_FOUND:
            log.warning(f"Key '{key}' not found in vault.")
            return None
        if status != SUCCESS:
            raise StoreFailure.from_status(status, key)
        data = item.get(VALUE_DATA) if isinstance(item, Mapping) else None
        if not isinstance(data, bytes):
            log.warning(f"Key '{key}' has no payload in vault.")
            return None
        try:
            value = self._decode(data)
        except DecodingError:
            log.error(f"Payload for key '{key}' could not be decoded.")
            raise
        log.info(f"Retrieved key '{key}' from vault.")
        return value

    def delete_value(self, key):
        log = get_logger()
        key = str(key)
        log.debug(f"Deleting key: {key} from vault.")
        status = self.backend.delete(search_query(key))
        if status != SUCCESS:
            raise StoreFailure.from_status(status, key)
        log.info(f"Key '{key}' removed from vault.")

    def quiet_value(self, key) -> Optional[Any]:
        """Best-effort read: ``value(key)``, with any store error read as None."""
        try:
            return self.value(key)
        except SecureStoreError as e:
            get_logger().warning(f"Ignoring failed read of key '{key}': {e}")
            return None

    def quiet_set(self, key, value: Any) -> bool:
        """Best-effort write: store ``value``, or delete the record when ``value`` is None.

        Returns whether the write went through; the error itself is only logged.
        """
        try:
            if value is None:
                self.delete_value(key)
            else:
                self.insert(value, key, overwrite=True)
        except SecureStoreError as e:
            get_logger().warning(f"Ignoring failed write of key '{key}': {e}")
            return False
        return True

    def __getitem__(self, key):
        return self.quiet_value(key)

    def __setitem__(self, key, value):
        self.quiet_set(key, value)

    def __delitem__(self, key):
        self.quiet_set(key, None)
