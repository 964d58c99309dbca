from typing import Any, Optional

from .client import SecureStoreClient
from .errors import SecureStoreError
from .log import get_logger


class SecureItem:
    """A single value bound to one key of a :class:`SecureStoreClient`.

    The cached value is loaded when the item is created and written back on
    every assignment to :attr:`value`. Both of those paths are best-effort:
    a failed load leaves the cache empty and a failed write only logs. Call
    :meth:`load` and :meth:`store` directly to get the errors.

        token = SecureItem("session-token", client)
        token.value = {"id": 42, "expires": 1700000000}
    """

    __slots__ = {"key", "client", "_cached"}

    def __init__(self, key: str, client: SecureStoreClient):
        self.key = key
        self.client = client
        self._cached = None
        try:
            self.load()
        except SecureStoreError as e:
            get_logger().warning(f"Could not load key '{key}', starting empty: {e}")

    def load(self) -> Optional[Any]:
        self._cached = None
        self._cached = self.client.value(self.key)
        return self._cached

    def store(self):
        if self._cached is None:
            self.client.delete_value(self.key)
        else:
            self.client.save(self._cached, self.key)

    @property
    def value(self) -> Optional[Any]:
        return self._cached

    @value.setter
    def value(self, new_value: Any):
        self._cached = new_value
        self.client.quiet_set(self.key, new_value)

    def __repr__(self):
        return f"SecureItem(key={self.key!r}, loaded={self._cached is not None})"
