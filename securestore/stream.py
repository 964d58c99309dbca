"""Persist every value that flows through a stream without touching the stream itself."""

from typing import Any, Iterable, Iterator

from .client import SecureStoreClient
from .log import get_logger


class StoreObserver:
    """Subscriber that writes each observed value to ``key``.

    Hook it into any callback-style source (``bus.subscribe(topic, observer)``,
    ``source.add_listener(observer)``). Write failures are logged and dropped,
    so the source never sees an exception from this observer.
    """

    __slots__ = {"key", "client", "written", "failed"}

    def __init__(self, key: str, client: SecureStoreClient):
        self.key = key
        self.client = client
        self.written = 0
        self.failed = 0

    def __call__(self, value: Any):
        self.on_next(value)

    def on_next(self, value: Any):
        if self.client.quiet_set(self.key, value):
            self.written += 1
        else:
            self.failed += 1

    def on_error(self, error: BaseException):
        get_logger().debug(f"Stream feeding key '{self.key}' failed: {error}")

    def on_completed(self):
        get_logger().debug(f"Stream feeding key '{self.key}' completed after {self.written} writes.")


def save_to_store(source: Iterable[Any], key: str, client: SecureStoreClient) -> Iterator[Any]:
    """Yield every item of ``source`` unchanged, saving each one under ``key`` first."""
    observer = StoreObserver(key, client)
    for item in source:
        observer.on_next(item)
        yield item
    observer.on_completed()
