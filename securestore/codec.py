"""Codecs turn caller values into the payload bytes stored in the vault and back."""

import json
import pickle
from abc import ABC, abstractmethod

from .errors import DecodingError, EncodingError


class Codec(ABC):
    """An encode/decode pair. ``decode(encode(v))`` must give back a value equal to ``v``."""

    @abstractmethod
    def encode(self, value) -> bytes:
        """Encode ``value``. Raises EncodingError."""

    @abstractmethod
    def decode(self, data: bytes):
        """Decode a payload written by ``encode``. Raises DecodingError."""


def _check_json_round_trip(value):
    """Raise EncodingError for values JSON would hand back changed (tuples, non-str dict keys)."""
    pending = [value]
    while pending:
        current = pending.pop()
        if isinstance(current, tuple):
            raise EncodingError("Tuples come back from JSON as lists; store a list instead.")
        if isinstance(current, dict):
            for key, item in current.items():
                if not isinstance(key, str):
                    raise EncodingError(f"JSON object keys must be str, got {type(key).__name__}.")
                pending.append(item)
        elif isinstance(current, list):
            pending.extend(current)


class JSONCodec(Codec):
    __slots__ = {"sort_keys"}

    def __init__(self, sort_keys: bool = False):
        self.sort_keys = sort_keys

    def encode(self, value) -> bytes:
        _check_json_round_trip(value)
        try:
            return json.dumps(value, sort_keys=self.sort_keys).encode("utf-8")
        except (TypeError, ValueError, RecursionError) as e:
            raise EncodingError(f"Value of type {type(value).__name__} is not JSON serializable: {e}") from e

    def decode(self, data: bytes):
        try:
            return json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, ValueError, RecursionError) as e:
            raise DecodingError(f"Payload is not valid JSON: {e}") from e


class PickleCodec(Codec):
    """Pickles arbitrary Python objects. Only decode payloads this process family wrote."""

    __slots__ = {"protocol"}

    def __init__(self, protocol: int = pickle.DEFAULT_PROTOCOL):
        self.protocol = protocol

    def encode(self, value) -> bytes:
        try:
            return pickle.dumps(value, protocol=self.protocol)
        except (pickle.PicklingError, TypeError, AttributeError, RecursionError) as e:
            raise EncodingError(f"Value of type {type(value).__name__} cannot be pickled: {e}") from e

    def decode(self, data: bytes):
        try:
            return pickle.loads(data)
        except (pickle.UnpicklingError, EOFError, AttributeError, ImportError, IndexError, TypeError, ValueError,
                RecursionError) as e:
            raise DecodingError(f"Payload cannot be unpickled: {e}") from e
