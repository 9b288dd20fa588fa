"""
Value serialization for cached payloads.

The codec defines what "serializable" means for a cache value and is
also the basis of the size estimate reported in the statistics.
"""

import json
from typing import Any, Protocol

from flowforge.exceptions import InvalidArgumentError


class ValueCodec(Protocol):
    """Serialization contract for cache values."""

    def dumps(self, value: Any) -> bytes:
        ...

    def loads(self, data: bytes) -> Any:
        ...


class JsonCodec:
    """Compact UTF-8 JSON codec (the default)."""

    def dumps(self, value: Any) -> bytes:
        try:
            text = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise InvalidArgumentError(
                f"Cache value is not JSON-serializable: {exc}"
            ) from exc
        return text.encode("utf-8")

    def loads(self, data: bytes) -> Any:
        return json.loads(data)


def estimate_size(codec: ValueCodec, value: Any) -> int:
    """Best-effort size of *value* in bytes once serialized."""
    return len(codec.dumps(value))
