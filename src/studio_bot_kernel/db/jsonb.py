from __future__ import annotations

import json
from typing import Any

from blake3 import blake3


def coerce_json(value: Any) -> Any:
    """asyncpg returns JSONB as text unless a codec is registered."""
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        return value
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


def hash_payload(payload: Any) -> bytes:
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")
    return blake3(raw).digest()
