from __future__ import annotations

from typing import Any

from .ddl import DEFAULT_SCHEMA, quote_schema
from .jsonb import coerce_json


class SettingsStore:
    """Key/value rows in ``<schema>.settings``; values are JSONB."""

    def __init__(self, *, pool, schema: str = DEFAULT_SCHEMA) -> None:
        self._pool = pool
        self._schema = quote_schema(schema)

    async def load_all(self) -> dict[str, Any]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(f"SELECT key, value FROM {self._schema}.settings;")
        return {str(row["key"]): coerce_json(row["value"]) for row in rows}
