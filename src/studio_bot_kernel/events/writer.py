from __future__ import annotations

import json

from ..db.ddl import DEFAULT_SCHEMA, quote_schema
from ..db.jsonb import hash_payload
from .types import AuditEntry


class AuditWriter:
    def __init__(self, *, pool, schema: str = DEFAULT_SCHEMA) -> None:
        self._pool = pool
        self._schema = quote_schema(schema)

    async def append(self, entry: AuditEntry) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(
                f"""
                INSERT INTO {self._schema}.audit_log (
                  draft_id,
                  actor_id,
                  level,
                  event_type,
                  payload,
                  payload_hash,
                  created_at
                ) VALUES (
                  $1,$2,$3,$4,$5::jsonb,$6,$7
                );
                """,
                entry.draft_id,
                entry.actor_id,
                entry.level,
                entry.event_type,
                json.dumps(entry.payload, default=str),
                hash_payload(entry.payload),
                entry.created_at,
            )
