from __future__ import annotations

import json
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from ..actions.types import Action, actions_from_json, actions_to_json
from ..db.ddl import DEFAULT_SCHEMA, quote_schema
from ..db.jsonb import coerce_json
from .types import Draft, DraftStatus, check_transition

_COLUMNS = """
    id, author_id, origin_channel_id, status, actions, source_text, summary,
    created_at, updated_at, expires_at
"""


class DraftStore:
    """Durable proposals. ``actions`` is written once at insert and never updated."""

    def __init__(self, *, pool, schema: str = DEFAULT_SCHEMA) -> None:
        self._pool = pool
        self._schema = quote_schema(schema)

    async def create(
        self,
        *,
        author_id: str,
        channel_id: str,
        actions: tuple[Action, ...] | list[Action],
        ttl_sec: int,
        source_text: str | None = None,
        summary: str | None = None,
    ) -> Draft:
        draft_id = uuid.uuid4()
        now = datetime.now(timezone.utc)
        expires_at = now + timedelta(seconds=int(ttl_sec))
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO {self._schema}.drafts (
                  id, author_id, origin_channel_id, status, actions, source_text, summary,
                  created_at, updated_at, expires_at
                ) VALUES (
                  $1,$2,$3,'DRAFT',$4::jsonb,$5,$6,$7,$7,$8
                )
                RETURNING {_COLUMNS};
                """,
                draft_id,
                str(author_id),
                str(channel_id),
                json.dumps(actions_to_json(actions)),
                source_text,
                summary,
                now,
                expires_at,
            )
        return _row_to_draft(row)

    async def get(self, draft_id: uuid.UUID) -> Draft | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM {self._schema}.drafts WHERE id=$1;",
                draft_id,
            )
        if not row:
            return None
        return _row_to_draft(row)

    async def transition(
        self,
        draft_id: uuid.UUID,
        from_status: DraftStatus,
        to_status: DraftStatus,
    ) -> bool:
        """Compare-and-set on status. Returns False when the row is not in ``from_status``."""
        check_transition(from_status, to_status)
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE {self._schema}.drafts
                SET status=$3, updated_at=now()
                WHERE id=$1 AND status=$2
                RETURNING id;
                """,
                draft_id,
                from_status.value,
                to_status.value,
            )
        return row is not None

    async def list_for_author(self, author_id: str, *, limit: int = 20) -> list[Draft]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_COLUMNS} FROM {self._schema}.drafts
                WHERE author_id=$1
                ORDER BY created_at DESC
                LIMIT $2;
                """,
                str(author_id),
                max(1, min(int(limit), 200)),
            )
        return [_row_to_draft(row) for row in rows]


def _row_to_draft(row: Any) -> Draft:
    return Draft(
        id=row["id"] if isinstance(row["id"], uuid.UUID) else uuid.UUID(str(row["id"])),
        author_id=str(row["author_id"]),
        origin_channel_id=str(row["origin_channel_id"]),
        status=DraftStatus(str(row["status"])),
        actions=actions_from_json(coerce_json(row["actions"])),
        source_text=row["source_text"],
        summary=row["summary"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        expires_at=row["expires_at"],
    )
