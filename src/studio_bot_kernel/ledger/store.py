from __future__ import annotations

import json
import uuid
from typing import Any

from ..db.ddl import DEFAULT_SCHEMA, quote_schema
from ..db.jsonb import coerce_json, hash_payload
from .types import ApplyAttempt, ClaimStatus, LedgerEntry, TemplateTaskRecord, TemplateTaskStatus


class IdempotencyLedger:
    """
    Set of consumed dedupe tokens.

    ``claim`` is the single gate for "has this request already been accepted":
    it returns True for exactly one caller per token and never raises for
    duplicates. With ``reclaim_failed=True`` a token whose last run finished
    as ``failed`` may be claimed again, still by exactly one caller.
    """

    def __init__(self, *, pool, schema: str = DEFAULT_SCHEMA, reclaim_failed: bool = False) -> None:
        self._pool = pool
        self._schema = quote_schema(schema)
        self._reclaim_failed = reclaim_failed

    async def claim(self, token: str, draft_id: uuid.UUID | None = None) -> bool:
        if self._reclaim_failed:
            sql = f"""
                INSERT INTO {self._schema}.idempotency_keys (token, draft_id, status, attempt_count, created_at, updated_at)
                VALUES ($1, $2, 'claimed', 1, now(), now())
                ON CONFLICT (token) DO UPDATE
                  SET status='claimed',
                      attempt_count={self._schema}.idempotency_keys.attempt_count + 1,
                      updated_at=now()
                  WHERE {self._schema}.idempotency_keys.status='failed'
                RETURNING token;
                """
        else:
            sql = f"""
                INSERT INTO {self._schema}.idempotency_keys (token, draft_id, status, attempt_count, created_at, updated_at)
                VALUES ($1, $2, 'claimed', 1, now(), now())
                ON CONFLICT (token) DO NOTHING
                RETURNING token;
                """
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(sql, token, draft_id)
        return row is not None

    async def finish(self, token: str, status: ClaimStatus) -> None:
        if status is ClaimStatus.CLAIMED:
            raise ValueError("finish() needs a terminal status")
        async with self._pool.acquire() as conn:
            await conn.execute(
                f"""
                UPDATE {self._schema}.idempotency_keys
                SET status=$2, updated_at=now()
                WHERE token=$1;
                """,
                token,
                status.value,
            )

    async def get(self, token: str) -> LedgerEntry | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT token, draft_id, status, attempt_count, created_at, updated_at
                FROM {self._schema}.idempotency_keys
                WHERE token=$1;
                """,
                token,
            )
        if not row:
            return None
        return LedgerEntry(
            token=str(row["token"]),
            draft_id=row["draft_id"],
            status=ClaimStatus(str(row["status"])),
            attempt_count=int(row["attempt_count"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


class ApplyAttemptStore:
    def __init__(self, *, pool, schema: str = DEFAULT_SCHEMA) -> None:
        self._pool = pool
        self._schema = quote_schema(schema)

    async def start(self, *, draft_id: uuid.UUID, idempotency_token: str) -> ApplyAttempt:
        attempt_id = uuid.uuid4()
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO {self._schema}.draft_apply_attempts (id, draft_id, idempotency_token, attempt_no, started_at)
                SELECT $1, $2, $3, COALESCE(MAX(attempt_no), 0) + 1, now()
                FROM {self._schema}.draft_apply_attempts
                WHERE idempotency_token=$3
                RETURNING id, draft_id, idempotency_token, attempt_no, started_at;
                """,
                attempt_id,
                draft_id,
                idempotency_token,
            )
        return ApplyAttempt(
            id=row["id"],
            draft_id=row["draft_id"],
            idempotency_token=str(row["idempotency_token"]),
            attempt_no=int(row["attempt_no"]),
            started_at=row["started_at"],
        )

    async def finish(
        self,
        attempt_id: uuid.UUID,
        *,
        result: dict[str, Any] | None,
        error_summary: str | None,
    ) -> None:
        result_hash = hash_payload(result) if result is not None else None
        async with self._pool.acquire() as conn:
            await conn.execute(
                f"""
                UPDATE {self._schema}.draft_apply_attempts
                SET finished_at=now(), result=$2::jsonb, result_hash=$3, error_summary=$4
                WHERE id=$1 AND finished_at IS NULL;
                """,
                attempt_id,
                json.dumps(result, default=str) if result is not None else None,
                result_hash,
                error_summary,
            )

    async def list_for_draft(self, draft_id: uuid.UUID) -> list[ApplyAttempt]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT id, draft_id, idempotency_token, attempt_no, started_at, finished_at, result, error_summary
                FROM {self._schema}.draft_apply_attempts
                WHERE draft_id=$1
                ORDER BY started_at ASC;
                """,
                draft_id,
            )
        return [
            ApplyAttempt(
                id=row["id"],
                draft_id=row["draft_id"],
                idempotency_token=str(row["idempotency_token"]),
                attempt_no=int(row["attempt_no"]),
                started_at=row["started_at"],
                finished_at=row["finished_at"],
                result=coerce_json(row["result"]),
                error_summary=row["error_summary"],
            )
            for row in rows
        ]


class TemplateTaskStore:
    """
    Which kickoff template items already have a tracker issue, per project.

    Rows are claimed before the tracker call: ``reserve`` returns True for
    exactly one caller per ``(project_key, template_task_key)`` unless the row
    is ``failed`` or its ``pending`` claim is older than ``lease_sec``.
    """

    def __init__(self, *, pool, schema: str = DEFAULT_SCHEMA) -> None:
        self._pool = pool
        self._schema = quote_schema(schema)

    async def get(self, project_key: str, template_task_key: str) -> TemplateTaskRecord | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT project_key, template_task_key, template_version, status, external_issue_id,
                       draft_id, attempt_id, claimed_at, created_at
                FROM {self._schema}.project_template_tasks
                WHERE project_key=$1 AND template_task_key=$2;
                """,
                project_key,
                template_task_key,
            )
        if not row:
            return None
        return TemplateTaskRecord(
            project_key=str(row["project_key"]),
            template_task_key=str(row["template_task_key"]),
            template_version=str(row["template_version"]),
            status=TemplateTaskStatus(str(row["status"])),
            external_issue_id=row["external_issue_id"],
            draft_id=row["draft_id"],
            attempt_id=row["attempt_id"],
            claimed_at=row["claimed_at"],
            created_at=row["created_at"],
        )

    async def reserve(
        self,
        *,
        project_key: str,
        template_task_key: str,
        template_version: str,
        draft_id: uuid.UUID,
        attempt_id: uuid.UUID,
        lease_sec: float,
    ) -> bool:
        table = f"{self._schema}.project_template_tasks"
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO {table} (
                  project_key, template_task_key, template_version, status, external_issue_id,
                  draft_id, attempt_id, claimed_at, created_at, updated_at
                ) VALUES ($1,$2,$3,'pending',NULL,$4,$5,now(),now(),now())
                ON CONFLICT (project_key, template_task_key) DO UPDATE
                  SET status='pending',
                      template_version=EXCLUDED.template_version,
                      draft_id=EXCLUDED.draft_id,
                      attempt_id=EXCLUDED.attempt_id,
                      claimed_at=now(),
                      updated_at=now()
                  WHERE {table}.status='failed'
                     OR ({table}.status='pending' AND {table}.claimed_at < now() - make_interval(secs => $6))
                RETURNING project_key;
                """,
                project_key,
                template_task_key,
                template_version,
                draft_id,
                attempt_id,
                float(lease_sec),
            )
        return row is not None

    async def complete(
        self,
        *,
        project_key: str,
        template_task_key: str,
        attempt_id: uuid.UUID,
        external_issue_id: str | None,
    ) -> bool:
        """Mark a claimed row created. False when the claim was lost to another run."""
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE {self._schema}.project_template_tasks
                SET status='created', external_issue_id=$4, updated_at=now()
                WHERE project_key=$1 AND template_task_key=$2 AND attempt_id=$3 AND status='pending'
                RETURNING project_key;
                """,
                project_key,
                template_task_key,
                attempt_id,
                external_issue_id,
            )
        return row is not None

    async def release(self, *, project_key: str, template_task_key: str, attempt_id: uuid.UUID) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(
                f"""
                UPDATE {self._schema}.project_template_tasks
                SET status='failed', updated_at=now()
                WHERE project_key=$1 AND template_task_key=$2 AND attempt_id=$3 AND status='pending';
                """,
                project_key,
                template_task_key,
                attempt_id,
            )
