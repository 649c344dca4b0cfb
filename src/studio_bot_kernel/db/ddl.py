from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

DEFAULT_SCHEMA = "bot"

_IDENT_RE = re.compile(r"^[a-z_][a-z0-9_]{0,62}$")


@dataclass(frozen=True)
class Migration:
    name: str
    statements: tuple[str, ...]


# Applied in order; names are recorded in <schema>.schema_migrations and never reused.
MIGRATIONS: tuple[Migration, ...] = (
    Migration(
        name="0001_drafts_and_ledger",
        statements=(
            """
            CREATE TABLE IF NOT EXISTS {schema}.drafts (
              id                 UUID         PRIMARY KEY,
              author_id          TEXT         NOT NULL,
              origin_channel_id  TEXT         NOT NULL,
              status             TEXT         NOT NULL DEFAULT 'DRAFT',
              actions            JSONB        NOT NULL,
              source_text        TEXT         NULL,
              summary            TEXT         NULL,
              created_at         TIMESTAMPTZ  NOT NULL DEFAULT now(),
              updated_at         TIMESTAMPTZ  NOT NULL DEFAULT now(),
              expires_at         TIMESTAMPTZ  NOT NULL,
              CONSTRAINT drafts_status_ck CHECK (status IN ('DRAFT','APPLIED','CANCELLED'))
            );
            """,
            """
            CREATE INDEX IF NOT EXISTS drafts_author_created
              ON {schema}.drafts (author_id, created_at DESC);
            """,
            """
            CREATE TABLE IF NOT EXISTS {schema}.idempotency_keys (
              token          TEXT         PRIMARY KEY,
              draft_id       UUID         NULL,
              status         TEXT         NOT NULL DEFAULT 'claimed',
              attempt_count  INT          NOT NULL DEFAULT 1,
              created_at     TIMESTAMPTZ  NOT NULL DEFAULT now(),
              updated_at     TIMESTAMPTZ  NOT NULL DEFAULT now(),
              CONSTRAINT idempotency_keys_status_ck CHECK (status IN ('claimed','succeeded','failed'))
            );
            """,
            """
            CREATE TABLE IF NOT EXISTS {schema}.draft_apply_attempts (
              id                 UUID         PRIMARY KEY,
              draft_id           UUID         NOT NULL REFERENCES {schema}.drafts(id),
              idempotency_token  TEXT         NOT NULL,
              attempt_no         INT          NOT NULL,
              started_at         TIMESTAMPTZ  NOT NULL DEFAULT now(),
              finished_at        TIMESTAMPTZ  NULL,
              result             JSONB        NULL,
              result_hash        BYTEA        NULL,
              error_summary      TEXT         NULL,
              CONSTRAINT draft_apply_attempts_token_attempt_uq UNIQUE (idempotency_token, attempt_no)
            );
            """,
            """
            CREATE INDEX IF NOT EXISTS draft_apply_attempts_draft
              ON {schema}.draft_apply_attempts (draft_id, started_at DESC);
            """,
        ),
    ),
    Migration(
        name="0002_template_tasks",
        statements=(
            """
            CREATE TABLE IF NOT EXISTS {schema}.project_template_tasks (
              project_key         TEXT         NOT NULL,
              template_task_key   TEXT         NOT NULL,
              external_issue_id   TEXT         NULL,
              draft_id            UUID         NULL,
              template_version    TEXT         NOT NULL,
              created_at          TIMESTAMPTZ  NOT NULL DEFAULT now(),
              PRIMARY KEY (project_key, template_task_key)
            );
            """,
        ),
    ),
    Migration(
        name="0003_audit_and_settings",
        statements=(
            """
            CREATE TABLE IF NOT EXISTS {schema}.audit_log (
              id            BIGINT       GENERATED ALWAYS AS IDENTITY PRIMARY KEY,
              draft_id      UUID         NULL,
              actor_id      TEXT         NULL,
              level         TEXT         NOT NULL,
              event_type    TEXT         NOT NULL,
              payload       JSONB        NOT NULL DEFAULT '{{}}'::jsonb,
              payload_hash  BYTEA        NOT NULL,
              created_at    TIMESTAMPTZ  NOT NULL DEFAULT now()
            );
            """,
            """
            CREATE INDEX IF NOT EXISTS audit_log_draft_created
              ON {schema}.audit_log (draft_id, created_at DESC);
            """,
            """
            CREATE TABLE IF NOT EXISTS {schema}.settings (
              key         TEXT         PRIMARY KEY,
              value       JSONB        NOT NULL,
              updated_at  TIMESTAMPTZ  NOT NULL DEFAULT now()
            );
            """,
        ),
    ),
    Migration(
        name="0004_template_task_claims",
        statements=(
            """
            ALTER TABLE {schema}.project_template_tasks
              ADD COLUMN IF NOT EXISTS status      TEXT         NOT NULL DEFAULT 'created',
              ADD COLUMN IF NOT EXISTS attempt_id  UUID         NULL,
              ADD COLUMN IF NOT EXISTS claimed_at  TIMESTAMPTZ  NULL,
              ADD COLUMN IF NOT EXISTS updated_at  TIMESTAMPTZ  NOT NULL DEFAULT now();
            """,
            """
            ALTER TABLE {schema}.project_template_tasks
              DROP CONSTRAINT IF EXISTS project_template_tasks_status_ck;
            """,
            """
            ALTER TABLE {schema}.project_template_tasks
              ADD CONSTRAINT project_template_tasks_status_ck CHECK (status IN ('pending','created','failed'));
            """,
        ),
    ),
)


def quote_schema(schema: str) -> str:
    """Validate a schema name before it is interpolated into SQL."""
    if not _IDENT_RE.match(schema or ""):
        raise ValueError(f"invalid schema name: {schema!r}")
    return schema


def migration_statements(migration: Migration, schema: str = DEFAULT_SCHEMA) -> list[str]:
    name = quote_schema(schema)
    return list(_compact_statements(stmt.format(schema=name) for stmt in migration.statements))


def bootstrap_statements(schema: str = DEFAULT_SCHEMA) -> list[str]:
    name = quote_schema(schema)
    return [
        f"CREATE SCHEMA IF NOT EXISTS {name};",
        f"""
        CREATE TABLE IF NOT EXISTS {name}.schema_migrations (
          name        TEXT         PRIMARY KEY,
          applied_at  TIMESTAMPTZ  NOT NULL DEFAULT now()
        );
        """.strip(),
    ]


async def apply_migrations(pool, *, schema: str = DEFAULT_SCHEMA) -> list[str]:
    """Apply pending migrations, each in its own transaction. Returns the names applied."""
    name = quote_schema(schema)
    applied_now: list[str] = []
    async with pool.acquire() as conn:
        for stmt in bootstrap_statements(name):
            await conn.execute(stmt)
        rows = await conn.fetch(f"SELECT name FROM {name}.schema_migrations;")
        applied = {str(row["name"]) for row in rows}

        for migration in MIGRATIONS:
            if migration.name in applied:
                continue
            async with conn.transaction():
                for stmt in migration_statements(migration, name):
                    await conn.execute(stmt)
                await conn.execute(
                    f"INSERT INTO {name}.schema_migrations (name) VALUES ($1);",
                    migration.name,
                )
            applied_now.append(migration.name)
    return applied_now


def _compact_statements(statements: Iterable[str]) -> Iterable[str]:
    for stmt in statements:
        cleaned = stmt.strip()
        if not cleaned:
            continue
        yield cleaned
