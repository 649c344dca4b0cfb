from __future__ import annotations

import uuid


def confirm_token(draft_id: uuid.UUID | str, confirmation_event_id: str) -> str:
    return f"confirm:{draft_id}:{confirmation_event_id}"


def apply_token(draft_id: uuid.UUID | str) -> str:
    return f"apply:{draft_id}"


def callback_token(callback_query_id: str) -> str:
    return f"tg:callback:{callback_query_id}"


def parse_uuid(value: object) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    if not isinstance(value, str):
        return None
    try:
        return uuid.UUID(value.strip())
    except ValueError:
        return None
