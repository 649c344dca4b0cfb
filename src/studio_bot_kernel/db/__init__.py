from .ddl import DEFAULT_SCHEMA, MIGRATIONS, Migration, apply_migrations, quote_schema
from .settings_store import SettingsStore

__all__ = [
    "DEFAULT_SCHEMA",
    "MIGRATIONS",
    "Migration",
    "apply_migrations",
    "quote_schema",
    "SettingsStore",
]
