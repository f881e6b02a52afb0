"""Infrastructure layer - external services, databases, and configuration."""

from leadsync.infrastructure.settings import Settings, get_settings
from leadsync.infrastructure.sqlite import SQLiteClient, get_sqlite_client


# Pipeline wiring (lazy import to avoid circular deps)
def get_pipeline(*args, **kwargs):
    """Get the process-wide pipeline (lazy import)."""
    from leadsync.infrastructure.wiring import get_pipeline as _get
    return _get(*args, **kwargs)


__all__ = [
    # Settings
    "Settings",
    "get_settings",
    # SQLite (local)
    "SQLiteClient",
    "get_sqlite_client",
    # Wiring
    "get_pipeline",
]
