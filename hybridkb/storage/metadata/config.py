"""
Metadata Store Configuration
============================

SQLite (aiosqlite) settings for documents, chunks, the FTS index and the
KAG tables.

Environment Variables:
    HYBRIDKB_DB_PATH: SQLite file path (default: data/hybridkb.db)
    HYBRIDKB_DB_ECHO: Log SQL statements ("true"/"false", default: false)
"""

import os
from dataclasses import dataclass, field


def _get_env_str(key: str, default: str) -> str:
    """Read environment variable as string."""
    return os.environ.get(key, default)


@dataclass
class MetadataStoreConfig:
    """
    Configuration for the relational metadata store.

    Attributes:
        database_path: SQLite file path, or ":memory:"
        echo: Echo SQL (debugging)
    """
    database_path: str = field(default_factory=lambda: _get_env_str("HYBRIDKB_DB_PATH", "data/hybridkb.db"))
    echo: bool = field(default_factory=lambda: _get_env_str("HYBRIDKB_DB_ECHO", "false").lower() == "true")

    @property
    def is_memory(self) -> bool:
        return self.database_path == ":memory:"

    def get_connection_string(self) -> str:
        """Async SQLite connection string."""
        if self.is_memory:
            return "sqlite+aiosqlite://"
        return f"sqlite+aiosqlite:///{self.database_path}"

    @classmethod
    def from_environment(cls, env_config) -> "MetadataStoreConfig":
        """Configuration bound to an EnvironmentConfig."""
        return cls(database_path=env_config.database_path)

    @classmethod
    def for_test(cls) -> "MetadataStoreConfig":
        """In-memory database for tests."""
        return cls(database_path=":memory:", echo=False)
