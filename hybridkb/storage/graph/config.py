"""
Graph Store Configuration
=========================

Settings for the knowledge-graph backend.

Two backends are supported:
- ``falkordb``: FalkorDB (Redis protocol, Cypher) for multi-hop traversal
- ``sqlite``: relational fallback over the kb_relations table

Usage:
    from hybridkb.storage.graph import FalkorDBConfig

    # Default (env vars or defaults)
    config = FalkorDBConfig()

    # Explicit override
    config = FalkorDBConfig(host="localhost", port=6380, graph_name="hybridkb_test_kg")

Environment Variables:
    GRAPH_BACKEND: falkordb | sqlite (default: falkordb)
    FALKORDB_HOST: Server host (default: localhost)
    FALKORDB_PORT: Server port (default: 6380)
    FALKORDB_GRAPH_NAME: Graph name (default: hybridkb_kg)
    FALKORDB_PASSWORD: Password (default: empty)
    FALKORDB_TIMEOUT_MS: Query timeout in ms (default: 5000)
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from hybridkb.errors import InvalidGraphBackendError

GRAPH_BACKENDS = ("falkordb", "sqlite")


def _get_env_str(key: str, default: str) -> str:
    """Read environment variable as string."""
    return os.environ.get(key, default)


def _get_env_int(key: str, default: int) -> int:
    """Read environment variable as int."""
    return int(os.environ.get(key, default))


@dataclass
class FalkorDBConfig:
    """
    FalkorDB connection settings.

    All fields can be overridden through environment variables.

    Attributes:
        backend: Graph backend ("falkordb" or "sqlite")
        host: FalkorDB host
        port: FalkorDB port (6380 for the FalkorDB container)
        graph_name: Graph name
        timeout_ms: Query timeout in milliseconds
        password: Optional password
    """
    backend: str = field(default_factory=lambda: _get_env_str("GRAPH_BACKEND", "falkordb"))
    host: str = field(default_factory=lambda: _get_env_str("FALKORDB_HOST", "localhost"))
    port: int = field(default_factory=lambda: _get_env_int("FALKORDB_PORT", 6380))
    graph_name: str = field(default_factory=lambda: _get_env_str("FALKORDB_GRAPH_NAME", "hybridkb_kg"))
    timeout_ms: int = field(default_factory=lambda: _get_env_int("FALKORDB_TIMEOUT_MS", 5000))
    password: Optional[str] = field(default_factory=lambda: _get_env_str("FALKORDB_PASSWORD", "") or None)

    def __post_init__(self):
        if self.backend not in GRAPH_BACKENDS:
            raise InvalidGraphBackendError(self.backend)

    @classmethod
    def from_environment(cls, env_config) -> "FalkorDBConfig":
        return cls(graph_name=env_config.falkordb_graph)
