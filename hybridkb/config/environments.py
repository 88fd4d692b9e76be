"""
Environment Configuration
=========================

Separates test/prod storage namespaces so experiments never touch
production graphs, collections or databases.

Usage:
    from hybridkb.config import get_environment_config, TEST_ENV, PROD_ENV

    config = get_environment_config(TEST_ENV)
    print(config.falkordb_graph)        # "hybridkb_test_kg"
    print(config.chunk_collection)      # "hybridkb_test_chunks"

    set_current_environment(PROD_ENV)
    print(get_current_environment().name)  # "prod"
"""

import os
from dataclasses import dataclass
from enum import Enum


class Environment(Enum):
    """Available environments."""
    TEST = "test"
    PROD = "prod"


TEST_ENV = Environment.TEST
PROD_ENV = Environment.PROD


@dataclass(frozen=True)
class EnvironmentConfig:
    """
    Storage namespace for one environment.

    Attributes:
        name: Environment name ("test" or "prod")
        falkordb_graph: FalkorDB graph name
        chunk_collection: Qdrant collection holding chunk vectors
        entity_collection: Qdrant collection holding entity vectors
        database_path: SQLite file for documents, chunks and the KAG tables
        description: Human-readable description
    """
    name: str
    falkordb_graph: str
    chunk_collection: str
    entity_collection: str
    database_path: str
    description: str


_ENVIRONMENTS = {
    Environment.TEST: EnvironmentConfig(
        name="test",
        falkordb_graph="hybridkb_test_kg",
        chunk_collection="hybridkb_test_chunks",
        entity_collection="hybridkb_test_entities",
        database_path="data/hybridkb_test.db",
        description="Scratch environment for experiments and integration tests",
    ),
    Environment.PROD: EnvironmentConfig(
        name="prod",
        falkordb_graph="hybridkb_kg",
        chunk_collection="hybridkb_chunks",
        entity_collection="hybridkb_entities",
        database_path="data/hybridkb.db",
        description="Production knowledge base",
    ),
}

# Default to test
_current_environment: Environment = Environment.TEST


def get_environment_config(env: Environment) -> EnvironmentConfig:
    """Get configuration for a specific environment."""
    return _ENVIRONMENTS[env]


def get_current_environment() -> EnvironmentConfig:
    """
    Get configuration for the currently active environment.

    The HYBRIDKB_ENV environment variable ("test" or "prod") takes
    precedence over set_current_environment().
    """
    env_var = os.environ.get("HYBRIDKB_ENV", "").lower()
    if env_var == "prod":
        return _ENVIRONMENTS[Environment.PROD]
    elif env_var == "test":
        return _ENVIRONMENTS[Environment.TEST]

    return _ENVIRONMENTS[_current_environment]


def set_current_environment(env: Environment) -> None:
    """Set the current active environment."""
    global _current_environment
    _current_environment = env
