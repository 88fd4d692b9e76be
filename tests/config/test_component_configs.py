"""
Test Component Configuration
============================

Env-driven dataclass configs: extraction, retrieval, graph, vectors, metadata.
"""

import os
from unittest.mock import patch

import pytest

from hybridkb.errors import ConfigurationError, InvalidGraphBackendError, InvalidProviderError
from hybridkb.kag.config import ExtractionConfig
from hybridkb.retrieval.config import RetrievalConfig
from hybridkb.storage.graph import FalkorDBConfig
from hybridkb.storage.metadata import MetadataStoreConfig
from hybridkb.storage.vectors import QdrantConfig


class TestExtractionConfig:
    """KAG extraction settings."""

    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            config = ExtractionConfig()

        assert config.enabled is True
        assert config.provider == "ollama"
        assert config.confidence_threshold == 0.7
        assert config.max_entities_per_chunk == 20
        assert config.max_relations_per_chunk == 50
        assert config.num_workers == 2

    def test_env_overrides(self):
        """Environment variables feed every field."""
        env = {
            "KAG_PROVIDER": "OpenAI",
            "OPENAI_API_KEY": "sk-test",
            "KAG_CONFIDENCE_THRESHOLD": "0.5",
            "KAG_WORKERS": "4",
            "KAG_ENABLED": "false",
        }
        with patch.dict(os.environ, env, clear=True):
            config = ExtractionConfig()

        assert config.provider == "openai"
        assert config.openai_api_key == "sk-test"
        assert config.confidence_threshold == 0.5
        assert config.num_workers == 4
        assert config.enabled is False

    def test_unknown_provider_rejected(self):
        with pytest.raises(InvalidProviderError):
            ExtractionConfig(provider="gemini")

    def test_threshold_bounds(self):
        with pytest.raises(ConfigurationError):
            ExtractionConfig(confidence_threshold=1.5)

    def test_non_positive_limits_rejected(self):
        with pytest.raises(ConfigurationError):
            ExtractionConfig(max_entities_per_chunk=0)
        with pytest.raises(ConfigurationError):
            ExtractionConfig(queue_size=0)

    def test_to_dict_masks_keys(self):
        """API keys never appear in the serialized view."""
        config = ExtractionConfig(openai_api_key="sk-secret", anthropic_api_key=None)
        data = config.to_dict()

        assert data["openai_api_key"] == "***"
        assert data["anthropic_api_key"] is None
        assert "sk-secret" not in str(data)


class TestRetrievalConfig:
    """Search budgets."""

    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            config = RetrievalConfig()

        assert config.deadline_ms == 5000
        assert config.deadline_s == 5.0
        assert config.semantic_min_score == 0.3
        assert config.enable_semantic is True

    def test_env_overrides(self):
        env = {"RETRIEVAL_DEADLINE_MS": "800", "RETRIEVAL_ENABLE_SEMANTIC": "false"}
        with patch.dict(os.environ, env, clear=True):
            config = RetrievalConfig()

        assert config.deadline_ms == 800
        assert config.enable_semantic is False

    def test_non_positive_budget_rejected(self):
        with pytest.raises(ValueError):
            RetrievalConfig(lexical_timeout_ms=0)

    def test_for_test(self):
        config = RetrievalConfig.for_test()

        assert config.deadline_ms == 2000
        assert config.semantic_min_score == 0.0


class TestStoreConfigs:
    """Graph, vector and metadata store settings."""

    def test_graph_backend_validated(self):
        """Only falkordb and sqlite backends exist."""
        assert FalkorDBConfig(backend="sqlite").backend == "sqlite"
        with pytest.raises(InvalidGraphBackendError):
            FalkorDBConfig(backend="neo4j")

    def test_graph_env(self):
        env = {"FALKORDB_HOST": "graph.internal", "FALKORDB_PORT": "6399", "FALKORDB_PASSWORD": ""}
        with patch.dict(os.environ, env, clear=True):
            config = FalkorDBConfig()

        assert config.host == "graph.internal"
        assert config.port == 6399
        assert config.password is None

    def test_qdrant_vector_size_validated(self):
        with pytest.raises(ValueError):
            QdrantConfig(vector_size=0)

    def test_metadata_memory_connection_string(self):
        config = MetadataStoreConfig.for_test()

        assert config.is_memory
        assert config.get_connection_string() == "sqlite+aiosqlite://"

    def test_metadata_file_connection_string(self):
        config = MetadataStoreConfig(database_path="data/kb.db")

        assert config.get_connection_string() == "sqlite+aiosqlite:///data/kb.db"
