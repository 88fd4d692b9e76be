"""
Test Search Tuning
==================

SearchTuning / StrategyWeights validation and YAML loading.
"""

import pytest
from pydantic import ValidationError

from hybridkb.config import SearchTuning, StrategyWeights, clear_tuning_cache, load_search_tuning
from hybridkb.retrieval.models import QueryType


class TestStrategyWeights:
    """Semantic/lexical split."""

    def test_weights_must_sum_to_one(self):
        """A split not summing to 1 is rejected."""
        with pytest.raises(ValidationError):
            StrategyWeights(semantic=0.6, lexical=0.6)

    def test_float_tolerance(self):
        """0.1 + 0.9 style splits pass despite float rounding."""
        weights = StrategyWeights(semantic=0.7, lexical=0.3)
        assert weights.semantic == 0.7


class TestSearchTuning:
    """Defaults and helpers."""

    def test_default_query_weights(self):
        """Every query type has the documented default split."""
        tuning = SearchTuning()

        assert tuning.weights_for(QueryType.EXACT_QUOTE).lexical == 0.9
        assert tuning.weights_for(QueryType.ENTITY).semantic == 0.4
        assert tuning.weights_for(QueryType.CONCEPTUAL).semantic == 0.8
        assert tuning.weights_for(QueryType.FACTUAL).semantic == 0.5
        assert tuning.weights_for("exploratory").semantic == 0.7

    def test_partial_query_weights_are_merged(self):
        """Overriding one query type keeps the others at their defaults."""
        tuning = SearchTuning(query_weights={"factual": {"semantic": 0.3, "lexical": 0.7}})

        assert tuning.weights_for(QueryType.FACTUAL).semantic == 0.3
        assert tuning.weights_for(QueryType.CONCEPTUAL).semantic == 0.8

    def test_unknown_query_type_rejected(self):
        """Query types outside the closed set are a configuration error."""
        with pytest.raises(ValidationError):
            SearchTuning(query_weights={"gossip": {"semantic": 0.5, "lexical": 0.5}})

    def test_candidate_limit(self):
        """Over-retrieval is limit * multiplier with a floor."""
        tuning = SearchTuning()

        assert tuning.candidate_limit(5) == 30
        assert tuning.candidate_limit(20) == 60

    def test_out_of_range_values_rejected(self):
        """Bounded fields are validated."""
        with pytest.raises(ValidationError):
            SearchTuning(mmr_lambda=1.5)
        with pytest.raises(ValidationError):
            SearchTuning(rrf_k=-1)


class TestLoadSearchTuning:
    """YAML loading and caching."""

    def test_packaged_yaml_matches_defaults(self):
        """The shipped search_tuning.yaml carries the default values."""
        tuning = load_search_tuning()

        assert tuning.rrf_k == 60
        assert tuning.agreement_bonus == pytest.approx(0.2)
        assert tuning.mmr_lambda == pytest.approx(0.7)
        assert tuning.weights_for("conceptual").semantic == pytest.approx(0.8)

    def test_missing_file_falls_back_to_defaults(self, tmp_path):
        """A missing file never prevents startup."""
        tuning = load_search_tuning(tmp_path / "missing.yaml")

        assert tuning == SearchTuning()

    def test_custom_file_and_cache(self, tmp_path):
        """Values come from the file and are cached until reload."""
        path = tmp_path / "tuning.yaml"
        path.write_text("search:\n  rrf_k: 10\n  agreement_bonus: 0.5\n")

        first = load_search_tuning(path)
        assert first.rrf_k == 10
        assert first.agreement_bonus == 0.5

        path.write_text("search:\n  rrf_k: 20\n")
        assert load_search_tuning(path) is first
        assert load_search_tuning(path, reload=True).rrf_k == 20

    def test_clear_cache(self, tmp_path):
        """clear_tuning_cache forces a fresh read."""
        path = tmp_path / "tuning.yaml"
        path.write_text("rrf_k: 5\n")
        first = load_search_tuning(path)

        clear_tuning_cache()

        assert load_search_tuning(path) is not first

    def test_invalid_file_raises(self, tmp_path):
        """Invalid values surface as validation errors, not silent defaults."""
        path = tmp_path / "tuning.yaml"
        path.write_text("search:\n  query_weights:\n    entity:\n      semantic: 0.9\n      lexical: 0.9\n")

        with pytest.raises(ValidationError):
            load_search_tuning(path)
