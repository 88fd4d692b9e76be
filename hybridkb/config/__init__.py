"""
Configuration module for hybridkb.
"""

from .environments import (
    EnvironmentConfig,
    Environment,
    get_environment_config,
    get_current_environment,
    set_current_environment,
    TEST_ENV,
    PROD_ENV,
)
from .tuning import (
    SearchTuning,
    StrategyWeights,
    load_search_tuning,
    clear_tuning_cache,
)

__all__ = [
    "EnvironmentConfig",
    "Environment",
    "get_environment_config",
    "get_current_environment",
    "set_current_environment",
    "TEST_ENV",
    "PROD_ENV",
    "SearchTuning",
    "StrategyWeights",
    "load_search_tuning",
    "clear_tuning_cache",
]
