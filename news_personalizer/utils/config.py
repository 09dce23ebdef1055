# news_personalizer/utils/config.py

import copy
import os
from pathlib import Path
from typing import Any
import logging

import yaml

from news_personalizer.errors import ValidationError

logger = logging.getLogger(__name__)

CONFIG_SEARCH_PATHS = [
    "./config/config.yaml",
    "./config.yaml",
    "~/.news_personalizer/config.yaml",
]

DEFAULT_CONFIG: dict[str, Any] = {
    "chunking": {
        "max_chunk_size": 1000,
        "min_chunk_size": 200,
        "overlap_size": 100,
        "preserve_context": True,
        "min_word_count": 3,
        "min_vocabulary_diversity": 0.2,
    },
    "ingestion": {"enable_validation": True},
    "embeddings": {
        "provider": "huggingface",
        "batch_size": 10,
        "max_retries": 3,
        "retry_delay": 1.0,
        "expected_dimensions": 384,
        "validate_embeddings": True,
        "max_workers": 2,
        "batch_timeout": 30.0,
        "huggingface": {"model_name": "sentence-transformers/all-MiniLM-L6-v2"},
        "gemini": {"api_key": "", "model": "gemini-embedding-001", "dimensions": 768},
    },
    "vector_index": {
        "similarity_threshold": 0.1,
        "max_results": 50,
        "oversample_factor": 5,
        "dimensions": None,
        "db_path": "./data/index",
        "chunks_table": "chunks",
        "manifest_table": "manifest",
    },
    "learning": {
        "min_interactions_for_learning": 5,
        "promote_threshold": 3,
        "promote_min_ratio": 0.6,
        "demote_threshold": 3,
        "demote_ratio": 3.0,
        "max_interaction_history": 1000,
        "max_topics": 10,
        "max_preferred_sources": 8,
        "max_excluded_sources": 5,
        "max_excluded_categories": 10,
        "category_learning_enabled": True,
        "source_learning_enabled": True,
        "topic_learning_enabled": True,
    },
    "ranking": {
        "weights": {
            "relevance": 0.4,
            "topic_match": 0.3,
            "recency": 0.2,
            "source_preference": 0.1,
        },
        "recency_half_life_hours": 24.0,
        "candidate_multiplier": 3,
    },
    "pipeline": {"persist_on_ingest": True},
}

ENV_MAPPINGS: dict[str, tuple[list[str], type]] = {
    # Chunking settings
    "NEWS_MAX_CHUNK_SIZE": (["chunking", "max_chunk_size"], int),
    "NEWS_MIN_CHUNK_SIZE": (["chunking", "min_chunk_size"], int),
    "NEWS_CHUNK_OVERLAP": (["chunking", "overlap_size"], int),
    # Embedding settings
    "NEWS_EMBEDDINGS_PROVIDER": (["embeddings", "provider"], str),
    "NEWS_EMBEDDING_BATCH_SIZE": (["embeddings", "batch_size"], int),
    "NEWS_EMBEDDING_MAX_RETRIES": (["embeddings", "max_retries"], int),
    "NEWS_EMBEDDING_RETRY_DELAY": (["embeddings", "retry_delay"], float),
    "NEWS_EMBEDDING_DIMENSIONS": (["embeddings", "expected_dimensions"], int),
    "NEWS_EMBEDDING_MAX_WORKERS": (["embeddings", "max_workers"], int),
    "NEWS_EMBEDDING_MODEL": (["embeddings", "huggingface", "model_name"], str),
    "NEWS_GEMINI_MODEL": (["embeddings", "gemini", "model"], str),
    "GEMINI_API_KEY": (["embeddings", "gemini", "api_key"], str),
    # Index settings
    "NEWS_INDEX_PATH": (["vector_index", "db_path"], str),
    "NEWS_SIMILARITY_THRESHOLD": (["vector_index", "similarity_threshold"], float),
    "NEWS_MAX_RESULTS": (["vector_index", "max_results"], int),
    # Learning settings
    "NEWS_MIN_INTERACTIONS": (["learning", "min_interactions_for_learning"], int),
    "NEWS_MAX_INTERACTION_HISTORY": (["learning", "max_interaction_history"], int),
    # Ranking settings
    "NEWS_RECENCY_HALF_LIFE_HOURS": (["ranking", "recency_half_life_hours"], float),
}

SECRET_KEYS = {"api_key"}


def load_config(config_path: str | Path | None = None) -> dict[str, Any]:
    """
    Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to config file. If None, the first existing
            entry of CONFIG_SEARCH_PATHS is used, or the defaults alone.

    Returns:
        Configuration dictionary
    """
    config = copy.deepcopy(DEFAULT_CONFIG)
    path = Path(config_path) if config_path else _find_config_file()

    if path and path.exists():
        with open(path, "r") as f:
            file_config = yaml.safe_load(f) or {}
        if not isinstance(file_config, dict):
            raise ValidationError(f"Config file {path} must contain a mapping")
        config = deep_merge(config, file_config)
        logger.info(f"Loaded configuration from {path}")
    elif config_path:
        raise ValidationError(f"Config file not found: {path}")
    else:
        logger.info("No config file found, using defaults")

    return apply_env_overrides(config)


def _find_config_file() -> Path | None:
    for candidate in CONFIG_SEARCH_PATHS:
        path = Path(candidate).expanduser()
        if path.exists():
            return path
    return None


def deep_merge(base_dict: dict[str, Any], override_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Args:
        base_dict: Base dictionary
        override_dict: Dictionary with override values

    Returns:
        Merged dictionary
    """
    result = base_dict.copy()

    for key, value in override_dict.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    """
    Apply environment variable overrides to configuration.

    Environment variables are named like NEWS_SECTION_KEY, for example
    NEWS_INDEX_PATH=/data/index.
    """
    for env_var, (config_path, cast) in ENV_MAPPINGS.items():
        env_value = os.getenv(env_var)
        if env_value is None:
            continue

        current = config
        for key in config_path[:-1]:
            current = current.setdefault(key, {})

        try:
            current[config_path[-1]] = cast(env_value)
        except ValueError as e:
            raise ValidationError(
                f"Environment variable {env_var} must be {cast.__name__}, got {env_value!r}"
            ) from e

        shown = "***" if config_path[-1] in SECRET_KEYS else env_value
        logger.info(f"Applied environment override: {env_var}={shown}")

    return config


def create_data_directories(config: dict[str, Any]) -> None:
    """Create the local index directory; remote URIs are left alone."""
    db_path = config["vector_index"]["db_path"]
    if "://" in db_path:
        return
    Path(db_path).mkdir(parents=True, exist_ok=True)
    logger.debug(f"Ensured directory exists: {db_path}")


def save_config(config: dict[str, Any], config_path: str | Path = "./config/config.yaml"):
    """
    Save configuration to YAML file. Secrets are blanked out.

    Args:
        config: Configuration dictionary to save
        config_path: Path where to save the config file
    """
    Path(config_path).parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, "w") as f:
        yaml.safe_dump(redact_secrets(config), f, default_flow_style=False, indent=2, sort_keys=False)

    logger.info(f"Configuration saved to {config_path}")


def redact_secrets(config: dict[str, Any]) -> dict[str, Any]:
    redacted = {}
    for key, value in config.items():
        if isinstance(value, dict):
            redacted[key] = redact_secrets(value)
        elif key in SECRET_KEYS:
            redacted[key] = ""
        else:
            redacted[key] = value
    return redacted


def validate_config(config: dict[str, Any]) -> bool:
    """
    Validate configuration values.

    Args:
        config: Configuration dictionary

    Returns:
        True if valid, False otherwise
    """
    required_sections = ["chunking", "embeddings", "vector_index", "learning", "ranking"]
    for section in required_sections:
        if section not in config:
            logger.error(f"Missing required config section: {section}")
            return False

    try:
        chunking = config["chunking"]
        embeddings = config["embeddings"]
        index = config["vector_index"]
        weights = config["ranking"]["weights"]

        if not (100 <= chunking["max_chunk_size"] <= 10000):
            logger.error("max_chunk_size must be between 100 and 10000")
            return False

        if not (0 <= chunking["min_chunk_size"] <= chunking["max_chunk_size"]):
            logger.error("min_chunk_size must be >= 0 and <= max_chunk_size")
            return False

        if not (0 <= chunking["overlap_size"] < chunking["max_chunk_size"]):
            logger.error("overlap_size must be >= 0 and < max_chunk_size")
            return False

        if embeddings["provider"] not in ("huggingface", "gemini"):
            logger.error(f"Unknown embeddings provider: {embeddings['provider']}")
            return False

        if embeddings["batch_size"] < 1 or embeddings["max_workers"] < 1:
            logger.error("batch_size and max_workers must be at least 1")
            return False

        if not (-1.0 <= index["similarity_threshold"] <= 1.0):
            logger.error("similarity_threshold must be between -1.0 and 1.0")
            return False

        if any(w < 0 for w in weights.values()) or sum(weights.values()) <= 0:
            logger.error("ranking weights must be non-negative with a positive sum")
            return False

        if config["ranking"]["recency_half_life_hours"] <= 0:
            logger.error("recency_half_life_hours must be positive")
            return False
    except (KeyError, TypeError) as e:
        logger.error(f"Configuration validation error: {e}")
        return False

    db_path = Path(index["db_path"])
    if db_path.exists() and not os.access(db_path, os.W_OK):
        logger.error(f"Index directory not writable: {db_path}")
        return False

    logger.info("Configuration validation passed")
    return True


# Configuration templates for different deployments
CONFIG_TEMPLATES = {
    "development": {
        "chunking": {"max_chunk_size": 500, "min_chunk_size": 100, "overlap_size": 50},
        "embeddings": {"batch_size": 5, "max_retries": 1, "retry_delay": 0.5},
        "vector_index": {"db_path": "./dev_data/index"},
    },
    "production": {
        "embeddings": {
            "provider": "gemini",
            "expected_dimensions": 768,
            "batch_size": 50,
            "max_workers": 4,
        },
        "vector_index": {"db_path": "/data/index", "max_results": 100},
        "learning": {"min_interactions_for_learning": 10},
    },
}


def create_config_from_template(
    template_name: str, output_path: str | Path = "./config/config.yaml"
) -> dict[str, Any]:
    """
    Create a configuration file from a template.

    Args:
        template_name: Name of the template to use
        output_path: Where to save the configuration file

    Returns:
        The merged configuration that was written
    """
    if template_name not in CONFIG_TEMPLATES:
        raise ValidationError(
            f"Unknown template: {template_name}. Available: {list(CONFIG_TEMPLATES.keys())}"
        )

    merged_config = deep_merge(copy.deepcopy(DEFAULT_CONFIG), CONFIG_TEMPLATES[template_name])
    save_config(merged_config, output_path)

    logger.info(f"Created configuration from template '{template_name}' at {output_path}")
    return merged_config
