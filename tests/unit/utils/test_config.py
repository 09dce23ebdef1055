"""Tests for utils.config module and the dependency container."""

import copy

import pytest
import yaml
from dependency_injector import providers

from news_personalizer.container import Container
from news_personalizer.errors import ValidationError
from news_personalizer.utils.config import (
    DEFAULT_CONFIG,
    ENV_MAPPINGS,
    create_config_from_template,
    create_data_directories,
    deep_merge,
    load_config,
    redact_secrets,
    save_config,
    validate_config,
)

from helpers import KeywordEmbeddingsClient, make_article


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for env_var in ENV_MAPPINGS:
        monkeypatch.delenv(env_var, raising=False)
    # keep the config search away from any developer config file
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))


class TestLoadConfig:
    def test_defaults_without_config_file(self) -> None:
        assert load_config() == DEFAULT_CONFIG

    def test_config_file_found_in_working_directory(self, tmp_path) -> None:
        (tmp_path / "config").mkdir()
        (tmp_path / "config" / "config.yaml").write_text(
            yaml.safe_dump({"vector_index": {"max_results": 70}})
        )

        config = load_config()

        assert config["vector_index"]["max_results"] == 70
        assert config["vector_index"]["oversample_factor"] == 5

    def test_config_file_found_in_home(self, tmp_path) -> None:
        home_config = tmp_path / "home" / ".news_personalizer" / "config.yaml"
        home_config.parent.mkdir(parents=True)
        home_config.write_text(yaml.safe_dump({"ranking": {"candidate_multiplier": 4}}))

        assert load_config()["ranking"]["candidate_multiplier"] == 4

    def test_file_values_merged_over_defaults(self, tmp_path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"chunking": {"max_chunk_size": 500}}))

        config = load_config(path)

        assert config["chunking"]["max_chunk_size"] == 500
        assert config["chunking"]["overlap_size"] == 100
        assert config["embeddings"]["provider"] == "huggingface"

    def test_missing_explicit_file_rejected(self, tmp_path) -> None:
        with pytest.raises(ValidationError):
            load_config(tmp_path / "missing.yaml")

    def test_non_mapping_file_rejected(self, tmp_path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ValidationError):
            load_config(path)

    def test_env_overrides(self, monkeypatch) -> None:
        monkeypatch.setenv("NEWS_MAX_CHUNK_SIZE", "800")
        monkeypatch.setenv("NEWS_SIMILARITY_THRESHOLD", "0.25")
        monkeypatch.setenv("GEMINI_API_KEY", "secret-key")

        config = load_config()

        assert config["chunking"]["max_chunk_size"] == 800
        assert config["vector_index"]["similarity_threshold"] == 0.25
        assert config["embeddings"]["gemini"]["api_key"] == "secret-key"

    def test_bad_env_value_rejected(self, monkeypatch) -> None:
        monkeypatch.setenv("NEWS_MAX_RESULTS", "lots")
        with pytest.raises(ValidationError):
            load_config()

    def test_defaults_not_mutated(self, monkeypatch) -> None:
        monkeypatch.setenv("NEWS_MAX_CHUNK_SIZE", "800")
        load_config()
        assert DEFAULT_CONFIG["chunking"]["max_chunk_size"] == 1000


class TestDeepMerge:
    def test_nested_merge(self) -> None:
        base = {"a": {"b": 1, "c": 2}, "d": 3}
        merged = deep_merge(base, {"a": {"c": 20}, "e": 5})

        assert merged == {"a": {"b": 1, "c": 20}, "d": 3, "e": 5}
        assert base == {"a": {"b": 1, "c": 2}, "d": 3}

    def test_non_dict_replaces(self) -> None:
        assert deep_merge({"a": {"b": 1}}, {"a": None}) == {"a": None}


class TestValidateConfig:
    def test_defaults_valid(self) -> None:
        assert validate_config(copy.deepcopy(DEFAULT_CONFIG))

    def test_missing_section(self) -> None:
        config = copy.deepcopy(DEFAULT_CONFIG)
        del config["learning"]
        assert not validate_config(config)

    @pytest.mark.parametrize(
        "section, key, value",
        [
            ("chunking", "max_chunk_size", 50),
            ("chunking", "overlap_size", 5000),
            ("embeddings", "provider", "openai"),
            ("embeddings", "batch_size", 0),
            ("vector_index", "similarity_threshold", 2.0),
            ("ranking", "recency_half_life_hours", 0),
        ],
    )
    def test_invalid_values(self, section, key, value) -> None:
        config = copy.deepcopy(DEFAULT_CONFIG)
        config[section][key] = value
        assert not validate_config(config)

    def test_invalid_weights(self) -> None:
        config = copy.deepcopy(DEFAULT_CONFIG)
        config["ranking"]["weights"]["recency"] = -1
        assert not validate_config(config)


class TestSaveConfig:
    def test_secrets_redacted(self, tmp_path) -> None:
        config = copy.deepcopy(DEFAULT_CONFIG)
        config["embeddings"]["gemini"]["api_key"] = "secret-key"
        path = tmp_path / "out" / "config.yaml"

        save_config(config, path)

        saved = yaml.safe_load(path.read_text())
        assert saved["embeddings"]["gemini"]["api_key"] == ""
        assert saved["chunking"] == config["chunking"]
        assert config["embeddings"]["gemini"]["api_key"] == "secret-key"

    def test_redact_secrets_nested(self) -> None:
        assert redact_secrets({"a": {"api_key": "x", "model": "m"}}) == {
            "a": {"api_key": "", "model": "m"}
        }

    def test_template_written(self, tmp_path) -> None:
        path = tmp_path / "config.yaml"

        merged = create_config_from_template("production", path)

        assert merged["embeddings"]["provider"] == "gemini"
        assert merged["chunking"]["max_chunk_size"] == 1000
        assert load_config(path)["vector_index"]["max_results"] == 100

    def test_unknown_template(self, tmp_path) -> None:
        with pytest.raises(ValidationError):
            create_config_from_template("staging", tmp_path / "config.yaml")

    def test_create_data_directories(self, tmp_path) -> None:
        config = copy.deepcopy(DEFAULT_CONFIG)
        config["vector_index"]["db_path"] = str(tmp_path / "data" / "index")

        create_data_directories(config)

        assert (tmp_path / "data" / "index").is_dir()


class TestContainer:
    def test_pipeline_wired_from_config(self, tmp_path) -> None:
        config = copy.deepcopy(DEFAULT_CONFIG)
        config["vector_index"]["db_path"] = str(tmp_path / "index")
        config["embeddings"]["expected_dimensions"] = KeywordEmbeddingsClient.dimensions
        config["embeddings"]["retry_delay"] = 0.0
        container = Container()
        container.config.from_dict(config)
        container.embeddings_client.override(providers.Object(KeywordEmbeddingsClient()))

        pipeline = container.pipeline()
        summary = pipeline.ingest_articles(
            [make_article("a1", "AI labs shipped new AI models this week.")]
        )

        assert summary.chunks_inserted == 1
        assert pipeline.vector_index is container.vector_index()
        assert pipeline.vector_index.storage.exists()
        assert pipeline.ranker.weights.relevance == 0.4
        assert pipeline.preference_service.learner.config.min_interactions_for_learning == 5
        assert pipeline.search("ai", k=1).results[0].chunk.article_id == "a1"
