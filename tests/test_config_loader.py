"""
Tests for configuration loading.
"""

import pytest

from capsync.config_loader import DEFAULT_CONFIG, PROVIDER_ENV_VAR, ConfigLoader, deep_merge
from capsync.exceptions import ConfigurationError


class TestConfigLoader:
    """Tests for ConfigLoader.load_config."""

    def test_defaults_without_file(self):
        config = ConfigLoader().load_config(None, environ={})

        assert config == DEFAULT_CONFIG
        assert config is not DEFAULT_CONFIG

    def test_file_merges_over_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("temp_dir: /scratch\nsegmentation:\n  sentence_chunk_limit: 3\n", encoding="utf-8")

        config = ConfigLoader().load_config(str(path), environ={})

        assert config["temp_dir"] == "/scratch"
        assert config["segmentation"]["sentence_chunk_limit"] == 3
        assert config["segmentation"]["words_per_second"] == 2.5
        assert config["render"]["crf"] == 23

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("", encoding="utf-8")

        assert ConfigLoader().load_config(str(path), environ={}) == DEFAULT_CONFIG

    def test_environment_overrides(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("transcription:\n  provider: local\n", encoding="utf-8")
        environ = {PROVIDER_ENV_VAR: "assemblyai", "ASSEMBLYAI_API_KEY": "from-env", "HF_API_TOKEN": ""}

        config = ConfigLoader().load_config(str(path), environ=environ)

        assert config["transcription"]["provider"] == "assemblyai"
        assert config["transcription"]["assemblyai_api_key"] == "from-env"
        assert config["transcription"]["huggingface_api_token"] is None

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ConfigLoader().load_config(str(tmp_path / "missing.yaml"))

    def test_directory_path(self, tmp_path):
        with pytest.raises(ConfigurationError):
            ConfigLoader().load_config(str(tmp_path))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("render: [unclosed\n", encoding="utf-8")

        with pytest.raises(ConfigurationError):
            ConfigLoader().load_config(str(path))

    def test_root_must_be_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- one\n- two\n", encoding="utf-8")

        with pytest.raises(ConfigurationError):
            ConfigLoader().load_config(str(path))


class TestDeepMerge:
    """Tests for nested merging."""

    def test_does_not_mutate_inputs(self):
        base = {"a": {"b": 1, "c": 2}}

        merged = deep_merge(base, {"a": {"b": 5}})

        assert merged == {"a": {"b": 5, "c": 2}}
        assert base == {"a": {"b": 1, "c": 2}}
