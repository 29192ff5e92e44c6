"""Handles loading configuration from YAML files."""

import copy
import logging
import os
from typing import Any, Dict, Mapping, Optional

import yaml

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Single deployment-level switch for the transcription backend
PROVIDER_ENV_VAR = "CAPSYNC_TRANSCRIPTION_PROVIDER"

DEFAULT_CONFIG: Dict[str, Any] = {
    "temp_dir": "temp",
    "output_dir": "outputs",
    "upload_dir": "uploads",
    "log_dir": "logs",
    "log_file": "capsync.log",
    "ffmpeg_path": None,
    "ffprobe_path": None,
    "device": "cpu",
    "transcription": {
        "provider": "local",
        "language": "en",
        "local_model": "openai/whisper-small",
        "whisper_model": "small",
        "whisper_fp16": False,
        "assemblyai_api_key": None,
        "assemblyai_base_url": "https://api.assemblyai.com",
        "assemblyai_speech_model": "universal",
        "poll_interval_seconds": 3.0,
        "huggingface_api_token": None,
        "huggingface_model": "openai/whisper-large-v3",
        "huggingface_base_url": "https://api-inference.huggingface.co",
        "request_timeout_seconds": 120.0,
    },
    "segmentation": {
        "sentence_chunk_limit": 2,
        "estimation_word_limit": 5,
        "words_per_second": 2.5,
        "terminal_punctuation": None,  # None -> built-in set
    },
    "render": {
        "video_codec": "libx264",
        "preset": "fast",
        "crf": 23,
        "audio_codec": "aac",
        "audio_bitrate": "128k",
        "max_diagnostic_chars": 2000,
    },
    "timeouts": {
        "extraction_seconds": 600,
        "transcription_seconds": 1800,
        "render_seconds": 3600,
    },
}

# Environment variables that override individual settings
ENV_OVERRIDES = {
    PROVIDER_ENV_VAR: ("transcription", "provider"),
    "ASSEMBLYAI_API_KEY": ("transcription", "assemblyai_api_key"),
    "HF_API_TOKEN": ("transcription", "huggingface_api_token"),
    "CAPSYNC_LOCAL_MODEL": ("transcription", "local_model"),
    "CAPSYNC_TEMP_DIR": ("temp_dir",),
    "CAPSYNC_OUTPUT_DIR": ("output_dir",),
}


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """Returns a copy of `base` with `override` merged in, recursing into nested mappings."""
    merged = copy.deepcopy(dict(base))
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def apply_env_overrides(config: Dict[str, Any], environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Applies the environment variables listed in ENV_OVERRIDES onto `config` in place."""
    environ = os.environ if environ is None else environ
    for var, key_path in ENV_OVERRIDES.items():
        value = environ.get(var)
        if not value:
            continue
        target = config
        for key in key_path[:-1]:
            target = target.setdefault(key, {})
        target[key_path[-1]] = value
        # Never log credential values
        logger.debug(f"Setting {'.'.join(key_path)} from environment variable {var}")
    return config


class ConfigLoader:
    """Loads configuration settings from a YAML file."""

    def load_config(self, config_path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> dict:
        """
        Loads configuration from the specified YAML file path.

        Values from the file are merged over DEFAULT_CONFIG, then environment
        overrides are applied. With no path, the defaults are used.

        Args:
            config_path: The path to the YAML configuration file, or None.
            environ: Environment mapping to read overrides from (defaults to os.environ).

        Returns:
            A dictionary containing the loaded configuration settings.

        Raises:
            FileNotFoundError: If the configuration file does not exist.
            ConfigurationError: If the file cannot be parsed as YAML or
                              if there are other reading errors.
        """
        if config_path is None:
            logger.info("No configuration file given, using built-in defaults.")
            return apply_env_overrides(copy.deepcopy(DEFAULT_CONFIG), environ)

        logger.info(f"Attempting to load configuration from: {config_path}")
        if not os.path.exists(config_path):
            logger.error(f"Configuration file not found at path: {config_path}")
            raise FileNotFoundError(f"Configuration file not found: {config_path}")
        if not os.path.isfile(config_path):
            logger.error(f"Configuration path is not a file: {config_path}")
            raise ConfigurationError(f"Configuration path is not a file: {config_path}")

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML configuration file {config_path}: {e}", exc_info=True)
            raise ConfigurationError(f"Invalid YAML format in {config_path}: {e}") from e
        except OSError as e:
            logger.error(f"Error reading configuration file {config_path}: {e}", exc_info=True)
            raise ConfigurationError(f"Could not read configuration file {config_path}: {e}") from e

        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            logger.error(f"Configuration file {config_path} did not load as a dictionary (root object).")
            raise ConfigurationError(f"Invalid YAML structure in {config_path}. Root must be a mapping (dictionary).")

        config = apply_env_overrides(deep_merge(DEFAULT_CONFIG, loaded), environ)
        logger.info(f"Configuration loaded successfully from {config_path}")
        return config
