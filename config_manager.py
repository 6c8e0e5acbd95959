"""
Configuration Manager for the inline completion cache
Handles settings for the cache, similarity weights, quality gate, generation
backend and logging
"""

import os
import json
import logging
from copy import deepcopy
from pathlib import Path
from typing import Dict, Any, Optional

ENV_PREFIX = "COMPLETION_"


class ConfigManager:
    """
    Manages application configuration for the completion cache and its client
    through JSON configuration files.
    """
    # Default configuration values
    DEFAULT_CONFIG = {
        "cache": {
            "max_entries": 1000,
            "ttl_seconds": 300,
            "similarity_threshold": 0.8
        },
        "similarity_weights": {
            "line": 0.4,
            "function": 0.2,
            "class": 0.2,
            "language": 0.1,
            "variables": 0.1
        },
        "quality_gate": {
            "extra_substrings": [],
            "extra_patterns": []
        },
        "client": {
            "min_trigger_length": 2,
            "max_suggestion_length": 150,
            "max_retries": 2,
            "retry_interval": 0.5,
            "max_workers": 4
        },
        "generation": {
            "api_key_env": "GROQ_API_KEY",
            "api_key": "",
            "model": "llama-3.1-8b-instant",
            "temperature": 0.3,
            "max_tokens": 100,
            "timeout": 3.0
        },
        "logging": {
            "level": "INFO"
        }
    }

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration manager with optional custom config path.

        Args:
            config_path: Path to custom config file
                (defaults to ~/.completion_cache/config.json)
        """
        self.logger = logging.getLogger("completion.config")

        self.config_dir = Path(os.path.expanduser("~/.completion_cache"))
        self.config_path = Path(config_path) if config_path else self.config_dir / "config.json"

        self.config = deepcopy(self.DEFAULT_CONFIG)
        self.load_config()

    def load_config(self) -> None:
        """Load configuration from file, creating default if not exists."""
        if self.config_path.exists():
            try:
                with open(self.config_path, 'r', encoding='utf-8') as file:
                    user_config = json.load(file)
                    self._deep_update(self.config, user_config)
                    self.logger.info(f"Configuration loaded from {self.config_path}")
            except (json.JSONDecodeError, IOError) as e:
                self.logger.error(f"Error loading configuration: {e}")
                self.logger.info("Using default configuration")
        else:
            self.save_config()
            self.logger.info(f"Created default configuration at {self.config_path}")

    def save_config(self) -> None:
        """Save current configuration to file."""
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)

            with open(self.config_path, 'w', encoding='utf-8') as file:
                json.dump(self.config, file, indent=2)

            # The file may hold an API key
            if os.name == 'posix':
                os.chmod(self.config_path, 0o600)

            self.logger.info(f"Configuration saved to {self.config_path}")
        except IOError as e:
            self.logger.error(f"Error saving configuration: {e}")

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation path. Environment variables
        prefixed with ``COMPLETION_`` take precedence over values stored in
        the configuration file.

        For example, requesting ``cache.ttl_seconds`` first looks for an
        environment variable named ``COMPLETION_CACHE_TTL_SECONDS``. If found,
        the string value is converted to bool/int/float/JSON where possible.
        """
        keys = key_path.split('.')

        env_val = os.environ.get(ENV_PREFIX + '_'.join(keys).upper())
        if env_val is not None:
            return self.parse_value(env_val)

        value: Any = self.config
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value

    @staticmethod
    def parse_value(raw: str) -> Any:
        """Convert a string to bool, int, float or JSON where it parses as one."""
        lowered = raw.lower()
        if lowered in {'true', 'false'}:
            return lowered == 'true'
        try:
            return int(raw)
        except ValueError:
            pass
        try:
            return float(raw)
        except ValueError:
            pass
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return raw

    def set(self, key_path: str, value: Any, save: bool = True) -> None:
        """
        Set a configuration value using dot notation, creating intermediate
        sections as needed. Raises ``ValueError`` when the path runs through
        an existing scalar value.
        """
        keys = key_path.split('.')
        config_section = self.config

        for key in keys[:-1]:
            current_val = config_section.get(key)
            if current_val is None:
                config_section[key] = {}
                current_val = config_section[key]
            if not isinstance(current_val, dict):
                raise ValueError(f"Cannot create sub-key under non-mapping path '{'.'.join(keys[:-1])}'")
            config_section = current_val

        config_section[keys[-1]] = value

        if save:
            self.save_config()

    def get_cache_settings(self) -> Dict[str, Any]:
        """Return the effective cache settings, environment overrides applied."""
        return {
            name: self.get(f"cache.{name}", default)
            for name, default in self.DEFAULT_CONFIG["cache"].items()
        }

    def get_similarity_weights(self) -> Dict[str, float]:
        """Get the similarity component weights."""
        return {
            name: float(self.get(f"similarity_weights.{name}", default))
            for name, default in self.DEFAULT_CONFIG["similarity_weights"].items()
        }

    def set_weight(self, component: str, value: float) -> None:
        """
        Set a single similarity weight.

        Args:
            component: Component name (line, function, class, language, variables)
            value: Weight value to set
        """
        if component not in self.DEFAULT_CONFIG["similarity_weights"]:
            raise ValueError(f"Unknown similarity component: {component}")
        self.set(f"similarity_weights.{component}", float(value))

    def reset_weights_to_default(self) -> None:
        """Reset similarity weights to default values."""
        self.set('similarity_weights', deepcopy(self.DEFAULT_CONFIG['similarity_weights']))

    def get_api_key(self) -> Optional[str]:
        """Get the generation API key from the environment or config."""
        env_var = self.get('generation.api_key_env', 'GROQ_API_KEY')
        api_key = os.environ.get(env_var)
        if not api_key:
            api_key = self.get('generation.api_key') or None
        return api_key

    def _deep_update(self, target: Dict, source: Dict) -> None:
        """
        Recursively update nested dictionaries.

        Args:
            target: Target dictionary to update
            source: Source dictionary with updates
        """
        for key, value in source.items():
            if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                self._deep_update(target[key], value)
            else:
                target[key] = value

    def __contains__(self, item):
        """True if *item* is a top-level section present in the config."""
        return item in self.config

    _SENSITIVE_PATTERNS = {"password", "secret", "token", "api_key"}

    def __str__(self) -> str:
        """Return a JSON representation with sensitive values masked."""
        def mask(obj):
            if isinstance(obj, dict):
                return {
                    k: "***" if v and any(k.lower().endswith(p) for p in self._SENSITIVE_PATTERNS) else mask(v)
                    for k, v in obj.items()
                }
            if isinstance(obj, list):
                return [mask(x) for x in obj]
            return obj

        return json.dumps(mask(self.config), indent=2, ensure_ascii=False)
