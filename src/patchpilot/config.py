# src/patchpilot/config.py
"""
Configuration loading.

Settings come from config.yaml (sections: model, orchestration, permissions)
with defaults filled in, and secrets from the environment or a .env file.
"""
import os
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

import yaml
from dotenv import load_dotenv

from patchpilot.api.client import ConfigurationError, DEFAULT_BASE_URL, DEFAULT_MODEL
from patchpilot.core.action_executor import PermissionPolicy

logger = logging.getLogger(__name__)


API_KEY_ENV = "PATCHPILOT_API_KEY"

MAX_RETRIES_RANGE = (0, 5)
CACHE_MINUTES_RANGE = (1, 60)

DEFAULT_CONFIG: Dict[str, Dict[str, Any]] = {
    'model': {
        'base_url': DEFAULT_BASE_URL,
        'model': DEFAULT_MODEL,
        'api_key': '${' + API_KEY_ENV + '}',
        'max_tokens': 4096,
        'temperature': 0.3,
    },
    'orchestration': {
        'enable_validation': True,
        'max_retries': 2,
        'enable_web_search': True,
        'cache_duration_minutes': 5,
        'model_timeout_seconds': 60,
        'dedupe_side_effects': False,
    },
    'permissions': {
        'allow_package_install': True,
        'allow_file_creation': True,
        'allow_folder_creation': True,
        'allow_file_modification': True,
        'allow_script_execution': False,
        'allow_git_operations': False,
        'allow_formatting': True,
        'require_confirmation': False,
    },
}


@dataclass
class AssistantConfig:
    """Effective configuration for one process."""
    api_key: Optional[str] = None
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    max_tokens: int = 4096
    temperature: float = 0.3

    enable_validation: bool = True
    max_retries: int = 2
    enable_web_search: bool = True
    cache_duration_minutes: int = 5
    model_timeout_seconds: float = 60
    dedupe_side_effects: bool = False

    allow_package_install: bool = True
    allow_file_creation: bool = True
    allow_folder_creation: bool = True
    allow_file_modification: bool = True
    allow_script_execution: bool = False
    allow_git_operations: bool = False
    allow_formatting: bool = True
    require_confirmation: bool = False

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Raise ConfigurationError for out-of-range values."""
        low, high = MAX_RETRIES_RANGE
        if not isinstance(self.max_retries, int) or not low <= self.max_retries <= high:
            raise ConfigurationError(f"max_retries must be between {low} and {high}, got {self.max_retries!r}")

        low, high = CACHE_MINUTES_RANGE
        if not isinstance(self.cache_duration_minutes, (int, float)) or not low <= self.cache_duration_minutes <= high:
            raise ConfigurationError(
                f"cache_duration_minutes must be between {low} and {high}, got {self.cache_duration_minutes!r}"
            )

        if not isinstance(self.model_timeout_seconds, (int, float)) or self.model_timeout_seconds <= 0:
            raise ConfigurationError(f"model_timeout_seconds must be positive, got {self.model_timeout_seconds!r}")

        if not isinstance(self.max_tokens, int) or self.max_tokens <= 0:
            raise ConfigurationError(f"max_tokens must be a positive integer, got {self.max_tokens!r}")

    @property
    def cache_ttl_seconds(self) -> float:
        return self.cache_duration_minutes * 60

    def permission_policy(self) -> PermissionPolicy:
        return PermissionPolicy(
            allow_package_install=self.allow_package_install,
            allow_file_creation=self.allow_file_creation,
            allow_folder_creation=self.allow_folder_creation,
            allow_file_modification=self.allow_file_modification,
            allow_script_execution=self.allow_script_execution,
            allow_git_operations=self.allow_git_operations,
            allow_formatting=self.allow_formatting,
            require_confirmation=self.require_confirmation
        )

    def to_dict(self, show_key: bool = False) -> Dict[str, Any]:
        data = asdict(self)
        if not show_key:
            data['api_key'] = mask_key(self.api_key)
        return data


def mask_key(api_key: Optional[str]) -> str:
    if not api_key:
        return "(not set)"
    return api_key[:8] + "..." + api_key[-4:] if len(api_key) > 12 else "***"


def load_env(extra_paths: Optional[List[Path]] = None) -> Optional[Path]:
    """Load the first .env file found. Returns its path, or None."""
    possible_paths = list(extra_paths or []) + [
        Path.cwd() / ".env",
        Path.home() / ".patchpilot.env",
    ]
    for env_path in possible_paths:
        if env_path.exists():
            load_dotenv(dotenv_path=env_path)
            logger.debug(f"Loaded .env from: {env_path}")
            return env_path

    logger.debug("No .env file found in standard locations")
    return None


def resolve_template(value: Any) -> Any:
    """'${VAR}' -> os.environ['VAR'] (None when unset). Other values pass through."""
    if isinstance(value, str) and value.startswith('${') and value.endswith('}'):
        return os.getenv(value[2:-1])
    return value


def read_config_file(config_path: str = "config.yaml") -> Dict[str, Any]:
    """Load configuration from YAML with defaults for every missing key."""
    path = Path(config_path)
    config: Any = {}
    if path.exists():
        try:
            with open(path, 'r', encoding='utf-8') as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    else:
        logger.debug(f"No config file at {path}, using defaults")

    # Ensure required structure
    if not isinstance(config, dict):
        config = {}

    for section, defaults in DEFAULT_CONFIG.items():
        if not isinstance(config.get(section), dict):
            config[section] = {}
        for key, value in defaults.items():
            config[section].setdefault(key, value)

    return config


def load_config(config_path: str = "config.yaml", env_file: Optional[str] = None) -> AssistantConfig:
    """Build the effective AssistantConfig from YAML, .env and the environment."""
    load_env([Path(env_file)] if env_file else None)
    raw = read_config_file(config_path)

    # Environment first, then config (with ${VAR} templates)
    api_key = os.getenv(API_KEY_ENV) or resolve_template(raw['model'].get('api_key'))

    known = set(AssistantConfig.__dataclass_fields__)
    values: Dict[str, Any] = {'api_key': api_key}
    for section in ('model', 'orchestration', 'permissions'):
        for key, value in raw[section].items():
            if key == 'api_key':
                continue
            if key not in known:
                logger.warning(f"Ignoring unknown option {section}.{key}")
                continue
            values[key] = value

    return AssistantConfig(**values)


def write_default_config(config_path: str = "config.yaml") -> Path:
    """Write the default configuration file."""
    path = Path(config_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        yaml.dump(DEFAULT_CONFIG, f, default_flow_style=False, sort_keys=False)
    return path
