"""
Group Activity Report - Configuration Management

Supports loading configuration from:
1. YAML config file (--config)
2. Environment variables (GMA_*, MS365_*)
3. Command-line arguments (highest priority)

Config file example:
```yaml
tenant_id: ${MS365_TENANT_ID}
client_id: ${MS365_CLIENT_ID}
max_workers: 10
output: "./gma_output"

groups:
  - "Sales Team"
  - finance@contoso.com

smtp:
  host: smtp.office365.com
  recipients:
    - it-reports@contoso.com
```
"""
import logging
import os
import re
import stat
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Invalid or incomplete configuration."""


# Default config file locations (checked in order)
DEFAULT_CONFIG_PATHS = [
    './gma-config.yaml',
    './gma-config.yml',
    '~/.gma/config.yaml',
    '~/.gma/config.yml',
]

# Mapping from config keys to env vars
ENV_VAR_MAPPING = {
    'tenant_id': 'MS365_TENANT_ID',
    'client_id': 'MS365_CLIENT_ID',
    'groups': 'GMA_GROUPS',
    'max_workers': 'GMA_MAX_WORKERS',
    'poll_interval': 'GMA_POLL_INTERVAL',
    'output': 'GMA_OUTPUT',
    'log_level': 'GMA_LOG_LEVEL',
    'smtp.host': 'GMA_SMTP_HOST',
    'smtp.port': 'GMA_SMTP_PORT',
    'smtp.username': 'GMA_SMTP_USERNAME',
    'smtp.sender': 'GMA_SMTP_SENDER',
    'smtp.recipients': 'GMA_SMTP_RECIPIENTS',
}

LIST_KEYS = ('groups', 'smtp.recipients')
INT_KEYS = ('max_workers', 'smtp.port')
FLOAT_KEYS = ('poll_interval',)


def _substitute_env_vars(value: Any) -> Any:
    """Substitute ${ENV_VAR} patterns in string values."""
    if isinstance(value, str):
        # Pattern: ${VAR_NAME} or ${VAR_NAME:-default}
        pattern = r'\$\{([^}:]+)(?::-([^}]*))?\}'

        def replace(match):
            var_name = match.group(1)
            default = match.group(2) or ''
            return os.environ.get(var_name, default)

        return re.sub(pattern, replace, value)
    elif isinstance(value, dict):
        return {k: _substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_substitute_env_vars(item) for item in value]
    return value


def _get_nested(data: Dict, key_path: str, default: Any = None) -> Any:
    """Get a nested value from a dict using dot notation."""
    value = data
    for key in key_path.split('.'):
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default
    return value


def _set_nested(data: Dict, key_path: str, value: Any) -> None:
    """Set a nested value in a dict using dot notation."""
    keys = key_path.split('.')
    for key in keys[:-1]:
        data = data.setdefault(key, {})
    data[keys[-1]] = value


def _split_list(value: str) -> List[str]:
    return [v.strip() for v in value.split(',') if v.strip()]


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load configuration from a YAML file."""
    path = Path(config_path).expanduser()

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    file_mode = path.stat().st_mode
    if file_mode & (stat.S_IRWXG | stat.S_IRWXO):
        logger.warning(f"Config file {config_path} has loose permissions. "
                       f"Consider: chmod 600 {config_path}")

    logger.info(f"Loading config from {path}")

    with open(path) as f:
        try:
            config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(config, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")

    return _substitute_env_vars(config)


def find_default_config() -> Optional[str]:
    """Find a config file in default locations."""
    for path in DEFAULT_CONFIG_PATHS:
        expanded = Path(path).expanduser()
        if expanded.exists():
            return str(expanded)
    return None


def load_env_config() -> Dict[str, Any]:
    """Load configuration from environment variables."""
    config: Dict[str, Any] = {}

    for config_key, env_var in ENV_VAR_MAPPING.items():
        value = os.environ.get(env_var)
        if value is None:
            continue
        if config_key in LIST_KEYS:
            value = _split_list(value)
        _set_nested(config, config_key, value)

    return config


def merge_configs(*configs: Dict[str, Any]) -> Dict[str, Any]:
    """Merge multiple config dicts. Later configs override earlier ones."""
    result: Dict[str, Any] = {}

    for config in configs:
        for key, value in config.items():
            if isinstance(value, dict) and isinstance(result.get(key), dict):
                result[key] = merge_configs(result[key], value)
            elif value is not None:
                result[key] = value

    return result


def args_to_config(args) -> Dict[str, Any]:
    """Convert argparse args to config dict format."""
    config: Dict[str, Any] = {}

    arg_mapping = {
        'tenant_id': 'tenant_id',
        'client_id': 'client_id',
        'groups': 'groups',
        'max_workers': 'max_workers',
        'poll_interval': 'poll_interval',
        'output_dir': 'output',
        'log_level': 'log_level',
        'email_to': 'smtp.recipients',
        'smtp_host': 'smtp.host',
    }

    for arg_name, config_key in arg_mapping.items():
        value = getattr(args, arg_name, None)
        if value is None:
            continue
        if config_key in LIST_KEYS and isinstance(value, str):
            value = _split_list(value)
        _set_nested(config, config_key, value)

    return config


def _coerce_types(config: Dict[str, Any]) -> Dict[str, Any]:
    """Convert string values from env vars / YAML substitution to their types."""
    for key in INT_KEYS + FLOAT_KEYS:
        value = _get_nested(config, key)
        if value is None or value == '':
            continue
        caster = int if key in INT_KEYS else float
        try:
            _set_nested(config, key, caster(value))
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid value for {key}: {value!r}") from e

    poll_interval = config.get('poll_interval')
    if isinstance(poll_interval, (int, float)) and poll_interval <= 0:
        raise ConfigError(f"poll_interval must be positive, got {poll_interval}")

    for key in LIST_KEYS:
        value = _get_nested(config, key)
        if isinstance(value, str):
            _set_nested(config, key, _split_list(value))

    starttls = _get_nested(config, 'smtp.starttls')
    if isinstance(starttls, str):
        _set_nested(config, 'smtp.starttls', starttls.lower() in ('true', '1', 'yes'))

    return config


def load_config(args) -> Dict[str, Any]:
    """
    Load configuration from all sources and merge them.

    Priority (highest to lowest):
    1. CLI arguments
    2. Config file (--config or default location)
    3. Environment variables

    Returns merged config dict.
    """
    configs = []

    env_config = load_env_config()
    if env_config:
        logger.debug("Loaded config from environment variables")
        configs.append(env_config)

    config_path = getattr(args, 'config', None)
    if config_path:
        configs.append(load_config_file(config_path))
    else:
        default_config = find_default_config()
        if default_config:
            logger.info(f"Found default config file: {default_config}")
            configs.append(load_config_file(default_config))

    configs.append(args_to_config(args))

    return _coerce_types(merge_configs(*configs))


def read_groups_file(filepath: str) -> List[str]:
    """Read group identifiers, one per line; blank lines and # comments skipped."""
    groups = []
    with open(filepath, encoding='utf-8-sig') as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith('#'):
                groups.append(line)
    return groups


def dedupe_groups(groups: List[str]) -> List[str]:
    """Drop repeated identifiers (case-insensitive), keeping first-seen order."""
    seen = set()
    unique = []
    for group in groups:
        key = group.strip().lower()
        if key and key not in seen:
            seen.add(key)
            unique.append(group.strip())
    return unique


def generate_sample_config() -> str:
    """Generate a sample config file content."""
    return '''# Group Activity Report Configuration
#
# Environment variable substitution supported:
#   ${VAR_NAME}           - required env var
#   ${VAR_NAME:-default}  - env var with default value

# Azure AD tenant ID and app registration client ID.
# The client secret is read from MS365_CLIENT_SECRET only.
tenant_id: ${MS365_TENANT_ID}
client_id: ${MS365_CLIENT_ID}

# Groups to report on: display name, mail address or object ID
groups:
  - "Sales Team"
  # - finance@contoso.com
  # - 0f8fad5b-d9cb-469f-a165-70867728950e

# Number of groups processed concurrently (each opens its own Graph session)
max_workers: 10

# Seconds between completion checks while all workers are busy
poll_interval: 0.2

# Output directory for CSV/JSON/HTML results
output: "./gma_output"

# Logging level: DEBUG, INFO, WARNING, ERROR
log_level: INFO

# Optional e-mail delivery of the HTML report.
# The SMTP password is read from GMA_SMTP_PASSWORD only.
# smtp:
#   host: smtp.office365.com
#   port: 587
#   starttls: true
#   username: reports@contoso.com
#   sender: reports@contoso.com
#   recipients:
#     - it-team@contoso.com
'''
