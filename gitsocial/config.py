"""
Configuration management for gitsocial.

Configuration is read from ~/.gitsocial/config.{json,toml,yaml,yml} (or the
file named by GITSOCIAL_CONFIG), merged over the defaults, and finally
overridden by GITSOCIAL_* environment variables.
"""

import os
import json
import sys
import tomllib
from pathlib import Path

import logging

logger = logging.getLogger("gitsocial")

CONFIG_FILENAMES = ['config.json', 'config.toml', 'config.yaml', 'config.yml']


def get_config_path():
    """Get the path to the configuration file.

    Checks in order:
    1. GITSOCIAL_CONFIG environment variable
    2. ~/.gitsocial/ directory
    """
    if 'GITSOCIAL_CONFIG' in os.environ:
        path = Path(os.environ['GITSOCIAL_CONFIG'])
        if path.exists():
            return path

    config_dir = Path.home() / '.gitsocial'
    for filename in CONFIG_FILENAMES:
        path = config_dir / filename
        if path.exists() and path.stat().st_size > 10:  # Not empty/trivial
            return path

    # If no file exists, return default path for saving
    return config_dir / 'config.json'


def get_default_storage_base():
    """Default root for isolated clones: $XDG_CACHE_HOME/gitsocial."""
    cache_home = os.environ.get('XDG_CACHE_HOME') or str(Path.home() / '.cache')
    return str(Path(cache_home) / 'gitsocial')


def get_default_config():
    """Get default configuration."""
    return {
        "storage": {
            "base": get_default_storage_base(),
            "temporary_ttl_hours": 24,
        },
        "git": {
            "command_timeout": 30,
            "network_timeout": 120,
        },
        "fetch": {
            "max_workers": 4,
            "depth_fallback": 100,
        },
        "cache": {
            "enabled": True,
            "max_size": 100000,
        },
        "logging": {
            "level": "INFO",
            "format": "%(levelname)s: %(message)s",
            "rich": False,
        },
    }


def load_config():
    """Load configuration from file."""
    config_path = get_config_path()

    # Start with default config
    config = get_default_config()

    if config_path.exists():
        try:
            if config_path.suffix.lower() in ['.toml']:
                with open(config_path, 'rb') as f:
                    file_config = tomllib.load(f)
            elif config_path.suffix.lower() in ['.yaml', '.yml']:
                import yaml
                with open(config_path, 'r') as f:
                    file_config = yaml.safe_load(f) or {}
            else:
                with open(config_path, 'r') as f:
                    file_config = json.load(f)

            config = merge_configs(config, file_config)
        except Exception as e:
            logger.error(f"Error loading config from {config_path}: {e}")

    return apply_env_overrides(config)


def save_config(config):
    """Save configuration to file."""
    config_path = get_config_path()

    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)

        if config_path.suffix.lower() in ['.toml']:
            # tomllib is read-only
            import toml
            with open(config_path, 'w') as f:
                toml.dump(config, f)
        elif config_path.suffix.lower() in ['.yaml', '.yml']:
            import yaml
            with open(config_path, 'w') as f:
                yaml.safe_dump(config, f, default_flow_style=False)
        else:
            with open(config_path, 'w') as f:
                json.dump(config, f, indent=2)

        logger.info(f"Configuration saved to {config_path}")
    except Exception as e:
        logger.error(f"Error saving config to {config_path}: {e}")


def merge_configs(base_config, override_config):
    """
    Recursively merge two configuration dictionaries.

    Args:
        base_config (dict): Base configuration
        override_config (dict): Configuration to merge/override with

    Returns:
        dict: Merged configuration
    """
    merged = base_config.copy()

    for key, value in override_config.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = merge_configs(merged[key], value)
        else:
            merged[key] = value

    return merged


def apply_env_overrides(config):
    """
    Apply environment variable overrides to configuration.
    Environment variables follow the pattern: GITSOCIAL_SECTION_KEY
    For example: GITSOCIAL_GIT_NETWORK_TIMEOUT=300
    """
    env_prefix = "GITSOCIAL_"

    for env_key, value in os.environ.items():
        if not env_key.startswith(env_prefix) or env_key == 'GITSOCIAL_CONFIG':
            continue

        key_parts = env_key[len(env_prefix):].lower().split('_')

        if value.lower() in ('true', 'yes', 'on'):
            typed_value = True
        elif value.lower() in ('false', 'no', 'off'):
            typed_value = False
        elif value.isdigit():
            typed_value = int(value)
        else:
            typed_value = value

        current_level = config
        i = 0
        while i < len(key_parts):
            # Longest config key matching the remaining env var parts
            best_match_len = 0
            matched_key = None

            for config_key in current_level.keys():
                config_key_parts = config_key.split('_')
                if key_parts[i:i + len(config_key_parts)] == config_key_parts:
                    if len(config_key_parts) > best_match_len:
                        best_match_len = len(config_key_parts)
                        matched_key = config_key

            if matched_key:
                if i + best_match_len == len(key_parts):
                    current_level[matched_key] = typed_value
                    break

                if isinstance(current_level[matched_key], dict):
                    current_level = current_level[matched_key]
                    i += best_match_len
                else:
                    break
            else:
                break

    return config


def configure_logging(config=None):
    """
    Configure the gitsocial logger from the logging section.

    GITSOCIAL_LOG_LEVEL wins over the configured level. Handlers are only
    attached once, so calling this for every session is safe.
    """
    config = config or get_default_config()
    log_config = config.get('logging', {})

    level_name = str(os.environ.get('GITSOCIAL_LOG_LEVEL') or log_config.get('level', 'INFO')).upper()
    level = getattr(logging, level_name, logging.INFO)
    logger.setLevel(level)

    if not logger.handlers:
        if log_config.get('rich'):
            from rich.logging import RichHandler
            handler = RichHandler(show_path=False, rich_tracebacks=True)
        else:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(logging.Formatter(log_config.get('format', '%(levelname)s: %(message)s')))
        logger.addHandler(handler)

    return logger
