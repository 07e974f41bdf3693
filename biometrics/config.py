"""
Configuration Management Module

This module loads the verification settings from the config.yaml file at
the project root. The parsed configuration is cached at module level so
every component sees the same values.

Usage:
    from biometrics.config import get_config
    config = get_config()
    ensemble_config = config["ensemble"]
"""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml


# Cached configuration (module-level variable)
_config_instance: Optional[Dict[str, Any]] = None


def get_project_root() -> Path:
    """
    Find the project root directory.

    The project root is identified by the presence of config.yaml file.
    This function walks up the directory tree from this file's location
    until it finds config.yaml.

    Returns:
        Path: The absolute path to the project root directory.

    Raises:
        FileNotFoundError: If config.yaml cannot be found in any parent directory.
    """
    current_dir = Path(__file__).resolve().parent

    while current_dir != current_dir.parent:
        config_path = current_dir / "config.yaml"
        if config_path.exists():
            return current_dir
        current_dir = current_dir.parent

    raise FileNotFoundError(
        "Could not find config.yaml in any parent directory. "
        "Make sure you're running from within the project directory."
    )


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Optional path to the config file.
                     If not provided, uses the default config.yaml in project root.

    Returns:
        Dict containing all configuration values. An empty file yields {}.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        yaml.YAMLError: If the config file contains invalid YAML.
    """
    if config_path is None:
        config_path = get_project_root() / "config.yaml"
    else:
        config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f)

    return config or {}


def get_config(reload: bool = False) -> Dict[str, Any]:
    """
    Get the cached configuration.

    Args:
        reload: If True, forces reloading the configuration from disk.

    Returns:
        Dict containing all configuration values.

    Example:
        config = get_config()
        clip_limit = config["preprocessing"]["document_clip_limit"]
    """
    global _config_instance

    if _config_instance is None or reload:
        _config_instance = load_config()

    return _config_instance


def get_section(section_name: str) -> Dict[str, Any]:
    """
    Get a specific section from the configuration.

    Args:
        section_name: Name of the configuration section
                      (e.g., "preprocessing", "matching", "ensemble")

    Returns:
        Dict containing the section's configuration values.

    Raises:
        KeyError: If the section doesn't exist in the configuration.
    """
    config = get_config()

    if section_name not in config:
        raise KeyError(
            f"Configuration section '{section_name}' not found. "
            f"Available sections: {list(config.keys())}"
        )

    return config[section_name]


def get_preprocessing_config() -> Dict[str, Any]:
    """Get image preprocessing configuration."""
    return get_section("preprocessing")


def get_matching_config() -> Dict[str, Any]:
    """Get per-algorithm matching configuration."""
    return get_section("matching")


def get_ensemble_config() -> Dict[str, Any]:
    """Get ensemble weighting configuration."""
    return get_section("ensemble")


def get_quality_config() -> Dict[str, Any]:
    """Get image quality analysis configuration."""
    return get_section("image_quality")


def get_logging_config() -> Dict[str, Any]:
    """
    Get logging configuration for the command line scripts.

    Returns:
        Dict with at least "level" and "format" keys.
    """
    try:
        section = get_section("logging")
    except (KeyError, FileNotFoundError):
        section = {}

    return {
        "level": section.get("level", "INFO"),
        "format": section.get("format", "%(asctime)s - %(levelname)s - %(message)s"),
    }
