"""
config_loader.py
-----------------
Singleton config loader. Reads config.yaml once and caches it.
All modules access configuration through this and never hardcodes values.
"""

import os
import yaml
from typing import Any, Dict


_CONFIG_CACHE: Dict[str, Any] = {}


def load_config(config_path: str | None = None) -> Dict[str, Any]:
    """
    Load and cache the YAML configuration file.

    Args:
        config_path: Path to config.yaml. Defaults to config/ relative to this file.

    Returns:
        Full config dictionary.
    """
    global _CONFIG_CACHE

    if _CONFIG_CACHE:
        return _CONFIG_CACHE

    if config_path is None:
        config_path = os.path.join(os.path.dirname(__file__), "config.yaml")

    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r") as f:
        _CONFIG_CACHE = yaml.safe_load(f)

    return _CONFIG_CACHE


def get_decision_config() -> Dict[str, Any]:
    """Returns the decision block (thresholds, delay, auto-approve floor)."""
    return load_config()["decision"]


def get_aggregation_config() -> Dict[str, Any]:
    """Returns the aggregation block (detector weights)."""
    return load_config()["aggregation"]


def get_amount_detection_config() -> Dict[str, Any]:
    return load_config()["amount_detection"]


def get_time_detection_config() -> Dict[str, Any]:
    return load_config()["time_detection"]


def get_recipient_detection_config() -> Dict[str, Any]:
    return load_config()["recipient_detection"]


def get_replay_config() -> Dict[str, Any]:
    """Returns the batch replay block."""
    return load_config()["replay"]


def get_drift_monitoring_config() -> Dict[str, Any]:
    """Returns drift monitoring config."""
    return load_config()["drift_monitoring"]


def reset_config() -> None:
    """Clears cached config. Useful for testing."""
    global _CONFIG_CACHE
    _CONFIG_CACHE = {}
