"""
History configuration management utilities.

This module provides the HistoryConfig defaults and a loader that reads
named history profiles from a YAML file at the project root.
"""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)


@dataclass
class HistoryConfig:
    """Configuration for a MessageHistory."""

    thread_id: str | None = None
    resource_id: str | None = None
    strict_tool_results: bool = True  # False drops unpaired tool results with a warning
    continue_last_assistant: bool = True  # Streams extend a trailing assistant message


def get_config_path() -> Path:
    """
    Get the path to the history configuration file.

    Looks for threadline.yaml in the current working directory (project root).
    """
    return Path(os.getcwd()) / "threadline.yaml"


def load_history_config(key: str) -> HistoryConfig:
    """
    Load a named history profile from YAML file at project root.

    Args:
        key: The key identifying the profile in the config file

    Returns:
        HistoryConfig populated from the profile, defaults for omitted fields

    Raises:
        FileNotFoundError: If threadline.yaml doesn't exist
        ValueError: If the profile is missing or has unknown fields
        RuntimeError: If the file cannot be read or parsed
    """
    config_path = get_config_path()
    logger.debug(f"Loading history config from: {config_path}")

    if not config_path.exists():
        raise FileNotFoundError(
            f"threadline.yaml not found at {config_path}. "
            "Create it with a profile per conversation setup."
        )

    try:
        with open(config_path, "r") as f:
            config = yaml.safe_load(f) or {}

        profile = config.get(key)
        if profile is None:
            raise ValueError(
                f"History profile '{key}' not found in {config_path}. "
                f"Please add the profile configuration."
            )
        if not isinstance(profile, dict):
            raise ValueError(
                f"History profile '{key}' in {config_path} must be a mapping"
            )

        known = {f.name for f in fields(HistoryConfig)}
        unknown = sorted(set(profile) - known)
        if unknown:
            raise ValueError(
                f"Unknown fields for history profile '{key}': {', '.join(unknown)}. "
                f"Supported fields: {', '.join(sorted(known))}"
            )

        return HistoryConfig(**profile)
    except ValueError:
        raise
    except Exception as e:
        raise RuntimeError(f"Error loading history config: {e}") from e
