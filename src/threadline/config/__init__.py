"""
History configuration utilities.

Usage:
    from threadline.config import load_history_config

    config = load_history_config("support_bot")
"""

from threadline.config.loader import HistoryConfig, get_config_path, load_history_config

__all__ = ["HistoryConfig", "load_history_config", "get_config_path"]
