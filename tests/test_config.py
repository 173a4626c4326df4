"""
Config loading tests - verify history profile management.

Tests cover the error paths and defaults for loading history profiles
from YAML configuration files.
"""

import pytest
from threadline.config import HistoryConfig, load_history_config
from threadline.messages import MessageHistory


def write_config(tmp_path, monkeypatch, content):
    config_file = tmp_path / "threadline.yaml"
    config_file.write_text(content)
    monkeypatch.setattr("threadline.config.loader.get_config_path", lambda: config_file)
    return config_file


def test_load_valid_config_success(tmp_path, monkeypatch):
    """Should load every field of a complete profile."""
    write_config(
        tmp_path,
        monkeypatch,
        """
weather_chat:
  thread_id: thread-123
  resource_id: user-abc
  strict_tool_results: false
  continue_last_assistant: false
    """,
    )

    config = load_history_config("weather_chat")

    assert config == HistoryConfig(
        thread_id="thread-123",
        resource_id="user-abc",
        strict_tool_results=False,
        continue_last_assistant=False,
    )


def test_omitted_fields_use_defaults(tmp_path, monkeypatch):
    """Should fall back to defaults for fields the profile leaves out."""
    write_config(
        tmp_path,
        monkeypatch,
        """
weather_chat:
  thread_id: thread-123
    """,
    )

    config = load_history_config("weather_chat")

    assert config.thread_id == "thread-123"
    assert config.resource_id is None
    assert config.strict_tool_results is True
    assert config.continue_last_assistant is True


def test_missing_config_file(tmp_path, monkeypatch):
    """Should raise FileNotFoundError with helpful message when config missing."""
    non_existent = tmp_path / "does_not_exist.yaml"
    monkeypatch.setattr("threadline.config.loader.get_config_path", lambda: non_existent)

    with pytest.raises(FileNotFoundError) as exc_info:
        load_history_config("any_profile")

    assert "threadline.yaml not found" in str(exc_info.value)


def test_profile_key_not_in_config(tmp_path, monkeypatch):
    """Should raise ValueError when requested profile doesn't exist."""
    write_config(
        tmp_path,
        monkeypatch,
        """
weather_chat:
  thread_id: thread-123
    """,
    )

    with pytest.raises(ValueError) as exc_info:
        load_history_config("nonexistent_profile")

    assert "nonexistent_profile" in str(exc_info.value)
    assert "not found" in str(exc_info.value)


def test_unknown_fields_rejected(tmp_path, monkeypatch):
    """Should raise ValueError naming fields HistoryConfig doesn't have."""
    write_config(
        tmp_path,
        monkeypatch,
        """
weather_chat:
  thread_id: thread-123
  api_key: oops
    """,
    )

    with pytest.raises(ValueError) as exc_info:
        load_history_config("weather_chat")

    assert "Unknown fields" in str(exc_info.value)
    assert "api_key" in str(exc_info.value)


def test_profile_must_be_mapping(tmp_path, monkeypatch):
    """Should raise ValueError when the profile is a scalar."""
    write_config(tmp_path, monkeypatch, "weather_chat: just-a-string\n")

    with pytest.raises(ValueError) as exc_info:
        load_history_config("weather_chat")

    assert "must be a mapping" in str(exc_info.value)


def test_empty_config_file(tmp_path, monkeypatch):
    """Should treat an empty file as having no profiles."""
    write_config(tmp_path, monkeypatch, "")

    with pytest.raises(ValueError) as exc_info:
        load_history_config("weather_chat")

    assert "not found" in str(exc_info.value)


def test_invalid_yaml_syntax(tmp_path, monkeypatch):
    """Should raise RuntimeError for unparseable YAML."""
    write_config(
        tmp_path,
        monkeypatch,
        """
weather_chat:
  thread_id: [unclosed
    """,
    )

    with pytest.raises(RuntimeError) as exc_info:
        load_history_config("weather_chat")

    assert "Error loading history config" in str(exc_info.value)


def test_loaded_profile_drives_history(tmp_path, monkeypatch):
    """A loaded profile should supply the history's thread and resource."""
    write_config(
        tmp_path,
        monkeypatch,
        """
weather_chat:
  thread_id: thread-123
  resource_id: user-abc
    """,
    )

    history = MessageHistory(config=load_history_config("weather_chat"))
    history.add("hello")

    [message] = history.all.canonical()
    assert (message.thread_id, message.resource_id) == ("thread-123", "user-abc")
