"""Tests for application configuration."""

import pytest
from pydantic import ValidationError

from localchat.config import Settings


def test_default_values():
    """Test settings have correct defaults."""
    s = Settings()

    assert s.OLLAMA_BASE_URL == "http://127.0.0.1:11434"
    assert s.MAX_TOOL_ROUNDS == 8
    assert s.SHELL_TIMEOUT == 5.0
    assert s.SHELL_OUTPUT_LIMIT == 30 * 1024
    assert s.SHELL_WHITELIST == ["ls", "cat", "grep", "echo", "pwd", "sed", "awk"]
    assert s.VECTOR_STORE_PORT == 6333
    assert s.VECTOR_STORE_HEALTH_TTL == 30.0
    assert s.DEFAULT_TOP_K == 4
    assert s.DEFAULT_CONTEXT_TOKENS == 1024


def test_summarization_default_values():
    """Test summarization settings have correct defaults."""
    s = Settings()

    assert s.SUMMARIZATION_ENABLED is True
    assert s.SUMMARIZATION_MODEL == "qwen2.5:0.5b"
    assert s.SUMMARIZATION_TIMEOUT == 15.0
    assert s.SUMMARIZATION_MAX_INPUT_CHARS == 2000
    assert s.SUMMARY_MAX_CHARS == 200


def test_shell_whitelist_from_comma_separated_string():
    """Test the whitelist accepts the environment's comma-separated form."""
    s = Settings(SHELL_WHITELIST="ls, cat ,grep")

    assert s.SHELL_WHITELIST == ["ls", "cat", "grep"]


def test_cors_origins_from_string():
    s = Settings(CORS_ORIGINS="http://a.test, http://b.test")

    assert s.CORS_ORIGINS == ["http://a.test", "http://b.test"]


def test_log_level_is_normalised():
    s = Settings(LOG_LEVEL="debug")

    assert s.LOG_LEVEL == "DEBUG"


def test_log_level_invalid():
    with pytest.raises(ValidationError) as exc_info:
        Settings(LOG_LEVEL="verbose")

    assert "LOG_LEVEL must be one of" in str(exc_info.value)


def test_model_url_must_be_http():
    """Test validation rejects a non-HTTP model service URL."""
    with pytest.raises(ValidationError) as exc_info:
        Settings(OLLAMA_BASE_URL="ftp://localhost:11434")

    assert "OLLAMA_BASE_URL" in str(exc_info.value)
    assert "valid HTTP(S) URL" in str(exc_info.value)


def test_vector_store_port_out_of_range():
    with pytest.raises(ValidationError) as exc_info:
        Settings(VECTOR_STORE_PORT=70000)

    assert "between 1 and 65535" in str(exc_info.value)


def test_shell_timeout_negative():
    """Test validation rejects negative timeout."""
    with pytest.raises(ValidationError) as exc_info:
        Settings(SHELL_TIMEOUT=-1.0)

    assert "SHELL_TIMEOUT" in str(exc_info.value)
    assert "must be a positive number" in str(exc_info.value)


def test_summarization_timeout_too_high():
    with pytest.raises(ValidationError) as exc_info:
        Settings(SUMMARIZATION_TIMEOUT=300.0)

    assert "should not exceed 120 seconds" in str(exc_info.value)


def test_max_tool_rounds_too_low():
    with pytest.raises(ValidationError) as exc_info:
        Settings(MAX_TOOL_ROUNDS=0)

    assert "MAX_TOOL_ROUNDS must be at least 1" in str(exc_info.value)


def test_shell_output_limit_too_low():
    with pytest.raises(ValidationError) as exc_info:
        Settings(SHELL_OUTPUT_LIMIT=10)

    assert "at least 1024" in str(exc_info.value)
