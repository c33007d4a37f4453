"""Tests for environment variable substitution in configs."""

import pytest

from lakeexport.config import substitute_env_vars
from lakeexport.exceptions import ConfigValidationError


def test_simple_substitution(monkeypatch):
    """Test basic ${VAR} substitution."""
    monkeypatch.setenv("TEST_VAR", "hello")
    assert substitute_env_vars("${TEST_VAR} world") == "hello world"


def test_substitution_with_default(monkeypatch):
    """Test ${VAR:default} syntax."""
    monkeypatch.delenv("NONEXISTENT", raising=False)
    assert substitute_env_vars("${NONEXISTENT:default_value}") == "default_value"

    monkeypatch.setenv("SET_VAR", "actual")
    assert substitute_env_vars("${SET_VAR:default}") == "actual"


def test_empty_default(monkeypatch):
    monkeypatch.delenv("EMPTY_DEFAULT", raising=False)
    assert substitute_env_vars("x${EMPTY_DEFAULT:}y") == "xy"


def test_missing_var_raises(monkeypatch):
    """Test that missing variable without default raises."""
    monkeypatch.delenv("MISSING_VAR", raising=False)
    with pytest.raises(ConfigValidationError, match="Environment variable 'MISSING_VAR' is not set"):
        substitute_env_vars("${MISSING_VAR}")


def test_nested_substitution(monkeypatch):
    """Test substitution in nested dictionaries and lists."""
    monkeypatch.setenv("CACHE_HOST", "localhost")
    monkeypatch.delenv("CACHE_DB", raising=False)

    config = {
        "buffer": {"connection_string": "postgresql://${CACHE_HOST}/${CACHE_DB:cache}"},
        "formats": ["${CACHE_HOST}", 3, None],
    }

    assert substitute_env_vars(config) == {
        "buffer": {"connection_string": "postgresql://localhost/cache"},
        "formats": ["localhost", 3, None],
    }


def test_non_string_values_untouched():
    assert substitute_env_vars(42) == 42
    assert substitute_env_vars(True) is True
