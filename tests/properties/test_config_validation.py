"""Property-based tests for configuration validation.

**Feature: wallet-reconciliation-core, Property 1: Configuration Validation**
"""

import os

import pytest
from hypothesis import given, settings, strategies as st
from pydantic import ValidationError

from app.core.config import Settings


# Required database parameters that must be present
REQUIRED_DB_PARAMS = ["POSTGRES_HOST", "POSTGRES_USER", "POSTGRES_PASSWORD", "POSTGRES_DB"]

# All parameters needed for a valid configuration
ALL_REQUIRED_PARAMS = REQUIRED_DB_PARAMS + ["SECRET_KEY", "PROVIDER_SECRET_KEY"]


def make_valid_env() -> dict[str, str]:
    """Create a complete valid environment configuration."""
    return {
        "POSTGRES_HOST": "localhost",
        "POSTGRES_PORT": "5432",
        "POSTGRES_USER": "testuser",
        "POSTGRES_PASSWORD": "testpass",
        "POSTGRES_DB": "testdb",
        "REDIS_HOST": "localhost",
        "REDIS_PORT": "6379",
        "SECRET_KEY": "test-secret-key",
        "PROVIDER_SECRET_KEY": "sk_test_secret",
        "DEBUG": "false",
    }


@settings(max_examples=50)
@given(missing_param=st.sampled_from(ALL_REQUIRED_PARAMS))
def test_missing_required_param_raises_validation_error(missing_param: str) -> None:
    """
    **Feature: wallet-reconciliation-core, Property 1: Configuration Validation**

    *For any* environment missing a database parameter, SECRET_KEY or the
    provider secret key, loading the Settings SHALL raise a ValidationError.
    """
    env = make_valid_env()
    del env[missing_param]

    original_env = {}
    for key in make_valid_env().keys():
        if key in os.environ:
            original_env[key] = os.environ.pop(key)

    try:
        for key, value in env.items():
            os.environ[key] = value

        # _env_file=None keeps a developer's .env out of the test
        with pytest.raises(ValidationError):
            Settings(_env_file=None)
    finally:
        for key in env.keys():
            if key in os.environ:
                del os.environ[key]
        for key, value in original_env.items():
            os.environ[key] = value


# Strategy for valid environment variable values (no null characters or lone
# surrogates, which os.environ cannot encode; non-empty after strip)
env_value_strategy = st.text(
    alphabet=st.characters(blacklist_categories=("Cs",), blacklist_characters="\x00"),
    min_size=1,
    max_size=50,
).filter(lambda x: x.strip())


@settings(max_examples=200)
@given(value=env_value_strategy)
def test_generated_values_are_encodable_environment_values(value: str) -> None:
    value.encode("utf-8")
    assert "\x00" not in value


@settings(max_examples=100)
@given(
    host=env_value_strategy,
    user=env_value_strategy,
    password=env_value_strategy,
    db=env_value_strategy,
    provider_key=env_value_strategy,
)
def test_valid_config_loads_successfully(
    host: str, user: str, password: str, db: str, provider_key: str
) -> None:
    """
    **Feature: wallet-reconciliation-core, Property 1: Configuration Validation**

    *For any* complete set of valid environment variables, loading the Settings
    SHALL succeed, and the webhook secret SHALL default to the provider key.
    """
    env = {
        "POSTGRES_HOST": host,
        "POSTGRES_PORT": "5432",
        "POSTGRES_USER": user,
        "POSTGRES_PASSWORD": password,
        "POSTGRES_DB": db,
        "SECRET_KEY": "test-secret-key",
        "PROVIDER_SECRET_KEY": provider_key,
    }

    original_env = {}
    for key in list(make_valid_env().keys()) + ["PROVIDER_WEBHOOK_SECRET", "DATABASE_URL"]:
        if key in os.environ:
            original_env[key] = os.environ.pop(key)

    try:
        for key, value in env.items():
            os.environ[key] = value

        settings = Settings(_env_file=None)

        assert settings.POSTGRES_HOST == host
        assert settings.POSTGRES_USER == user
        assert settings.POSTGRES_DB == db
        assert settings.PROVIDER_SECRET_KEY == provider_key
        assert settings.webhook_secret == provider_key
        assert settings.POSTGRES_PORT == 5432

        expected_url = f"postgresql+asyncpg://{user}:{password}@{host}:5432/{db}"
        assert settings.database_url == expected_url
    finally:
        for key in env.keys():
            if key in os.environ:
                del os.environ[key]
        for key, value in original_env.items():
            os.environ[key] = value
