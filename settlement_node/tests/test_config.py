import environ
import pytest

from settlement.config import load_config
from settlement.engine.config import DEFAULT_ORDINALS_API_URL, DEFAULT_TOKEN_API_URL


def test_defaults():
    config = load_config({"SETTLEMENT_SECRET_API_TOKEN": "secret-token"})

    assert config.network == "mainnet"
    assert config.token_api_url == DEFAULT_TOKEN_API_URL
    assert config.ordinals_api_url == DEFAULT_ORDINALS_API_URL
    assert config.poll_interval == 5.0
    assert config.max_poll_attempts == 60
    assert config.sentry_dsn == ""
    assert config.secret.api_token == "secret-token"
    assert config.secret.signing_key == ""


def test_overrides():
    config = load_config(
        {
            "SETTLEMENT_NETWORK": " Testnet ",
            "SETTLEMENT_TOKEN_API_URL": "http://localhost:8080",
            "SETTLEMENT_HTTP_TIMEOUT": "2.5",
            "SETTLEMENT_POLL_INTERVAL": "1",
            "SETTLEMENT_MAX_POLL_ATTEMPTS": "3",
            "SETTLEMENT_SECRET_API_TOKEN": "secret-token",
            "SETTLEMENT_SECRET_SIGNING_KEY": "01" * 32,
        }
    )

    engine_config = config.engine_config()
    assert engine_config.network == "testnet"
    assert engine_config.token_api_url == "http://localhost:8080"
    assert engine_config.http_timeout == 2.5
    assert engine_config.poll_interval == 1.0
    assert engine_config.max_poll_attempts == 3
    assert config.secret.signing_key == "01" * 32


def test_api_token_is_required():
    with pytest.raises(environ.MissingEnvValueError):
        load_config({})


def test_invalid_network():
    with pytest.raises(ValueError, match="Invalid network"):
        load_config({"SETTLEMENT_NETWORK": "regtest", "SETTLEMENT_SECRET_API_TOKEN": "secret-token"})


def test_secrets_are_masked():
    secrets = load_config({"SETTLEMENT_SECRET_API_TOKEN": "secret-token"}).engine_secrets()

    assert secrets.api_token == "secret-token"
    assert "secret-token" not in repr(secrets)
