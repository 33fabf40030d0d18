import logging

import environ

from ..common.bsv.setup import BSV_NETWORKS, BsvNetwork
from ..engine.config import DEFAULT_ORDINALS_API_URL, DEFAULT_TOKEN_API_URL, EngineConfig, EngineSecrets
from .secrets import secret

logger = logging.getLogger(__name__)


def network_name(s: str) -> str:
    s = s.strip().lower()
    if s not in BSV_NETWORKS:
        raise ValueError(f"Invalid network {s!r}, expected one of {BSV_NETWORKS}")
    return s


@environ.config
class SecretsConfig:
    api_token = secret("settlement_secret_api_token")
    # WIF or 32-byte hex. Only needed for transfers
    signing_key = secret("settlement_secret_signing_key", default="")


@environ.config(prefix="SETTLEMENT")
class Config:
    network: BsvNetwork = environ.var("mainnet", converter=network_name)
    token_api_url = environ.var(DEFAULT_TOKEN_API_URL)
    ordinals_api_url = environ.var(DEFAULT_ORDINALS_API_URL)
    http_timeout = environ.var(30.0, converter=float)
    poll_interval = environ.var(5.0, converter=float)
    max_poll_attempts = environ.var(60, converter=int)
    sentry_dsn = environ.var(default="")

    secret = environ.group(SecretsConfig)

    def engine_config(self) -> EngineConfig:
        return EngineConfig(
            network=self.network,
            token_api_url=self.token_api_url,
            ordinals_api_url=self.ordinals_api_url,
            http_timeout=self.http_timeout,
            poll_interval=self.poll_interval,
            max_poll_attempts=self.max_poll_attempts,
        )

    def engine_secrets(self) -> EngineSecrets:
        return EngineSecrets(api_token=self.secret.api_token)


def load_config(environ_dict=None) -> Config:
    if environ_dict is None:
        return environ.to_config(Config)
    return environ.to_config(Config, environ=environ_dict)
