from dataclasses import dataclass

from ..common.bsv.setup import BsvNetwork
from ..common.token.settlement import DEFAULT_MAX_POLL_ATTEMPTS, DEFAULT_POLL_INTERVAL_SECONDS

DEFAULT_TOKEN_API_URL = "https://proxy-api.mnee.net"
DEFAULT_ORDINALS_API_URL = "https://ordinals.1sat.app"


@dataclass()
class EngineConfig:
    network: BsvNetwork = "mainnet"
    token_api_url: str = DEFAULT_TOKEN_API_URL
    ordinals_api_url: str = DEFAULT_ORDINALS_API_URL
    http_timeout: float = 30.0
    poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS
    max_poll_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS


@dataclass(repr=False)
class EngineSecrets:
    api_token: str

    def __repr__(self):
        return "EngineSecrets(******)"
