import logging

import requests

from .client import TokenApiClient, TokenApiError
from .errors import ConfigUnavailable
from .types import TokenConfig

logger = logging.getLogger(__name__)


class ConfigResolver:
    """
    Fetches the token's network-wide parameters. Nothing is cached: every operation re-fetches.
    """

    def __init__(self, *, token_client: TokenApiClient):
        self._token_client = token_client

    def fetch_config(self) -> TokenConfig:
        try:
            response = self._token_client.get_config()
        except (TokenApiError, requests.RequestException) as e:
            raise ConfigUnavailable(f"Failed to fetch token config: {e}") from e
        except ValueError as e:
            # JSON decoding errors
            raise ConfigUnavailable(f"Invalid token config response: {e}") from e

        try:
            config = TokenConfig.from_api_response(response)
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigUnavailable(f"Invalid token config response: {response!r}") from e

        # Fee tiers are only enforced when a transfer is priced, but a broken schedule is worth knowing early
        problems = config.fee_schedule_problems()
        if problems:
            logger.warning("Fee schedule of token %s has problems: %s", config.token_id, "; ".join(problems))
        return config
