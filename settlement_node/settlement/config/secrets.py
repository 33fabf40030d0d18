"""
Secrets come either from environment variables or, when SETTLEMENT_ENCRYPTED_SECRETS is set, from a JSON
object of decrypted secrets read from stdin once at import time.
"""

import json
import logging
import os
import sys
from getpass import getpass
from typing import Any

import environ
from environ._environ_config import RAISE  # noqa

logger = logging.getLogger(__name__)


def wait_for_secrets() -> dict[str, Any]:
    """
    Wait for the user to provide decrypted secrets as a single-line JSON object, keyed by the lowercase
    environment variable name (e.g. `settlement_secret_api_token`).
    """
    try:
        secrets = json.loads(getpass("Provide decrypted secrets: "))
    except json.JSONDecodeError:
        logger.error("Invalid JSON provided for secrets.")
        sys.exit(1)
    if not isinstance(secrets, dict):
        logger.error("Secrets must be a JSON object.")
        sys.exit(1)
    return secrets


ENCRYPTED_SECRETS_ENABLED = bool(os.environ.get("SETTLEMENT_ENCRYPTED_SECRETS"))


if ENCRYPTED_SECRETS_ENABLED:
    _secrets = wait_for_secrets()
else:
    logger.debug("Encrypted secrets not enabled, reading secrets from environment variables.")
    _secrets = {}


def secret(
    name: str,
    default: Any = RAISE,
) -> Any:
    if ENCRYPTED_SECRETS_ENABLED:
        logger.info("Getting secret %s from provided secrets.", name)
        value = _secrets.get(name, default)
        if value is RAISE:
            raise ValueError(f"Secret {name} not found in provided secrets.")
    else:
        logger.debug("Falling back to environ for secret %s.", name)
        value = environ.var(default=default)
    return value
