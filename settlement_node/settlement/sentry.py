import logging
import warnings

import sentry_sdk

from .common.token.errors import CosignRejected, InsufficientFunds, InvalidRequest

logger = logging.getLogger(__name__)

# Errors caused by the user's input or account state, not by a fault in the engine
USER_ERRORS = (InvalidRequest, CosignRejected, InsufficientFunds)


def before_send(event, hint):
    if "exc_info" in hint:
        exc_value = hint["exc_info"][1]
        if isinstance(exc_value, USER_ERRORS):
            logger.info("Not reporting user error to Sentry: %s", exc_value)
            return None
    return event


def init_sentry(dsn):
    if not dsn:
        warnings.warn("Sentry DSN not set, Sentry disabled", stacklevel=2)
        return

    logger.info("Initializing Sentry")
    sentry_sdk.init(
        dsn=dsn,
        before_send=before_send,
    )
