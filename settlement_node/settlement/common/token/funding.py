import contextlib
import logging
import threading
from collections.abc import Iterable, Iterator

import requests

from ..utils import to_decimal
from .client import TokenApiClient, TokenApiError
from .config import ConfigResolver
from .errors import IndexUnavailable
from .types import (
    DEFAULT_OPERATION_FILTER,
    Balance,
    FundingSource,
)

logger = logging.getLogger(__name__)


def funding_source_sort_key(source: FundingSource):
    return source.ranking_score, source.source_txid, source.output_index


class FundingSourceProvider:
    def __init__(self, *, token_client: TokenApiClient):
        self._token_client = token_client

    def fetch_funding_sources(
        self,
        address: str,
        operation_filter: Iterable[str] = DEFAULT_OPERATION_FILTER,
    ) -> list[FundingSource]:
        """
        Fetch the spendable token outputs of `address`, in a stable order (by index ranking).

        The index is queried for everything the address owns; `operation_filter` is applied here.
        """
        try:
            raw_sources = self._token_client.get_utxos([address])
        except (TokenApiError, requests.RequestException) as e:
            raise IndexUnavailable(f"Failed to fetch funding sources for {address}: {e}") from e
        except ValueError as e:
            raise IndexUnavailable(f"Invalid funding source response for {address}: {e}") from e

        operations = {op.lower() for op in operation_filter}
        sources = []
        for raw_source in raw_sources:
            try:
                source = FundingSource.from_api_response(raw_source)
            except (KeyError, TypeError, ValueError) as e:
                raise IndexUnavailable(f"Invalid funding source in response: {raw_source!r}") from e
            if operations and source.operation_kind not in operations:
                continue
            sources.append(source)

        sources.sort(key=funding_source_sort_key)
        logger.debug(
            "Fetched %d funding sources for %s (%d matching %s)",
            len(raw_sources),
            address,
            len(sources),
            sorted(operations),
        )
        return sources


class BalanceAggregator:
    def __init__(
        self,
        *,
        config_resolver: ConfigResolver,
        funding_source_provider: FundingSourceProvider,
    ):
        self._config_resolver = config_resolver
        self._funding_source_provider = funding_source_provider

    def get_balance(self, address: str) -> Balance:
        config = self._config_resolver.fetch_config()
        sources = self._funding_source_provider.fetch_funding_sources(address)
        atomic_amount = sum_atomic_amounts(sources)
        return Balance(
            atomic_amount=atomic_amount,
            decimal_amount=to_decimal(atomic_amount, config.decimals),
        )


def sum_atomic_amounts(sources: Iterable[FundingSource]) -> int:
    return sum(source.atomic_amount for source in sources)


class AddressLockRegistry:
    """
    Per-address locks, so that funding sources of one address are selected and spent by one transfer at a time
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _get_lock(self, address: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(address)
            if lock is None:
                lock = self._locks[address] = threading.Lock()
            return lock

    @contextlib.contextmanager
    def locked(self, address: str) -> Iterator[None]:
        lock = self._get_lock(address)
        if not lock.acquire(blocking=False):
            logger.info("Waiting for another transfer from %s to finish", address)
            lock.acquire()
        try:
            yield
        finally:
            lock.release()
