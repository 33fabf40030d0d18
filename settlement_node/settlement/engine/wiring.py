from dataclasses import dataclass

from ..common.bsv.setup import setup_bitcointx_network
from ..common.ordinals.client import OrdinalsApiClient
from ..common.token.assembly import SourceTransactionFetcher, TransactionAssembler
from ..common.token.client import TokenApiClient
from ..common.token.config import ConfigResolver
from ..common.token.funding import AddressLockRegistry, BalanceAggregator, FundingSourceProvider
from ..common.token.selection import CoinSelector
from ..common.token.settlement import SettlementClient
from ..common.token.signing import SigningCoordinator
from .config import EngineConfig, EngineSecrets
from .service import TransferService


@dataclass
class TransferEngineWiring:
    service: TransferService
    token_client: TokenApiClient
    ordinals_client: OrdinalsApiClient
    settlement_client: SettlementClient


def wire_transfer_engine(
    *,
    config: EngineConfig,
    secrets: EngineSecrets,
    address_locks: AddressLockRegistry | None = None,
) -> TransferEngineWiring:
    setup_bitcointx_network(config.network)

    token_client = TokenApiClient(
        base_url=config.token_api_url,
        api_token=secrets.api_token,
        timeout=config.http_timeout,
    )
    ordinals_client = OrdinalsApiClient(
        base_url=config.ordinals_api_url,
        timeout=config.http_timeout,
    )

    config_resolver = ConfigResolver(token_client=token_client)
    funding_source_provider = FundingSourceProvider(token_client=token_client)
    settlement_client = SettlementClient(
        token_client=token_client,
        ordinals_client=ordinals_client,
        poll_interval=config.poll_interval,
        max_poll_attempts=config.max_poll_attempts,
    )

    service = TransferService(
        config_resolver=config_resolver,
        funding_source_provider=funding_source_provider,
        balance_aggregator=BalanceAggregator(
            config_resolver=config_resolver,
            funding_source_provider=funding_source_provider,
        ),
        coin_selector=CoinSelector(),
        assembler=TransactionAssembler(
            source_fetcher=SourceTransactionFetcher(ordinals_client=ordinals_client),
        ),
        signing_coordinator=SigningCoordinator(token_client=token_client),
        settlement_client=settlement_client,
        address_locks=address_locks or AddressLockRegistry(),
    )

    return TransferEngineWiring(
        service=service,
        token_client=token_client,
        ordinals_client=ordinals_client,
        settlement_client=settlement_client,
    )
