import dataclasses
import enum
import logging
import threading

from bitcointx.core.key import CKey

from ..common.token.assembly import TransactionAssembler
from ..common.token.config import ConfigResolver
from ..common.token.errors import InsufficientFunds, TransferError
from ..common.token.funding import (
    AddressLockRegistry,
    BalanceAggregator,
    FundingSourceProvider,
    sum_atomic_amounts,
)
from ..common.token.selection import CoinSelector
from ..common.token.settlement import BroadcastResult, SettlementClient, StatusCallback
from ..common.token.signing import SigningCoordinator, key_address
from ..common.token.transfers import TransferRequest
from ..common.token.types import Balance, TransferStatus

logger = logging.getLogger(__name__)


class TransferMode(enum.Enum):
    # Cosign, then broadcast the cosigned transaction ourselves
    SYNC = "sync"
    # Hand the signed transaction to the cosigner, which broadcasts it and returns a ticket
    TICKET = "ticket"


@dataclasses.dataclass(frozen=True)
class TransferOutcome:
    """
    Result of one transfer. Exactly one of these is set: `txid` (with `raw_tx_hex`), `ticket_id`
    or `error_message` (with the `error` that caused it).
    """

    txid: str | None = None
    raw_tx_hex: str | None = None
    ticket_id: str | None = None
    error_message: str | None = None
    error: TransferError | None = None

    def __post_init__(self):
        variants = [self.txid is not None, self.ticket_id is not None, self.error_message is not None]
        if sum(variants) != 1:
            raise ValueError(f"TransferOutcome must be exactly one of settled, pending or failed: {self!r}")
        if (self.txid is None) != (self.raw_tx_hex is None):
            raise ValueError("txid and raw_tx_hex go together")

    @classmethod
    def settled(cls, result: BroadcastResult) -> "TransferOutcome":
        return cls(txid=result.txid, raw_tx_hex=result.raw_tx_hex)

    @classmethod
    def pending(cls, ticket_id: str) -> "TransferOutcome":
        return cls(ticket_id=ticket_id)

    @classmethod
    def failed(cls, error: TransferError) -> "TransferOutcome":
        return cls(error_message=error.user_message, error=error)

    @property
    def is_settled(self) -> bool:
        return self.txid is not None

    @property
    def is_pending(self) -> bool:
        return self.ticket_id is not None

    @property
    def is_failed(self) -> bool:
        return self.error_message is not None


class TransferService:
    """
    Runs a token transfer end to end: config, funding sources, selection, assembly, signing,
    cosigning and broadcast (or ticket submission).
    """

    def __init__(
        self,
        *,
        config_resolver: ConfigResolver,
        funding_source_provider: FundingSourceProvider,
        balance_aggregator: BalanceAggregator,
        coin_selector: CoinSelector,
        assembler: TransactionAssembler,
        signing_coordinator: SigningCoordinator,
        settlement_client: SettlementClient,
        address_locks: AddressLockRegistry,
    ):
        self._config_resolver = config_resolver
        self._funding_source_provider = funding_source_provider
        self._balance_aggregator = balance_aggregator
        self._coin_selector = coin_selector
        self._assembler = assembler
        self._signing_coordinator = signing_coordinator
        self._settlement_client = settlement_client
        self._address_locks = address_locks

    def transfer(
        self,
        request: TransferRequest,
        key: CKey,
        *,
        mode: TransferMode = TransferMode.SYNC,
    ) -> TransferOutcome:
        try:
            outcome = self._execute_transfer(request, key, mode)
        except TransferError as e:
            logger.warning("Transfer %r failed: %r", request, e)
            return TransferOutcome.failed(e)
        logger.info("Transfer %r done: %s", request, outcome.txid or f"ticket {outcome.ticket_id}")
        return outcome

    def _execute_transfer(self, request: TransferRequest, key: CKey, mode: TransferMode) -> TransferOutcome:
        request.assert_valid()
        sender_address = key_address(key)

        config = self._config_resolver.fetch_config()
        request.assert_valid(config.decimals)
        target_atomic_amount = request.total_atomic_amount(config.decimals)
        is_burn_destination = request.has_recipient(config.burn_address)

        with self._address_locks.locked(sender_address):
            funding_sources = self._funding_source_provider.fetch_funding_sources(sender_address)
            available = sum_atomic_amounts(funding_sources)
            if available < target_atomic_amount:
                raise InsufficientFunds(
                    f"{sender_address} has {available}, transfer needs {target_atomic_amount}",
                    required=target_atomic_amount,
                    available=available,
                )

            selection = self._coin_selector.select(
                funding_sources,
                target_atomic_amount,
                config.fee_tiers,
                is_burn_destination,
            )
            logger.info(
                "Selected %d funding sources of %s: in %d, amount %d, fee %d, change %d",
                len(selection.selected),
                sender_address,
                selection.total_in,
                selection.target,
                selection.fee,
                selection.change,
            )

            assembled = self._assembler.assemble(selection, request, config)
            signed = self._signing_coordinator.sign(assembled, key)

            if mode is TransferMode.TICKET:
                ticket_id = self._settlement_client.submit(signed)
                return TransferOutcome.pending(ticket_id)

            cosigned = self._signing_coordinator.cosign(signed)
            result = self._settlement_client.broadcast(cosigned)
            return TransferOutcome.settled(result)

    def get_balance(self, address: str) -> Balance:
        return self._balance_aggregator.get_balance(address)

    def get_status(self, ticket_id: str) -> TransferStatus:
        return self._settlement_client.get_status(ticket_id)

    def wait_for_settlement(
        self,
        ticket_id: str,
        on_status_change: StatusCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> TransferStatus:
        return self._settlement_client.poll_status(
            ticket_id,
            on_status_change=on_status_change,
            cancel_event=cancel_event,
        )
