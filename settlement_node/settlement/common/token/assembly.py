import dataclasses
import enum
import logging

import requests
from bitcointx.core import (
    CMutableTransaction,
    CMutableTxIn,
    CMutableTxOut,
    COutPoint,
    CTransaction,
    CTxOut,
    b2lx,
    lx,
)
from bitcointx.core.script import CScript

from ..bsv import scripts
from ..bsv.beef import BeefError, parse_beef
from ..ordinals.client import OrdinalsApiClient, OrdinalsApiError, OrdinalsApiNotFound
from .errors import AncestorFetchFailed, AncestorNotFound
from .selection import Selection
from .transfers import TransferRequest
from .types import FundingSource, TokenConfig

logger = logging.getLogger(__name__)

TOKEN_OUTPUT_SATOSHIS = 1
TX_VERSION = 1
TX_LOCK_TIME = 0
DEFAULT_SEQUENCE = 0xFFFFFFFF


class SourceTransactionFetcher:
    """
    Fetches the full ancestor transaction of a funding source, needed for the spent locking script and value
    """

    def __init__(self, *, ordinals_client: OrdinalsApiClient):
        self._ordinals_client = ordinals_client

    def fetch(self, source_txid: str) -> CTransaction:
        try:
            beef_bytes = self._ordinals_client.get_beef(source_txid)
        except OrdinalsApiNotFound as e:
            raise AncestorNotFound(f"Transaction {source_txid} not found", txid=source_txid) from e
        except (OrdinalsApiError, requests.RequestException) as e:
            raise AncestorFetchFailed(f"Failed to fetch BEEF for tx {source_txid}: {e}", txid=source_txid) from e

        try:
            beef = parse_beef(beef_bytes)
        except BeefError as e:
            raise AncestorFetchFailed(f"Invalid BEEF for tx {source_txid}: {e}", txid=source_txid) from e

        # The bundle may carry ancestors of the requested tx too
        beef_tx = beef.find(source_txid)
        if beef_tx is None or beef_tx.is_txid_only:
            raise AncestorFetchFailed(f"BEEF does not contain tx {source_txid}", txid=source_txid)
        return beef_tx.tx


class OutputPurpose(enum.Enum):
    RECIPIENT = "recipient"
    FEE = "fee"
    CHANGE = "change"


@dataclasses.dataclass(frozen=True)
class AssembledInput:
    source: FundingSource
    source_tx: CTransaction

    @property
    def prevout(self) -> CTxOut:
        return self.source_tx.vout[self.source.output_index]

    @property
    def locking_script(self) -> CScript:
        return self.prevout.scriptPubKey

    @property
    def satoshis(self) -> int:
        return self.prevout.nValue


@dataclasses.dataclass(frozen=True)
class AssembledOutput:
    purpose: OutputPurpose
    address: str
    atomic_amount: int


@dataclasses.dataclass
class AssembledTransaction:
    tx: CMutableTransaction
    inputs: list[AssembledInput]
    outputs: list[AssembledOutput]

    @property
    def txid(self) -> str:
        return b2lx(self.tx.GetTxid())

    def serialize(self) -> bytes:
        return self.tx.serialize()

    def to_hex(self) -> str:
        return self.serialize().hex()

    def is_input_unlocked(self, input_index: int) -> bool:
        return len(self.tx.vin[input_index].scriptSig) > 0

    def is_fully_unlocked(self) -> bool:
        return all(self.is_input_unlocked(i) for i in range(len(self.tx.vin)))


class TransactionAssembler:
    """
    Builds the unsigned transfer transaction: one input per selected funding source and one 1-sat
    inscribed cosign output per recipient, then the fee output and the change output.
    """

    def __init__(self, *, source_fetcher: SourceTransactionFetcher):
        self._source_fetcher = source_fetcher

    def assemble(
        self,
        selection: Selection,
        request: TransferRequest,
        config: TokenConfig,
    ) -> AssembledTransaction:
        tx = CMutableTransaction(vin=[], vout=[], nLockTime=TX_LOCK_TIME, nVersion=TX_VERSION)
        inputs = []
        outputs = []

        for source in selection.selected:
            source_tx = self._source_fetcher.fetch(source.source_txid)
            if source.output_index >= len(source_tx.vout):
                raise AncestorFetchFailed(
                    f"Transaction {source.source_txid} has no output {source.output_index}",
                    txid=source.source_txid,
                )
            logger.debug("Adding input %s:%s (%d)", source.source_txid, source.output_index, source.atomic_amount)
            tx.vin.append(
                CMutableTxIn(
                    prevout=COutPoint(lx(source.source_txid), source.output_index),
                    scriptSig=CScript(),
                    nSequence=DEFAULT_SEQUENCE,
                )
            )
            inputs.append(AssembledInput(source=source, source_tx=source_tx))

        def add_output(purpose: OutputPurpose, address: str, atomic_amount: int):
            tx.vout.append(
                CMutableTxOut(
                    nValue=TOKEN_OUTPUT_SATOSHIS,
                    scriptPubKey=create_token_locking_script(address, atomic_amount, config),
                )
            )
            outputs.append(AssembledOutput(purpose=purpose, address=address, atomic_amount=atomic_amount))

        # Indexers key off output positions, so this order is fixed
        for recipient in request:
            add_output(OutputPurpose.RECIPIENT, recipient.address, recipient.atomic_amount(config.decimals))
        if selection.fee > 0:
            add_output(OutputPurpose.FEE, config.fee_address, selection.fee)
        if selection.change > 0:
            add_output(OutputPurpose.CHANGE, selection.change_address, selection.change)

        tokens_out = sum(output.atomic_amount for output in outputs)
        assert tokens_out == selection.total_in, f"token amounts do not add up: {tokens_out} != {selection.total_in}"

        return AssembledTransaction(tx=tx, inputs=inputs, outputs=outputs)


def create_token_locking_script(address: str, atomic_amount: int, config: TokenConfig) -> CScript:
    return scripts.inscribed_lock(
        scripts.CosignLock.for_address(address, config.approver_public_key),
        scripts.Inscription.token_transfer(token_id=config.token_id, atomic_amount=atomic_amount),
    )
