import base64
import dataclasses
import logging
import threading
import time
from collections.abc import Callable

import requests
from bitcointx.core import b2lx
from bitcointx.core.serialize import SerializationError

from ..ordinals.client import OrdinalsApiClient, OrdinalsApiError
from .assembly import AssembledTransaction
from .client import TokenApiClient, TokenApiError
from .errors import (
    BroadcastFailed,
    CosignUnavailable,
    SettlementCancelled,
    SettlementTimeout,
    SigningFailed,
    StatusUnavailable,
)
from .signing import CosignedTransaction, translate_cosign_error
from .types import TicketStatus, TransferStatus

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 5.0
DEFAULT_MAX_POLL_ATTEMPTS = 60

StatusCallback = Callable[[TransferStatus], None]


@dataclasses.dataclass(frozen=True)
class BroadcastResult:
    txid: str
    raw_tx_hex: str


class StatusPoller:
    """
    Polls a ticket until it leaves BROADCASTING.

    The callback fires only when the status changes, starting from the implicit BROADCASTING state. The
    status is read at most `max_attempts` times with `interval` seconds between reads; after the last
    read, `SettlementTimeout` is raised without sleeping again.
    """

    def __init__(
        self,
        *,
        read_status: Callable[[str], TransferStatus],
        interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        max_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS,
        sleep: Callable[[float], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if interval < 0:
            raise ValueError("interval must be non-negative")
        self._read_status = read_status
        self.interval = interval
        self.max_attempts = max_attempts
        self._sleep = sleep
        self._clock = clock

    def poll(
        self,
        ticket_id: str,
        on_status_change: StatusCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> TransferStatus:
        last_status = TicketStatus.BROADCASTING
        started_at = self._clock()

        for attempt in range(1, self.max_attempts + 1):
            if cancel_event is not None and cancel_event.is_set():
                raise SettlementCancelled(f"Polling of ticket {ticket_id} cancelled", ticket_id=ticket_id)

            status = self._read_status(ticket_id)
            if status.status != last_status:
                logger.info("Ticket %s: %s -> %s", ticket_id, last_status.value, status.status.value)
                last_status = status.status
                if on_status_change is not None:
                    on_status_change(status)

            if status.status.is_terminal:
                logger.info(
                    "Ticket %s settled as %s after %d reads (%.1fs)",
                    ticket_id,
                    status.status.value,
                    attempt,
                    self._clock() - started_at,
                )
                return status

            if attempt < self.max_attempts:
                self._wait(cancel_event)

        raise SettlementTimeout(
            f"Ticket {ticket_id} still broadcasting after {self.max_attempts} reads",
            ticket_id=ticket_id,
            attempts=self.max_attempts,
        )

    def _wait(self, cancel_event: threading.Event | None):
        if self._sleep is not None:
            self._sleep(self.interval)
        elif cancel_event is not None:
            # Wake up as soon as the poll is cancelled
            cancel_event.wait(self.interval)
        else:
            time.sleep(self.interval)


class SettlementClient:
    """
    Gets cosigned transactions onto the network and tracks tickets.

    Two flows exist: either the cosigned transaction is broadcast by us (`broadcast`), or the signed
    transaction is handed to the cosigner, which cosigns and broadcasts it and returns a ticket (`submit`).
    """

    def __init__(
        self,
        *,
        token_client: TokenApiClient,
        ordinals_client: OrdinalsApiClient,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        max_poll_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS,
        sleep: Callable[[float], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._token_client = token_client
        self._ordinals_client = ordinals_client
        self._poller = StatusPoller(
            read_status=self.get_status,
            interval=poll_interval,
            max_attempts=max_poll_attempts,
            sleep=sleep,
            clock=clock,
        )

    def broadcast(self, cosigned: CosignedTransaction) -> BroadcastResult:
        try:
            raw_tx = cosigned.raw_tx
            tx = cosigned.deserialize()
        except (SerializationError, ValueError) as e:
            raise BroadcastFailed(f"Cannot decode cosigned transaction: {e}") from e
        txid = b2lx(tx.GetTxid())

        logger.info("Broadcasting tx %s", txid)
        try:
            broadcast_txid = self._ordinals_client.broadcast(raw_tx)
        except (OrdinalsApiError, requests.RequestException) as e:
            raise BroadcastFailed(f"Failed to broadcast tx {txid}: {e}") from e
        except (KeyError, ValueError) as e:
            raise BroadcastFailed(f"Invalid broadcast response for tx {txid}: {e}") from e

        if broadcast_txid != txid:
            logger.warning("Broadcaster returned txid %s for tx %s", broadcast_txid, txid)
        return BroadcastResult(txid=txid, raw_tx_hex=raw_tx.hex())

    def submit(self, signed: AssembledTransaction) -> str:
        """
        Hand a signed transaction to the cosigner for cosigning and broadcast. Returns the ticket id
        """
        if not signed.is_fully_unlocked():
            raise SigningFailed("Transaction must be signed before submitting")
        payload = base64.b64encode(signed.serialize()).decode()
        logger.info("Submitting tx %s for cosigning and broadcast", signed.txid)
        try:
            ticket_id = self._token_client.submit_transfer(payload)
        except TokenApiError as e:
            raise translate_cosign_error(e) from e
        except requests.RequestException as e:
            raise CosignUnavailable(f"Cosigner unreachable: {e}") from e
        except ValueError as e:
            raise CosignUnavailable(f"Invalid cosigner response: {e}") from e
        if not ticket_id:
            raise BroadcastFailed("Cosigner returned no ticket id")
        logger.info("Tx %s submitted, ticket %s", signed.txid, ticket_id)
        return ticket_id

    def get_status(self, ticket_id: str) -> TransferStatus:
        try:
            response = self._token_client.get_ticket(ticket_id)
        except (TokenApiError, requests.RequestException) as e:
            raise StatusUnavailable(f"Failed to fetch status of ticket {ticket_id}: {e}") from e
        except ValueError as e:
            raise StatusUnavailable(f"Invalid status response for ticket {ticket_id}: {e}") from e
        try:
            return TransferStatus.from_api_response(response)
        except (KeyError, TypeError, ValueError) as e:
            raise StatusUnavailable(f"Invalid status response for ticket {ticket_id}: {response!r}") from e

    def poll_status(
        self,
        ticket_id: str,
        on_status_change: StatusCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> TransferStatus:
        return self._poller.poll(
            ticket_id,
            on_status_change=on_status_change,
            cancel_event=cancel_event,
        )
