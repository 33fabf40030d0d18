import argparse
import logging
import os
import signal
import sys
import threading

from bitcointx.core.key import CKey

from .common.token.errors import TransferError
from .common.token.signing import key_address, load_signing_key
from .common.token.transfers import TransferRecipient, TransferRequest
from .common.token.types import TicketStatus, TransferStatus
from .config import load_config
from .decimalcontext import set_decimal_context
from .engine.service import TransferMode
from .engine.wiring import wire_transfer_engine
from .sentry import init_sentry

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", logging.INFO),
    format="%(asctime)s:%(name)s:%(levelname)s:%(message)s",
)

logger = logging.getLogger(__name__)


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="settlement", description="Transfer cosigned tokens and track settlement")
    subparsers = parser.add_subparsers(dest="command", required=True)

    balance = subparsers.add_parser("balance", help="Show the token balance of an address")
    balance.add_argument("address", nargs="?", help="defaults to the address of the configured signing key")

    transfer = subparsers.add_parser("transfer", help="Transfer tokens from the configured signing key")
    transfer.add_argument(
        "--to",
        nargs=2,
        action="append",
        required=True,
        metavar=("ADDRESS", "AMOUNT"),
        help="recipient and decimal amount, can be repeated",
    )
    transfer.add_argument(
        "--ticket",
        action="store_true",
        help="let the cosigner broadcast the transaction and track it by ticket",
    )
    transfer.add_argument("--no-wait", action="store_true", help="with --ticket, do not wait for settlement")

    status = subparsers.add_parser("status", help="Show the status of a transfer ticket")
    status.add_argument("ticket_id")
    status.add_argument("--wait", action="store_true", help="poll until the ticket settles")

    return parser


def print_status(status: TransferStatus):
    print(f"Ticket {status.ticket_id}: {status.status.value}")
    if status.txid:
        print(f"  txid: {status.txid}")
    if status.action_requested:
        print(f"  action requested: {status.action_requested}")
    if status.errors:
        print(f"  errors: {status.errors}")


def load_key(value: str) -> CKey | None:
    try:
        return load_signing_key(value)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return None


def install_cancel_handler() -> threading.Event:
    cancel_event = threading.Event()

    def handle_sigint(signum, frame):
        logger.info("Interrupted, cancelling")
        cancel_event.set()

    signal.signal(signal.SIGINT, handle_sigint)
    return cancel_event


def main(argv=None) -> int:
    args = create_parser().parse_args(argv)

    set_decimal_context()
    config = load_config()
    init_sentry(config.sentry_dsn)

    wiring = wire_transfer_engine(
        config=config.engine_config(),
        secrets=config.engine_secrets(),
    )
    service = wiring.service

    try:
        if args.command == "balance":
            address = args.address
            if not address:
                if not config.secret.signing_key:
                    print("No address given and no signing key configured", file=sys.stderr)
                    return 2
                key = load_key(config.secret.signing_key)
                if key is None:
                    return 2
                address = key_address(key)
            balance = service.get_balance(address)
            print(f"{address}: {balance.decimal_amount} ({balance.atomic_amount} atomic units)")
            return 0

        if args.command == "status":
            if args.wait:
                status = service.wait_for_settlement(
                    args.ticket_id,
                    on_status_change=print_status,
                    cancel_event=install_cancel_handler(),
                )
            else:
                status = service.get_status(args.ticket_id)
                print_status(status)
            return 1 if status.status is TicketStatus.FAILED else 0

        if not config.secret.signing_key:
            print("SETTLEMENT_SECRET_SIGNING_KEY is not set", file=sys.stderr)
            return 2
        key = load_key(config.secret.signing_key)
        if key is None:
            return 2
        request = TransferRequest(TransferRecipient(address=address, amount=amount) for address, amount in args.to)
        mode = TransferMode.TICKET if args.ticket else TransferMode.SYNC

        outcome = service.transfer(request, key, mode=mode)
        if outcome.is_failed:
            print(f"Transfer failed: {outcome.error_message}", file=sys.stderr)
            return 1
        if outcome.is_settled:
            print(f"Transfer broadcast: {outcome.txid}")
            return 0

        print(f"Transfer submitted, ticket {outcome.ticket_id}")
        if args.no_wait:
            return 0
        status = service.wait_for_settlement(
            outcome.ticket_id,
            on_status_change=print_status,
            cancel_event=install_cancel_handler(),
        )
        return 1 if status.status is TicketStatus.FAILED else 0
    except TransferError as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e.user_message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
