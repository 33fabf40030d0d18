from decimal import Decimal

import pytest

from settlement.common.token.errors import CosignRejected, CosignRejectionReason
from settlement.common.token.types import Balance, TicketStatus, TransferStatus
from settlement.engine.service import TransferMode, TransferOutcome
from settlement.main import create_parser, main


@pytest.fixture()
def env(monkeypatch, sender_key):
    monkeypatch.setenv("SETTLEMENT_SECRET_API_TOKEN", "secret-token")
    monkeypatch.setenv("SETTLEMENT_SECRET_SIGNING_KEY", str(sender_key))
    monkeypatch.delenv("SETTLEMENT_SENTRY_DSN", raising=False)
    monkeypatch.delenv("SETTLEMENT_NETWORK", raising=False)


@pytest.fixture()
def service(mocker, env):
    mocker.patch("settlement.main.init_sentry")
    wire = mocker.patch("settlement.main.wire_transfer_engine")
    return wire.return_value.service


def test_parse_transfer():
    args = create_parser().parse_args(["transfer", "--to", "addr1", "1.5", "--to", "addr2", "2", "--ticket"])

    assert args.command == "transfer"
    assert args.to == [["addr1", "1.5"], ["addr2", "2"]]
    assert args.ticket
    assert not args.no_wait


def test_transfer_requires_recipient():
    with pytest.raises(SystemExit):
        create_parser().parse_args(["transfer"])


def test_balance_of_signing_key(service, sender_address, capsys):
    service.get_balance.return_value = Balance(atomic_amount=150_000, decimal_amount=Decimal("1.5"))

    assert main(["balance"]) == 0

    service.get_balance.assert_called_once_with(sender_address)
    assert capsys.readouterr().out == f"{sender_address}: 1.5 (150000 atomic units)\n"


def test_sync_transfer(service, recipient_addresses, capsys):
    service.transfer.return_value = TransferOutcome(txid="ab" * 32, raw_tx_hex="00")

    assert main(["transfer", "--to", recipient_addresses[0], "10"]) == 0

    request, _key = service.transfer.call_args.args
    assert [recipient.address for recipient in request] == [recipient_addresses[0]]
    assert service.transfer.call_args.kwargs == {"mode": TransferMode.SYNC}
    assert "ab" * 32 in capsys.readouterr().out


def test_failed_transfer(service, recipient_addresses, capsys):
    service.transfer.return_value = TransferOutcome.failed(
        CosignRejected("Address is frozen", reason=CosignRejectionReason.FROZEN, status_code=423)
    )

    assert main(["transfer", "--to", recipient_addresses[0], "10"]) == 1

    assert "Your address is currently frozen" in capsys.readouterr().err


def test_ticket_transfer_without_waiting(service, recipient_addresses, capsys):
    service.transfer.return_value = TransferOutcome(ticket_id="ticket-1")

    assert main(["transfer", "--to", recipient_addresses[0], "10", "--ticket", "--no-wait"]) == 0

    assert service.transfer.call_args.kwargs == {"mode": TransferMode.TICKET}
    service.wait_for_settlement.assert_not_called()
    assert "ticket-1" in capsys.readouterr().out


def test_failed_status(service, capsys):
    service.get_status.return_value = TransferStatus(
        ticket_id="ticket-1",
        status=TicketStatus.FAILED,
        created_at=None,
        updated_at=None,
        errors="double spend",
    )

    assert main(["status", "ticket-1"]) == 1

    assert "FAILED" in capsys.readouterr().out


def test_invalid_signing_key(service, monkeypatch, recipient_addresses):
    monkeypatch.setenv("SETTLEMENT_SECRET_SIGNING_KEY", "not-a-key")

    assert main(["transfer", "--to", recipient_addresses[0], "10"]) == 2
    service.transfer.assert_not_called()


def test_engine_value_errors_are_not_reported_as_bad_keys(service, recipient_addresses):
    service.transfer.side_effect = ValueError("boom")

    with pytest.raises(ValueError, match="boom"):
        main(["transfer", "--to", recipient_addresses[0], "10"])
