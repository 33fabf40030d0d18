import threading

import pytest
from bitcointx.core import CTransaction, b2lx

from settlement.common.token.assembly import SourceTransactionFetcher, TransactionAssembler
from settlement.common.token.config import ConfigResolver
from settlement.common.token.errors import (
    AncestorNotFound,
    ConfigUnavailable,
    CosignRejected,
    CosignRejectionReason,
    FeeScheduleGap,
    InsufficientFunds,
    InvalidRequest,
    SettlementCancelled,
)
from settlement.common.token.funding import AddressLockRegistry, BalanceAggregator, FundingSourceProvider
from settlement.common.token.selection import CoinSelector
from settlement.common.token.settlement import SettlementClient
from settlement.common.token.signing import SigningCoordinator
from settlement.common.token.transfers import TransferRecipient, TransferRequest
from settlement.common.token.types import TicketStatus
from settlement.engine.service import TransferMode, TransferOutcome, TransferService
from tests.mock_services import MockCosigner, token_api_error


@pytest.fixture()
def sleeps():
    return []


@pytest.fixture()
def service(token_client, ordinals_client, sleeps):
    config_resolver = ConfigResolver(token_client=token_client)
    funding_source_provider = FundingSourceProvider(token_client=token_client)
    return TransferService(
        config_resolver=config_resolver,
        funding_source_provider=funding_source_provider,
        balance_aggregator=BalanceAggregator(
            config_resolver=config_resolver,
            funding_source_provider=funding_source_provider,
        ),
        coin_selector=CoinSelector(),
        assembler=TransactionAssembler(source_fetcher=SourceTransactionFetcher(ordinals_client=ordinals_client)),
        signing_coordinator=SigningCoordinator(token_client=token_client),
        settlement_client=SettlementClient(
            token_client=token_client,
            ordinals_client=ordinals_client,
            sleep=sleeps.append,
        ),
        address_locks=AddressLockRegistry(),
    )


@pytest.fixture(autouse=True)
def cosigner(token_client, ordinals_client, approver_key):
    token_client.cosigner = MockCosigner(approver_key=approver_key, ordinals_client=ordinals_client)
    return token_client.cosigner


def test_ten_unit_transfer(service, token_client, ordinals_client, fund_address, sender_key, sender_address, recipient_addresses):
    fund_address(sender_address, 600_000, 500_000)

    outcome = service.transfer(TransferRequest.single(recipient_addresses[0], "10"), sender_key)

    assert outcome.is_settled
    assert not outcome.is_pending and not outcome.is_failed
    assert token_client.calls == ["get_config", "get_utxos", "cosign_transfer"]
    assert len(ordinals_client.broadcasts) == 1
    assert outcome.raw_tx_hex == ordinals_client.broadcasts[0].hex()
    assert outcome.txid == b2lx(CTransaction.deserialize(ordinals_client.broadcasts[0]).GetTxid())


def test_multiple_recipients(service, ordinals_client, fund_address, sender_key, sender_address, recipient_addresses):
    fund_address(sender_address, 2_000_000)
    request = TransferRequest(
        [
            TransferRecipient(address=recipient_addresses[0], amount="1.5"),
            TransferRecipient(address=recipient_addresses[1], amount="2.5"),
        ]
    )

    outcome = service.transfer(request, sender_key)

    assert outcome.is_settled
    assert len(ordinals_client.broadcasts) == 1


def test_ticket_transfer(service, token_client, fund_address, sender_key, sender_address, recipient_addresses):
    fund_address(sender_address, 600_000, 500_000)
    token_client.ticket_responses["ticket-1"] = [
        {"id": "ticket-1", "status": "BROADCASTING", "createdAt": "2024-05-01T12:00:00Z", "updatedAt": None},
        {
            "id": "ticket-1",
            "status": "SUCCESS",
            "tx_id": "ab" * 32,
            "createdAt": "2024-05-01T12:00:00Z",
            "updatedAt": "2024-05-01T12:00:05Z",
        },
    ]

    outcome = service.transfer(
        TransferRequest.single(recipient_addresses[0], "10"),
        sender_key,
        mode=TransferMode.TICKET,
    )

    assert outcome == TransferOutcome(ticket_id="ticket-1")
    assert "cosign_transfer" not in token_client.calls

    settled = service.wait_for_settlement(outcome.ticket_id)
    assert settled.status is TicketStatus.SUCCESS
    assert settled.txid == "ab" * 32


def test_insufficient_funds_stops_after_funding_fetch(
    service, token_client, ordinals_client, fund_address, sender_key, sender_address, recipient_addresses
):
    fund_address(sender_address, 400_000, 500_000)

    outcome = service.transfer(TransferRequest.single(recipient_addresses[0], "10"), sender_key)

    assert outcome.is_failed
    assert isinstance(outcome.error, InsufficientFunds)
    assert outcome.error_message == "Insufficient token balance"
    assert token_client.calls == ["get_config", "get_utxos"]
    assert ordinals_client.beef_requests == []
    assert ordinals_client.broadcasts == []


def test_insufficient_funds_for_fee(service, ordinals_client, fund_address, sender_key, sender_address, recipient_addresses):
    fund_address(sender_address, 1_000_000)

    outcome = service.transfer(TransferRequest.single(recipient_addresses[0], "10"), sender_key)

    assert isinstance(outcome.error, InsufficientFunds)
    assert outcome.error.required == 1_001_000
    assert ordinals_client.beef_requests == []


def test_frozen_sender_is_not_broadcast(
    service, token_client, ordinals_client, fund_address, sender_key, sender_address, recipient_addresses
):
    fund_address(sender_address, 600_000, 500_000)
    token_client.cosign_error = token_api_error(423, "Address is frozen")

    outcome = service.transfer(TransferRequest.single(recipient_addresses[0], "10"), sender_key)

    assert outcome.is_failed
    assert isinstance(outcome.error, CosignRejected)
    assert outcome.error.reason is CosignRejectionReason.FROZEN
    assert outcome.error_message == "Your address is currently frozen and cannot send tokens"
    assert ordinals_client.broadcasts == []


def test_invalid_request_makes_no_calls(service, token_client, sender_key):
    outcome = service.transfer(TransferRequest([]), sender_key)

    assert isinstance(outcome.error, InvalidRequest)
    assert token_client.calls == []


def test_invalid_recipient_makes_no_calls(service, token_client, sender_key):
    outcome = service.transfer(TransferRequest.single("bogus", "1"), sender_key)

    assert isinstance(outcome.error, InvalidRequest)
    assert token_client.calls == []


def test_config_unavailable(service, token_client, mocker, sender_key, recipient_addresses):
    mocker.patch.object(token_client, "get_config", side_effect=token_api_error(500, "down"))

    outcome = service.transfer(TransferRequest.single(recipient_addresses[0], "1"), sender_key)

    assert isinstance(outcome.error, ConfigUnavailable)
    assert "get_utxos" not in token_client.calls


@pytest.mark.parametrize(
    "field,value",
    [("approver", "zz"), ("approver", "02" + "00" * 32), ("feeAddress", "not-an-address")],
)
def test_malformed_config_fails_before_funding_fetch(
    service, token_client, sender_key, recipient_addresses, field, value
):
    token_client.config_response[field] = value

    outcome = service.transfer(TransferRequest.single(recipient_addresses[0], "1"), sender_key)

    assert isinstance(outcome.error, ConfigUnavailable)
    assert token_client.calls == ["get_config"]


def test_fee_schedule_gap(service, token_client, fund_address, sender_key, sender_address, recipient_addresses):
    token_client.config_response["fees"] = [{"min": 0, "max": 100, "fee": 1}]
    fund_address(sender_address, 2_000_000)

    outcome = service.transfer(TransferRequest.single(recipient_addresses[0], "10"), sender_key)

    assert isinstance(outcome.error, FeeScheduleGap)
    assert outcome.error_message == "Fee ranges inadequate"


def test_burn_transfer_has_no_fee(service, token_client, fund_address, sender_key, sender_address, token_config):
    fund_address(sender_address, 1_000_000)

    outcome = service.transfer(TransferRequest.single(token_config.burn_address, "10"), sender_key)

    assert outcome.is_settled


def test_missing_ancestor(service, ordinals_client, fund_address, sender_key, sender_address, recipient_addresses):
    sources = fund_address(sender_address, 2_000_000)
    del ordinals_client.txs[sources[0].source_txid]

    outcome = service.transfer(TransferRequest.single(recipient_addresses[0], "10"), sender_key)

    assert isinstance(outcome.error, AncestorNotFound)
    assert ordinals_client.broadcasts == []


def test_transfer_only_spends_signing_key_sources(
    service, token_client, fund_address, sender_key, sender_address, recipient_addresses
):
    fund_address(recipient_addresses[1], 5_000_000)

    outcome = service.transfer(TransferRequest.single(recipient_addresses[0], "10"), sender_key)

    assert isinstance(outcome.error, InsufficientFunds)


def test_get_balance(service, fund_address, sender_address):
    fund_address(sender_address, 600_000, 500_000)
    balance = service.get_balance(sender_address)
    assert balance.atomic_amount == 1_100_000


def test_wait_for_settlement_can_be_cancelled(service, token_client):
    token_client.ticket_responses["ticket-1"] = [
        {"id": "ticket-1", "status": "BROADCASTING", "createdAt": None, "updatedAt": None},
    ]
    cancel_event = threading.Event()
    cancel_event.set()

    with pytest.raises(SettlementCancelled) as excinfo:
        service.wait_for_settlement("ticket-1", cancel_event=cancel_event)
    assert excinfo.value.ticket_id == "ticket-1"


def test_outcome_is_exactly_one_variant():
    with pytest.raises(ValueError):
        TransferOutcome()
    with pytest.raises(ValueError):
        TransferOutcome(txid="ab" * 32, raw_tx_hex="00", ticket_id="ticket-1")
    with pytest.raises(ValueError):
        TransferOutcome(txid="ab" * 32)


def test_concurrent_transfers_from_one_address_do_not_share_sources(
    service, token_client, ordinals_client, fund_address, sender_key, sender_address, recipient_addresses
):
    fund_address(sender_address, 1_001_000)
    spent = set()
    original_get_utxos = token_client.get_utxos

    def get_unspent(addresses):
        return [utxo for utxo in original_get_utxos(addresses) if (utxo["txid"], utxo["vout"]) not in spent]

    original_broadcast = ordinals_client.broadcast

    def broadcast(raw_tx):
        for txin in CTransaction.deserialize(raw_tx).vin:
            spent.add((b2lx(txin.prevout.hash), txin.prevout.n))
        return original_broadcast(raw_tx)

    token_client.get_utxos = get_unspent
    ordinals_client.broadcast = broadcast
    outcomes = []

    def run():
        outcomes.append(service.transfer(TransferRequest.single(recipient_addresses[0], "10"), sender_key))

    threads = [threading.Thread(target=run) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(10)

    assert sorted(outcome.is_settled for outcome in outcomes) == [False, True]
    assert len(ordinals_client.broadcasts) == 1
