import logging

import pytest
from bitcointx.core import CTransaction
from bitcointx.wallet import CCoinKey

from settlement.common.bsv import scripts
from settlement.common.bsv.setup import setup_bitcointx_network
from settlement.common.token.signing import key_address
from settlement.common.token.types import FundingSource, TokenConfig, TokenConfigResponse

from .mock_services import MockOrdinalsClient, MockTokenClient
from .utils.bsv import key_from_seed, make_source_tx, txid_of

logger = logging.getLogger(__name__)

# Also the default for threads started by tests
setup_bitcointx_network("mainnet")

TOKEN_ID = "ae59f3b898ec61acbdb6cc7a245fabeded0c094bf046f35206a3aec60ef88127_0"
BURN_ADDRESS = "1111111111111111111114oLvT2"
MAX_SAFE_INTEGER = 9007199254740991


@pytest.fixture()
def sender_key() -> CCoinKey:
    return key_from_seed(1)


@pytest.fixture()
def sender_address(sender_key) -> str:
    return key_address(sender_key)


@pytest.fixture()
def approver_key() -> CCoinKey:
    return key_from_seed(2)


@pytest.fixture()
def recipient_addresses() -> list[str]:
    return [key_address(key_from_seed(seed)) for seed in (3, 4, 5)]


@pytest.fixture()
def fee_address() -> str:
    return key_address(key_from_seed(6))


@pytest.fixture()
def mint_address() -> str:
    return key_address(key_from_seed(7))


@pytest.fixture()
def config_response(approver_key, fee_address, mint_address) -> TokenConfigResponse:
    return {
        "approver": bytes(approver_key.pub).hex(),
        "feeAddress": fee_address,
        "burnAddress": BURN_ADDRESS,
        "mintAddress": mint_address,
        "decimals": 5,
        "fees": [
            {"min": 0, "max": 999_999, "fee": 100},
            {"min": 1_000_000, "max": MAX_SAFE_INTEGER, "fee": 1000},
        ],
        "tokenId": TOKEN_ID,
    }


@pytest.fixture()
def token_config(config_response) -> TokenConfig:
    return TokenConfig.from_api_response(config_response)


@pytest.fixture()
def ordinals_client() -> MockOrdinalsClient:
    return MockOrdinalsClient()


@pytest.fixture()
def token_client(config_response) -> MockTokenClient:
    return MockTokenClient(config_response=config_response)


def funding_source_response(
    tx: CTransaction,
    vout: int,
    *,
    owner: str,
    amount: int,
    approver: str,
    op: str = "transfer",
    score: float = 0,
) -> dict:
    txid = txid_of(tx)
    return {
        "txid": txid,
        "vout": vout,
        "outpoint": f"{txid}_{vout}",
        "owners": [owner],
        "satoshis": tx.vout[vout].nValue,
        "score": score,
        "height": 850_000,
        "idx": 0,
        "script": bytes(tx.vout[vout].scriptPubKey).hex(),
        "data": {
            "bsv21": {"amt": amount, "dec": 5, "icon": "", "id": TOKEN_ID, "op": op, "sym": "MNEE"},
            "cosign": {"address": owner, "cosigner": approver},
        },
    }


@pytest.fixture()
def fund_address(token_client, ordinals_client, token_config):
    """
    Create one inscribed source transaction per amount, owned by `address`, and register it with the
    mock indexer and the mock ordinals API. Scores follow the argument order.
    """
    counter = iter(range(1, 1_000_000))

    def _fund(address: str, *amounts: int, op: str = "transfer") -> list[FundingSource]:
        sources = []
        for amount in amounts:
            salt = next(counter)
            locking_script = scripts.inscribed_lock(
                scripts.CosignLock.for_address(address, token_config.approver_public_key),
                scripts.Inscription.token_transfer(token_id=token_config.token_id, atomic_amount=amount),
            )
            tx = make_source_tx([locking_script], salt=salt)
            ordinals_client.add_tx(tx)
            response = funding_source_response(
                tx,
                0,
                owner=address,
                amount=amount,
                approver=token_config.approver_public_key,
                op=op,
                score=salt,
            )
            token_client.utxos.setdefault(address, []).append(response)
            sources.append(FundingSource.from_api_response(response))
        return sources

    return _fund
