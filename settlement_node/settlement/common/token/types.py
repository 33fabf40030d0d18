import dataclasses
import enum
from datetime import datetime
from decimal import Decimal
from typing import Any, Literal, TypedDict

from bitcointx.core.key import CPubKey

from ..bsv.scripts import address_to_pubkey_hash

OperationKind = Literal["transfer", "burn", "deploy+mint"]
DEFAULT_OPERATION_FILTER: tuple[OperationKind, ...] = ("transfer", "deploy+mint")


class FeeTierDict(TypedDict):
    min: int
    max: int
    fee: int


class TokenConfigResponse(TypedDict):
    # Example:
    # {"approver": "020a177d6a5e6f3a8689acd2e313bd1cf0dcf5a243d1cc67b7218602aee9e04b2f",
    #  "feeAddress": "19Vq2TV8aVhFNLQkhDMdnEQ7zT96x6F3PK", "burnAddress": "1111111111111111111114oLvT2",
    #  "mintAddress": "1KUhcmwNCTcPRAAL7B3TLd2vRwLGMdSZGQ", "decimals": 5,
    #  "fees": [{"min": 0, "max": 1000000, "fee": 100}, {"min": 1000001, "max": 9007199254740991, "fee": 1000}],
    #  "tokenId": "ae59f3b898ec61acbdb6cc7a245fabeded0c094bf046f35206a3aec60ef88127_0"}
    approver: str
    feeAddress: str
    burnAddress: str
    mintAddress: str
    fees: list[FeeTierDict]
    decimals: int
    tokenId: str


class Bsv21Dict(TypedDict):
    amt: int
    dec: int
    icon: str
    id: str
    op: str
    sym: str


class CosignDict(TypedDict):
    address: str
    cosigner: str


class FundingSourceDataDict(TypedDict):
    bsv21: Bsv21Dict
    cosign: CosignDict


class FundingSourceResponse(TypedDict):
    data: FundingSourceDataDict
    height: int
    idx: int
    outpoint: str
    owners: list[str]
    satoshis: int
    score: float
    script: str
    txid: str
    vout: int


class TicketResponse(TypedDict):
    id: str
    tx_id: str | None
    tx_hex: str | None
    action_requested: str | None
    status: str
    createdAt: str
    updatedAt: str
    errors: Any


@dataclasses.dataclass(frozen=True)
class FeeTier:
    min: int
    max: int
    fee: int

    def contains(self, atomic_amount: int) -> bool:
        return self.min <= atomic_amount <= self.max


@dataclasses.dataclass(frozen=True)
class TokenConfig:
    approver_public_key: str
    fee_address: str
    burn_address: str
    mint_address: str
    fee_tiers: tuple[FeeTier, ...]
    decimals: int
    token_id: str

    @classmethod
    def from_api_response(cls, response: TokenConfigResponse) -> "TokenConfig":
        config = cls(
            approver_public_key=response["approver"],
            fee_address=response["feeAddress"],
            burn_address=response["burnAddress"],
            mint_address=response["mintAddress"],
            fee_tiers=tuple(FeeTier(min=int(t["min"]), max=int(t["max"]), fee=int(t["fee"])) for t in response["fees"]),
            decimals=int(response["decimals"]),
            token_id=response["tokenId"],
        )
        config.assert_valid()
        return config

    def assert_valid(self):
        try:
            approver = bytes.fromhex(self.approver_public_key)
        except (TypeError, ValueError) as e:
            raise ValueError(f"approver {self.approver_public_key!r} is not hex") from e
        if not CPubKey(approver).is_fullyvalid():
            raise ValueError(f"approver {self.approver_public_key!r} is not a valid public key")
        for address in (self.fee_address, self.burn_address, self.mint_address):
            address_to_pubkey_hash(address)
        if self.decimals < 0:
            raise ValueError(f"invalid decimals: {self.decimals}")

    def fee_schedule_problems(self) -> list[str]:
        """
        Describe gaps and overlaps between consecutive fee tiers (empty if the schedule is contiguous)
        """
        problems = []
        tiers = sorted(self.fee_tiers, key=lambda t: (t.min, t.max))
        if not tiers:
            return ["fee schedule is empty"]
        if tiers[0].min > 0:
            problems.append(f"amounts below {tiers[0].min} have no fee tier")
        for tier in tiers:
            if tier.min > tier.max:
                problems.append(f"tier {tier} has min > max")
        for prev, cur in zip(tiers, tiers[1:]):
            if cur.min > prev.max + 1:
                problems.append(f"amounts {prev.max + 1}..{cur.min - 1} have no fee tier")
            elif cur.min <= prev.max:
                problems.append(f"tiers {prev} and {cur} overlap")
        return problems


@dataclasses.dataclass(frozen=True)
class FundingSource:
    source_txid: str
    output_index: int
    owner_address: str
    atomic_amount: int
    operation_kind: str
    ranking_score: float
    satoshis: int

    @property
    def outpoint(self) -> tuple[str, int]:
        return self.source_txid, self.output_index

    @classmethod
    def from_api_response(cls, response: FundingSourceResponse) -> "FundingSource":
        bsv21 = response["data"]["bsv21"]
        owners = response["owners"]
        if not owners:
            raise ValueError(f"Funding source {response['txid']}:{response['vout']} has no owners")
        # the owner receives the change of a transfer spending this source
        address_to_pubkey_hash(owners[0])
        return cls(
            source_txid=response["txid"],
            output_index=int(response["vout"]),
            owner_address=owners[0],
            atomic_amount=int(bsv21.get("amt") or 0),
            operation_kind=bsv21["op"].lower(),
            ranking_score=response.get("score", 0),
            satoshis=int(response.get("satoshis", 1)),
        )


class TicketStatus(str, enum.Enum):
    BROADCASTING = "BROADCASTING"
    SUCCESS = "SUCCESS"
    MINED = "MINED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self is not TicketStatus.BROADCASTING


@dataclasses.dataclass(frozen=True)
class TransferStatus:
    ticket_id: str
    status: TicketStatus
    created_at: datetime | None
    updated_at: datetime | None
    txid: str | None = None
    tx_hex: str | None = None
    action_requested: str | None = None
    errors: Any = None

    @classmethod
    def from_api_response(cls, response: TicketResponse) -> "TransferStatus":
        return cls(
            ticket_id=response["id"],
            status=TicketStatus(response["status"]),
            created_at=_parse_timestamp(response.get("createdAt")),
            updated_at=_parse_timestamp(response.get("updatedAt")),
            txid=response.get("tx_id") or None,
            tx_hex=response.get("tx_hex") or None,
            action_requested=response.get("action_requested") or None,
            errors=response.get("errors"),
        )


@dataclasses.dataclass(frozen=True)
class Balance:
    atomic_amount: int
    decimal_amount: Decimal


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    # fromisoformat does not accept the Z suffix before Python 3.11
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)
