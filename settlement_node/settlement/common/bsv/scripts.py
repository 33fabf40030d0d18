"""
Locking and unlocking scripts for cosigned token outputs.

A token output is locked by a 2-party template: the owner's key (identified by its public key hash)
and the network approver's key must both sign. The template is a plain value (`CosignLock`)
and scripts are produced by pure functions, no template class hierarchy.

    lock:   OP_DUP OP_HASH160 <owner pkh> OP_EQUALVERIFY OP_CHECKSIGVERIFY <approver pubkey> OP_CHECKSIG
    unlock: <approver sig> <owner sig> <owner pubkey>

The owner produces `<owner sig> <owner pubkey>`, the cosigning authority prepends its signature.
"""

import dataclasses
import json
from typing import Any

from bitcointx.core import Hash160
from bitcointx.core.key import CPubKey
from bitcointx.core.script import (
    OP_0,
    OP_1,
    OP_CHECKSIG,
    OP_CHECKSIGVERIFY,
    OP_DUP,
    OP_ENDIF,
    OP_EQUALVERIFY,
    OP_HASH160,
    OP_IF,
    CScript,
    CScriptInvalidError,
)
from bitcointx.wallet import CCoinAddress, CCoinAddressError, P2PKHCoinAddress

ORD_ENVELOPE_TAG = b"ord"
TOKEN_PROTOCOL = "bsv-20"
TOKEN_CONTENT_TYPE = "application/bsv-20"


@dataclasses.dataclass(frozen=True)
class CosignLock:
    owner_pubkey_hash: bytes
    approver_pubkey: bytes

    def __post_init__(self):
        if len(self.owner_pubkey_hash) != 20:
            raise ValueError(f"owner_pubkey_hash must be 20 bytes, got {len(self.owner_pubkey_hash)}")
        if not CPubKey(self.approver_pubkey).is_fullyvalid():
            raise ValueError("approver_pubkey is not a valid public key")

    @classmethod
    def for_address(cls, address: str, approver_pubkey: bytes | str) -> "CosignLock":
        if isinstance(approver_pubkey, str):
            approver_pubkey = bytes.fromhex(approver_pubkey)
        return cls(
            owner_pubkey_hash=address_to_pubkey_hash(address),
            approver_pubkey=approver_pubkey,
        )


@dataclasses.dataclass(frozen=True)
class Inscription:
    content_type: str
    data: bytes

    @classmethod
    def token_transfer(cls, *, token_id: str, atomic_amount: int) -> "Inscription":
        record = {
            "p": TOKEN_PROTOCOL,
            "op": "transfer",
            "id": token_id,
            "amt": str(atomic_amount),
        }
        return cls(
            content_type=TOKEN_CONTENT_TYPE,
            data=json.dumps(record, separators=(",", ":")).encode(),
        )

    def json(self) -> Any:
        return json.loads(self.data)


def address_to_pubkey_hash(address: str) -> bytes:
    try:
        parsed = CCoinAddress(address)
    except CCoinAddressError as e:
        raise ValueError(f"{address!r} is not a valid address") from e
    if not isinstance(parsed, P2PKHCoinAddress):
        raise ValueError(f"{address!r} is not a P2PKH address")
    return bytes(parsed)


def pubkey_to_address(pubkey: CPubKey | bytes) -> str:
    return str(P2PKHCoinAddress.from_pubkey(CPubKey(pubkey)))


def lock(variant: CosignLock) -> CScript:
    return CScript(
        [
            OP_DUP,
            OP_HASH160,
            variant.owner_pubkey_hash,
            OP_EQUALVERIFY,
            OP_CHECKSIGVERIFY,
            variant.approver_pubkey,
            OP_CHECKSIG,
        ]
    )


def unlock(signature: bytes, pubkey: CPubKey | bytes) -> CScript:
    # Order matters: the template checks the owner's pubkey hash first, then the owner's signature
    return CScript([signature, bytes(pubkey)])


def is_unlocked_by(variant: CosignLock, pubkey: CPubKey | bytes) -> bool:
    return Hash160(bytes(pubkey)) == variant.owner_pubkey_hash


def inscription_envelope(inscription: Inscription) -> CScript:
    return CScript(
        [
            OP_0,
            OP_IF,
            ORD_ENVELOPE_TAG,
            OP_1,
            inscription.content_type.encode(),
            OP_0,
            inscription.data,
            OP_ENDIF,
        ]
    )


def apply_inscription(locking_script: CScript, inscription: Inscription) -> CScript:
    # CScript + CScript would push the second script as data, so concatenate raw bytes
    return CScript(bytes(inscription_envelope(inscription)) + bytes(locking_script))


def inscribed_lock(variant: CosignLock, inscription: Inscription) -> CScript:
    return apply_inscription(lock(variant), inscription)


def parse_inscription(script: CScript) -> Inscription | None:
    """
    Extract the inscription from a script that starts with an ord envelope, or None
    """
    try:
        ops = list(script)
    except CScriptInvalidError:
        return None
    if len(ops) < 8:
        return None
    head = ops[:8]
    if head[0] not in (0, b"", OP_0) or head[1] != OP_IF or head[2] != ORD_ENVELOPE_TAG:
        return None
    # small ints are yielded decoded when iterating a CScript
    if head[3] not in (1, OP_1) or head[5] not in (0, b"", OP_0) or head[7] != OP_ENDIF:
        return None
    content_type, data = head[4], head[6]
    if not isinstance(content_type, bytes) or not isinstance(data, bytes):
        return None
    return Inscription(content_type=content_type.decode(), data=data)
