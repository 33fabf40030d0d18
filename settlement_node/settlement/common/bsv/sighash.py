"""
Fork-id signature hashing for BSV transactions.

BSV signs a BIP143-style preimage for every input regardless of the script type, flagged with
SIGHASH_FORKID. Only the parts of the preimage selected by the sighash flags are committed to.
"""

import struct
from typing import Sequence

from bitcointx.core import (
    COutPoint,
    CTransaction,
    CTxIn,
    CTxOut,
    Hash,
)
from bitcointx.core.key import CKey
from bitcointx.core.script import CScript
from bitcointx.core.serialize import BytesSerializer

SIGHASH_ALL = 0x01
SIGHASH_NONE = 0x02
SIGHASH_SINGLE = 0x03
SIGHASH_FORKID = 0x40
SIGHASH_ANYONECANPAY = 0x80

SIGHASH_BASE_MASK = 0x1F

# Every token input is signed with this scope: all outputs are committed, other inputs may be added
TOKEN_SIGHASH_FLAGS = SIGHASH_ALL | SIGHASH_ANYONECANPAY | SIGHASH_FORKID

ZERO_HASH = b"\x00" * 32


def _hash_prevouts(vin: Sequence[CTxIn]) -> bytes:
    return Hash(b"".join(txin.prevout.serialize() for txin in vin))


def _hash_sequences(vin: Sequence[CTxIn]) -> bytes:
    return Hash(b"".join(struct.pack("<I", txin.nSequence) for txin in vin))


def _hash_outputs(vout: Sequence[CTxOut]) -> bytes:
    return Hash(b"".join(txout.serialize() for txout in vout))


def signature_preimage(
    tx: CTransaction,
    input_index: int,
    *,
    prevout_script: CScript | bytes,
    prevout_satoshis: int,
    sighash_flags: int = TOKEN_SIGHASH_FLAGS,
    prevout: COutPoint | None = None,
) -> bytes:
    """
    Serialize the preimage signed for input `input_index` of `tx`.

    `prevout` overrides the outpoint of the signed input. It defaults to the input's own prevout.
    """
    if not 0 <= input_index < len(tx.vin):
        raise IndexError(f"input index {input_index} out of range (transaction has {len(tx.vin)} inputs)")
    if not sighash_flags & SIGHASH_FORKID:
        raise ValueError(f"sighash flags {sighash_flags:#x} do not include SIGHASH_FORKID")
    if prevout_satoshis < 0:
        raise ValueError(f"invalid prevout value: {prevout_satoshis}")

    base_type = sighash_flags & SIGHASH_BASE_MASK
    anyone_can_pay = bool(sighash_flags & SIGHASH_ANYONECANPAY)
    txin = tx.vin[input_index]
    if prevout is None:
        prevout = txin.prevout

    hash_prevouts = ZERO_HASH
    hash_sequences = ZERO_HASH
    hash_outputs = ZERO_HASH

    if not anyone_can_pay:
        hash_prevouts = _hash_prevouts(tx.vin)
        if base_type not in (SIGHASH_SINGLE, SIGHASH_NONE):
            hash_sequences = _hash_sequences(tx.vin)

    if base_type not in (SIGHASH_SINGLE, SIGHASH_NONE):
        hash_outputs = _hash_outputs(tx.vout)
    elif base_type == SIGHASH_SINGLE and input_index < len(tx.vout):
        hash_outputs = Hash(tx.vout[input_index].serialize())

    return b"".join(
        [
            struct.pack("<i", tx.nVersion),
            hash_prevouts,
            hash_sequences,
            prevout.serialize(),
            BytesSerializer.serialize(bytes(prevout_script)),
            struct.pack("<q", prevout_satoshis),
            struct.pack("<I", txin.nSequence),
            hash_outputs,
            struct.pack("<I", tx.nLockTime),
            struct.pack("<I", sighash_flags),
        ]
    )


def signature_hash(
    tx: CTransaction,
    input_index: int,
    *,
    prevout_script: CScript | bytes,
    prevout_satoshis: int,
    sighash_flags: int = TOKEN_SIGHASH_FLAGS,
    prevout: COutPoint | None = None,
) -> bytes:
    return Hash(
        signature_preimage(
            tx,
            input_index,
            prevout_script=prevout_script,
            prevout_satoshis=prevout_satoshis,
            sighash_flags=sighash_flags,
            prevout=prevout,
        )
    )


def sign_digest(key: CKey, digest: bytes, sighash_flags: int) -> bytes:
    """
    Sign a sighash digest, returning the signature in checksig format (DER + flags byte).

    libsecp256k1 nonces are deterministic (RFC 6979) and signatures are low-S.
    """
    if not 0 <= sighash_flags <= 0xFF:
        raise ValueError(f"sighash flags must fit in one byte: {sighash_flags:#x}")
    return key.sign(digest) + bytes([sighash_flags])


def split_checksig_signature(signature: bytes) -> tuple[bytes, int]:
    if len(signature) < 2:
        raise ValueError("signature too short")
    return signature[:-1], signature[-1]
