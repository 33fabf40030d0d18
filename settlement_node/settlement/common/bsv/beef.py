"""
BEEF (Background Evaluation Extended Format) transaction bundles.

Supported encodings:

* BEEF V1 (BRC-62): ``0100BEEF`` | BUMPs | transactions, each followed by a has-BUMP flag
* BEEF V2 (BRC-96): ``0200BEEF`` | BUMPs | transactions, each preceded by a format byte
  (raw, raw + BUMP index, or txid only)
* Atomic BEEF (BRC-95): ``01010101`` | subject txid | BEEF

Transactions are ordered so that parents come before children; the subject transaction of a
non-atomic bundle is the last one.
"""

import dataclasses
import struct
from io import BytesIO

from bitcointx.core import CTransaction, b2lx, lx
from bitcointx.core.serialize import SerializationError, VarIntSerializer

BEEF_V1 = 4022206465  # 0100BEEF in LE order
BEEF_V2 = 4022206466  # 0200BEEF in LE order
ATOMIC_BEEF_PREFIX = b"\x01\x01\x01\x01"

TX_FORMAT_RAW = 0
TX_FORMAT_RAW_WITH_BUMP = 1
TX_FORMAT_TXID_ONLY = 2

BUMP_FLAG_DUPLICATE = 0x01
BUMP_FLAG_TXID = 0x02


class BeefError(ValueError):
    pass


@dataclasses.dataclass(frozen=True)
class MerklePathLeaf:
    offset: int
    hash: bytes | None = None  # None for duplicated leaves
    txid: bool = False

    @property
    def duplicate(self) -> bool:
        return self.hash is None


@dataclasses.dataclass(frozen=True)
class MerklePath:
    block_height: int
    path: list[list[MerklePathLeaf]]

    def contains_txid(self, txid: str) -> bool:
        if not self.path:
            return False
        tx_hash = lx(txid)
        return any(leaf.txid and leaf.hash == tx_hash for leaf in self.path[0])


@dataclasses.dataclass
class BeefTx:
    txid: str
    tx: CTransaction | None = None
    bump_index: int | None = None

    @property
    def is_txid_only(self) -> bool:
        return self.tx is None


@dataclasses.dataclass
class Beef:
    version: int
    bumps: list[MerklePath]
    txs: list[BeefTx]
    atomic_txid: str | None = None

    def find(self, txid: str) -> BeefTx | None:
        for beef_tx in self.txs:
            if beef_tx.txid == txid:
                return beef_tx
        return None

    def subject(self) -> CTransaction:
        if self.atomic_txid is not None:
            beef_tx = self.find(self.atomic_txid)
            if beef_tx is None:
                raise BeefError(f"Atomic BEEF subject {self.atomic_txid} not in bundle")
        elif self.txs:
            beef_tx = self.txs[-1]
        else:
            raise BeefError("BEEF contains no transactions")
        if beef_tx.tx is None:
            raise BeefError(f"BEEF subject {beef_tx.txid} is a txid-only entry")
        return beef_tx.tx

    def serialize(self) -> bytes:
        f = BytesIO()
        self.stream_serialize(f)
        return f.getvalue()

    def stream_serialize(self, f: BytesIO):
        if self.atomic_txid is not None:
            f.write(ATOMIC_BEEF_PREFIX)
            f.write(lx(self.atomic_txid))
        f.write(struct.pack("<I", self.version))
        VarIntSerializer.stream_serialize(len(self.bumps), f)
        for bump in self.bumps:
            _serialize_bump(bump, f)
        VarIntSerializer.stream_serialize(len(self.txs), f)
        for beef_tx in self.txs:
            if self.version == BEEF_V1:
                if beef_tx.tx is None:
                    raise BeefError("BEEF V1 cannot carry txid-only entries")
                beef_tx.tx.stream_serialize(f)
                if beef_tx.bump_index is None:
                    f.write(b"\x00")
                else:
                    f.write(b"\x01")
                    VarIntSerializer.stream_serialize(beef_tx.bump_index, f)
            elif beef_tx.tx is None:
                f.write(bytes([TX_FORMAT_TXID_ONLY]))
                f.write(lx(beef_tx.txid))
            elif beef_tx.bump_index is None:
                f.write(bytes([TX_FORMAT_RAW]))
                beef_tx.tx.stream_serialize(f)
            else:
                f.write(bytes([TX_FORMAT_RAW_WITH_BUMP]))
                VarIntSerializer.stream_serialize(beef_tx.bump_index, f)
                beef_tx.tx.stream_serialize(f)


def parse_beef(data: bytes) -> Beef:
    """
    Parse BEEF V1, V2 or Atomic BEEF bytes
    """
    f = BytesIO(data)
    try:
        beef = _stream_parse_beef(f)
    except BeefError:
        raise
    except (SerializationError, struct.error, ValueError) as e:
        raise BeefError(f"Malformed BEEF: {e}") from e
    if f.read(1):
        raise BeefError("Trailing data after BEEF")
    return beef


def parse_beef_hex(data: str) -> Beef:
    return parse_beef(bytes.fromhex(data))


def _stream_parse_beef(f: BytesIO) -> Beef:
    atomic_txid = None
    prefix = _read(f, 4)
    if prefix == ATOMIC_BEEF_PREFIX:
        atomic_txid = b2lx(_read(f, 32))
        prefix = _read(f, 4)
    (version,) = struct.unpack("<I", prefix)
    if version not in (BEEF_V1, BEEF_V2):
        raise BeefError(f"Unsupported BEEF version: {version:#010x}")

    num_bumps = VarIntSerializer.stream_deserialize(f)
    bumps = [_parse_bump(f) for _ in range(num_bumps)]

    num_txs = VarIntSerializer.stream_deserialize(f)
    txs = []
    for _ in range(num_txs):
        if version == BEEF_V1:
            tx = CTransaction.stream_deserialize(f)
            bump_index = None
            if _read(f, 1)[0]:
                bump_index = VarIntSerializer.stream_deserialize(f)
            beef_tx = BeefTx(txid=b2lx(tx.GetTxid()), tx=tx, bump_index=bump_index)
        else:
            tx_format = _read(f, 1)[0]
            if tx_format == TX_FORMAT_TXID_ONLY:
                beef_tx = BeefTx(txid=b2lx(_read(f, 32)))
            elif tx_format in (TX_FORMAT_RAW, TX_FORMAT_RAW_WITH_BUMP):
                bump_index = None
                if tx_format == TX_FORMAT_RAW_WITH_BUMP:
                    bump_index = VarIntSerializer.stream_deserialize(f)
                tx = CTransaction.stream_deserialize(f)
                beef_tx = BeefTx(txid=b2lx(tx.GetTxid()), tx=tx, bump_index=bump_index)
            else:
                raise BeefError(f"Unknown BEEF transaction format: {tx_format}")
        if beef_tx.bump_index is not None and beef_tx.bump_index >= len(bumps):
            raise BeefError(f"BUMP index {beef_tx.bump_index} out of range for tx {beef_tx.txid}")
        txs.append(beef_tx)

    return Beef(version=version, bumps=bumps, txs=txs, atomic_txid=atomic_txid)


def _parse_bump(f: BytesIO) -> MerklePath:
    block_height = VarIntSerializer.stream_deserialize(f)
    tree_height = _read(f, 1)[0]
    path = []
    for _ in range(tree_height):
        num_leaves = VarIntSerializer.stream_deserialize(f)
        level = []
        for _ in range(num_leaves):
            offset = VarIntSerializer.stream_deserialize(f)
            flags = _read(f, 1)[0]
            if flags & BUMP_FLAG_DUPLICATE:
                level.append(MerklePathLeaf(offset=offset))
            else:
                level.append(
                    MerklePathLeaf(
                        offset=offset,
                        hash=_read(f, 32),
                        txid=bool(flags & BUMP_FLAG_TXID),
                    )
                )
        path.append(level)
    return MerklePath(block_height=block_height, path=path)


def _serialize_bump(bump: MerklePath, f: BytesIO):
    VarIntSerializer.stream_serialize(bump.block_height, f)
    f.write(bytes([len(bump.path)]))
    for level in bump.path:
        VarIntSerializer.stream_serialize(len(level), f)
        for leaf in level:
            VarIntSerializer.stream_serialize(leaf.offset, f)
            if leaf.hash is None:
                f.write(bytes([BUMP_FLAG_DUPLICATE]))
            else:
                f.write(bytes([BUMP_FLAG_TXID if leaf.txid else 0]))
                f.write(leaf.hash)


def _read(f: BytesIO, n: int) -> bytes:
    data = f.read(n)
    if len(data) != n:
        raise BeefError(f"Unexpected end of BEEF data (wanted {n} bytes, got {len(data)})")
    return data
