import base64
import dataclasses
import logging
from collections.abc import Iterable, Sequence

import requests
from bitcointx.base58 import Base58Error
from bitcointx.core import CMutableTransaction, CTransaction, b2lx
from bitcointx.core.key import CKey
from bitcointx.core.serialize import SerializationError
from bitcointx.wallet import CCoinKey, P2PKHCoinAddress

from ..bsv import scripts
from ..bsv.sighash import TOKEN_SIGHASH_FLAGS, sign_digest, signature_hash
from .assembly import AssembledTransaction
from .client import TokenApiClient, TokenApiError
from .errors import (
    BroadcastFailed,
    CosignRejected,
    CosignRejectionReason,
    CosignUnavailable,
    SigningFailed,
    TransferError,
)

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class SignatureRequest:
    prev_txid: str
    output_index: int
    input_index: int
    owner_address: str
    locking_script_hex: str
    satoshis: int
    sighash_flags: int = TOKEN_SIGHASH_FLAGS


@dataclasses.dataclass(frozen=True)
class SignatureResponse:
    input_index: int
    signature_hex: str
    public_key_hex: str
    sighash_flags: int


@dataclasses.dataclass(frozen=True)
class CosignedTransaction:
    """
    The fully authorized transaction as returned by the cosigner (base64 of the raw transaction)
    """

    raw_tx_base64: str

    @classmethod
    def from_raw_tx(cls, raw_tx: bytes) -> "CosignedTransaction":
        return cls(raw_tx_base64=base64.b64encode(raw_tx).decode())

    @property
    def raw_tx(self) -> bytes:
        return base64.b64decode(self.raw_tx_base64, validate=True)

    def deserialize(self) -> CTransaction:
        return CTransaction.deserialize(self.raw_tx)


def load_signing_key(value: str) -> CKey:
    """
    Load a private key from WIF or from 32 bytes of hex
    """
    value = value.strip()
    if len(value) == 64:
        try:
            secret = bytes.fromhex(value)
        except ValueError:
            pass
        else:
            return CCoinKey.from_secret_bytes(secret)
    try:
        return CCoinKey(value)
    except (Base58Error, ValueError) as e:
        raise ValueError("signing key is neither valid WIF nor 32-byte hex") from e


def key_address(key: CKey) -> str:
    return str(P2PKHCoinAddress.from_pubkey(key.pub))


def build_signature_requests(assembled: AssembledTransaction) -> list[SignatureRequest]:
    return [
        SignatureRequest(
            prev_txid=assembled_input.source.source_txid,
            output_index=assembled_input.source.output_index,
            input_index=input_index,
            owner_address=assembled_input.source.owner_address,
            locking_script_hex=bytes(assembled_input.locking_script).hex(),
            satoshis=assembled_input.satoshis,
        )
        for input_index, assembled_input in enumerate(assembled.inputs)
    ]


def sign_requests(
    tx: CTransaction,
    signature_requests: Iterable[SignatureRequest],
    key: CKey,
) -> list[SignatureResponse]:
    address = key_address(key)
    public_key_hex = bytes(key.pub).hex()
    responses = []
    for request in signature_requests:
        if request.owner_address != address:
            raise SigningFailed(
                f"Input {request.input_index} is owned by {request.owner_address}, "
                f"signing key belongs to {address}"
            )
        try:
            digest = signature_hash(
                tx,
                request.input_index,
                prevout_script=bytes.fromhex(request.locking_script_hex),
                prevout_satoshis=request.satoshis,
                sighash_flags=request.sighash_flags,
            )
        except (IndexError, ValueError) as e:
            raise SigningFailed(f"Cannot sign input {request.input_index}: {e}") from e
        signature = sign_digest(key, digest, request.sighash_flags)
        responses.append(
            SignatureResponse(
                input_index=request.input_index,
                signature_hex=signature.hex(),
                public_key_hex=public_key_hex,
                sighash_flags=request.sighash_flags,
            )
        )
    return responses


def apply_signatures(tx: CMutableTransaction, responses: Sequence[SignatureResponse]):
    """
    Populate unlocking scripts from signature responses, matched by input index.

    A response addressing a missing input, or an input that is already unlocked, fails the whole step.
    """
    for response in responses:
        if not 0 <= response.input_index < len(tx.vin):
            raise SigningFailed(f"Signature addresses missing input {response.input_index}")
        txin = tx.vin[response.input_index]
        if len(txin.scriptSig) > 0:
            raise SigningFailed(f"Input {response.input_index} is already unlocked")
        try:
            signature = bytes.fromhex(response.signature_hex)
            public_key = bytes.fromhex(response.public_key_hex)
        except ValueError as e:
            raise SigningFailed(f"Malformed signature response for input {response.input_index}") from e
        txin.scriptSig = scripts.unlock(signature, public_key)

    unsigned = [i for i, txin in enumerate(tx.vin) if len(txin.scriptSig) == 0]
    if unsigned:
        raise SigningFailed(f"Inputs {unsigned} were not signed")


def translate_cosign_error(error: TokenApiError) -> TransferError:
    """
    Map a cosigner HTTP error to a typed error. The returned error should be raised `from error`.
    """
    status_code = error.status_code
    message = error.message
    if status_code == 423:
        if "frozen" in message:
            reason = CosignRejectionReason.FROZEN
        elif "blacklisted" in message:
            reason = CosignRejectionReason.DENYLISTED
        else:
            reason = CosignRejectionReason.BLOCKED
        return CosignRejected(message, reason=reason, status_code=status_code)
    if status_code == 503 and "cosigner is paused" in message:
        return CosignRejected(message, reason=CosignRejectionReason.PAUSED, status_code=status_code)
    if status_code >= 500:
        return CosignUnavailable(f"Cosigner unavailable ({status_code}): {message}")
    return CosignRejected(message, reason=CosignRejectionReason.REJECTED, status_code=status_code)


class SigningCoordinator:
    def __init__(self, *, token_client: TokenApiClient):
        self._token_client = token_client

    def sign(self, assembled: AssembledTransaction, key: CKey) -> AssembledTransaction:
        signature_requests = build_signature_requests(assembled)
        logger.debug("Signing %d inputs of tx %s", len(signature_requests), assembled.txid)
        # Signatures commit to all outputs but no other input, so the unsigned transaction is signed as-is
        responses = sign_requests(assembled.tx, signature_requests, key)
        apply_signatures(assembled.tx, responses)
        return assembled

    def cosign(self, signed: AssembledTransaction) -> CosignedTransaction:
        if not signed.is_fully_unlocked():
            raise SigningFailed("Transaction must be signed before cosigning")
        payload = base64.b64encode(signed.serialize()).decode()
        logger.info("Requesting cosignature for tx %s", signed.txid)
        try:
            raw_tx_base64 = self._token_client.cosign_transfer(payload)
        except TokenApiError as e:
            raise translate_cosign_error(e) from e
        except requests.RequestException as e:
            raise CosignUnavailable(f"Cosigner unreachable: {e}") from e
        except ValueError as e:
            raise CosignUnavailable(f"Invalid cosigner response: {e}") from e
        if not raw_tx_base64:
            raise BroadcastFailed("Cosigner returned no transaction")

        cosigned = CosignedTransaction(raw_tx_base64=raw_tx_base64)
        try:
            tx = cosigned.deserialize()
        except (SerializationError, ValueError) as e:
            raise BroadcastFailed(f"Cosigner returned an invalid transaction: {e}") from e
        logger.info("Tx %s cosigned (txid %s)", signed.txid, b2lx(tx.GetTxid()))
        return cosigned
