from collections.abc import Iterable, Iterator
from decimal import Decimal

from ..bsv.scripts import address_to_pubkey_hash
from ..utils import to_atomic
from .errors import InvalidRequest


class TransferRecipient:
    address: str
    decimal_amount: Decimal

    def __init__(self, *, address: str, amount: Decimal | int | str):
        if isinstance(amount, float):
            raise InvalidRequest(f"float amounts are not supported, use Decimal or str: {amount!r}")
        self.address = address
        try:
            self.decimal_amount = Decimal(amount)
        except ArithmeticError as e:
            raise InvalidRequest(f"invalid amount: {amount!r}") from e

    def __repr__(self):
        return f"TransferRecipient(address={self.address!r}, amount={self.decimal_amount})"

    def atomic_amount(self, decimals: int) -> int:
        return to_atomic(self.decimal_amount, decimals)

    def assert_valid(self, decimals: int | None = None):
        """
        Validate the address and the amount. The minimum transferable unit is only checked when `decimals` is known.
        """
        if not self.decimal_amount.is_finite() or self.decimal_amount <= 0:
            raise InvalidRequest(f"invalid amount: {self.decimal_amount} (must be positive)")
        if decimals is not None and self.atomic_amount(decimals) <= 0:
            raise InvalidRequest(
                f"amount {self.decimal_amount} is below the minimum transferable unit ({Decimal(1).scaleb(-decimals)})"
            )
        try:
            address_to_pubkey_hash(self.address)
        except ValueError as e:
            raise InvalidRequest(f"recipient {self.address!r} is not a valid address") from e


class TransferRequest:
    """
    Ordered recipients of one transfer. Output order follows recipient order.
    """

    recipients: tuple[TransferRecipient, ...]

    def __init__(self, recipients: Iterable[TransferRecipient]):
        self.recipients = tuple(recipients)

    @classmethod
    def single(cls, address: str, amount: Decimal | int | str) -> "TransferRequest":
        return cls([TransferRecipient(address=address, amount=amount)])

    def __iter__(self) -> Iterator[TransferRecipient]:
        return iter(self.recipients)

    def __len__(self):
        return len(self.recipients)

    def __repr__(self):
        return f"TransferRequest({list(self.recipients)!r})"

    def assert_valid(self, decimals: int | None = None):
        if not self.recipients:
            raise InvalidRequest("Expecting at least one recipient")
        for recipient in self.recipients:
            recipient.assert_valid(decimals)

    def total_atomic_amount(self, decimals: int) -> int:
        # Sum of the per-recipient amounts, so that outputs + fee + change add up to the inputs exactly
        return sum(recipient.atomic_amount(decimals) for recipient in self.recipients)

    def has_recipient(self, address: str) -> bool:
        return any(recipient.address == address for recipient in self.recipients)
