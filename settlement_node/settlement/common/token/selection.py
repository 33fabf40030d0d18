import dataclasses
import logging
from collections.abc import Sequence

from .errors import FeeScheduleGap, InsufficientFunds, InvalidRequest
from .types import FeeTier, FundingSource

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class Selection:
    selected: tuple[FundingSource, ...]
    fee: int
    change: int
    target: int

    @property
    def total_in(self) -> int:
        return sum(source.atomic_amount for source in self.selected)

    @property
    def change_address(self) -> str:
        # Change always goes back to the owner of the first consumed funding source
        return self.selected[0].owner_address


def compute_fee(target_atomic_amount: int, fee_tiers: Sequence[FeeTier], *, is_burn_destination: bool) -> int:
    if is_burn_destination:
        return 0
    for tier in fee_tiers:
        if tier.contains(target_atomic_amount):
            return tier.fee
    raise FeeScheduleGap(
        f"No fee tier covers amount {target_atomic_amount}",
        amount=target_atomic_amount,
    )


class CoinSelector:
    """
    Greedy, order-preserving funding source selection.

    Sources are consumed in the order given until they cover the target plus the fee. No attempt is made
    to minimize the number of inputs.
    """

    def select(
        self,
        funding_sources: Sequence[FundingSource],
        target_atomic_amount: int,
        fee_tiers: Sequence[FeeTier],
        is_burn_destination: bool,
    ) -> Selection:
        if target_atomic_amount <= 0:
            raise InvalidRequest(f"invalid target amount: {target_atomic_amount} (must be positive)")

        fee = compute_fee(target_atomic_amount, fee_tiers, is_burn_destination=is_burn_destination)
        required = target_atomic_amount + fee

        available = list(funding_sources)
        selected: list[FundingSource] = []
        tokens_in = 0
        while tokens_in < required:
            if not available:
                raise InsufficientFunds(
                    f"Funding sources cover {tokens_in}, need {required} (amount {target_atomic_amount} + fee {fee})",
                    required=required,
                    available=tokens_in,
                )
            source = available.pop(0)
            if source.atomic_amount <= 0:
                logger.debug("Skipping empty funding source %s:%s", source.source_txid, source.output_index)
                continue
            logger.debug("Selecting funding source %s:%s (%d)", *source.outpoint, source.atomic_amount)
            selected.append(source)
            tokens_in += source.atomic_amount

        change = tokens_in - target_atomic_amount - fee
        assert change >= 0
        return Selection(
            selected=tuple(selected),
            fee=fee,
            change=change,
            target=target_atomic_amount,
        )
