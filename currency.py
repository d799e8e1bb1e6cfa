"""
Currency rounding boundary.

All priced outputs pass through round_currency exactly once. Intermediate
math stays in full float precision.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

from proposal_errors import InvalidInput

ROUNDING_QUANTUM = {
    "cent": Decimal("0.01"),
    "whole": Decimal("1"),
}

Number = Union[int, float, Decimal]


def round_currency(amount: Number, policy: str = "cent") -> Decimal:
    """Round half-up to the minor unit ("cent") or the whole unit ("whole")."""
    quantum = ROUNDING_QUANTUM.get(policy)
    if quantum is None:
        raise InvalidInput(
            f"Unknown rounding policy '{policy}'. Allowed: {sorted(ROUNDING_QUANTUM)}",
            field="rounding",
        )
    # str() keeps the shortest repr so 2.675 rounds as written, not as stored
    return Decimal(str(amount)).quantize(quantum, rounding=ROUND_HALF_UP)
