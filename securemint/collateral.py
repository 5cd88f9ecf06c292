"""
Secure Mint Collateralization Checker

Pure comparison of trusted reserves against projected supply:

    approved  <=>  reserve_base_units >= current_supply + requested_amount

All three figures are compared as integers in the asset's base units.
Reserves are converted with floor so they are never over-counted.
"""

from dataclasses import dataclass
from decimal import ROUND_FLOOR, Context, Decimal, InvalidOperation, Overflow
from typing import Any, Dict, Optional

from .errors import FailureCode, MalformedInstruction

# Wide enough for any uint256 amount at any supported precision
_WIDE = Context(prec=100)

# Base-unit amounts are written to the ledger as uint256
MAX_BASE_UNITS = 2 ** 256 - 1


def to_base_units(amount: Decimal, decimals: int) -> int:
    """
    Convert a decimal currency amount to integer base units, truncating.

    Used for reserve figures, where truncation is the conservative choice.
    """
    scaled = Decimal(amount).scaleb(decimals, context=_WIDE)
    return int(scaled.to_integral_value(rounding=ROUND_FLOOR))


def to_exact_base_units(amount: Decimal, decimals: int) -> int:
    """
    Convert a requested amount to base units, refusing to drop precision.

    Raises:
        MalformedInstruction: the amount has more fractional digits than the
            asset, or does not fit in a uint256
    """
    try:
        scaled = Decimal(amount).scaleb(decimals, context=_WIDE)
    except (Overflow, InvalidOperation):
        raise MalformedInstruction(
            f"Amount {amount} is out of range",
            code=FailureCode.INVALID_FIELD,
            field="amount"
        )
    if scaled != scaled.to_integral_value():
        raise MalformedInstruction(
            f"Amount {amount} cannot be represented with {decimals} decimals",
            code=FailureCode.PRECISION_EXCEEDED,
            field="amount"
        )
    units = int(scaled)
    if units > MAX_BASE_UNITS:
        raise MalformedInstruction(
            f"Amount {amount} exceeds the largest issuable amount",
            code=FailureCode.INVALID_FIELD,
            field="amount"
        )
    return units


def from_base_units(base_units: int, decimals: int) -> Decimal:
    """Render base units back as a decimal currency amount."""
    return Decimal(base_units).scaleb(-decimals, context=_WIDE)


@dataclass(frozen=True)
class CollateralizationDecision:
    """Outcome of one reserve check. Derived per instruction, never stored."""
    approved: bool
    trusted_reserve: int
    current_supply: int
    requested_amount: int
    decimals: int
    deficit: Optional[int] = None

    @property
    def projected_supply(self) -> int:
        return self.current_supply + self.requested_amount

    @property
    def deficit_amount(self) -> Optional[Decimal]:
        """Deficit in currency units, for display."""
        if self.deficit is None:
            return None
        return from_base_units(self.deficit, self.decimals)

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "approved": self.approved,
            "trusted_reserve": str(self.trusted_reserve),
            "current_supply": str(self.current_supply),
            "requested_amount": str(self.requested_amount),
            "projected_supply": str(self.projected_supply),
        }
        if self.deficit is not None:
            d["deficit"] = str(self.deficit)
            d["deficit_amount"] = str(self.deficit_amount)
        return d


def check_collateralization(
    trusted_reserve: Decimal,
    current_supply: int,
    requested_amount: int,
    decimals: int = 18
) -> CollateralizationDecision:
    """
    Decide whether a new issuance stays fully collateralized.

    Args:
        trusted_reserve: Reduced reserve figure in currency units
        current_supply: On-ledger supply in base units
        requested_amount: Requested issuance in base units
        decimals: Asset precision

    Returns:
        CollateralizationDecision; ``deficit`` is set only when rejected
    """
    if current_supply < 0 or requested_amount < 0:
        raise ValueError("supply and requested amount must be non-negative")

    reserve_units = to_base_units(trusted_reserve, decimals)
    projected = current_supply + requested_amount

    if reserve_units >= projected:
        return CollateralizationDecision(
            approved=True,
            trusted_reserve=reserve_units,
            current_supply=current_supply,
            requested_amount=requested_amount,
            decimals=decimals,
        )

    return CollateralizationDecision(
        approved=False,
        trusted_reserve=reserve_units,
        current_supply=current_supply,
        requested_amount=requested_amount,
        decimals=decimals,
        deficit=projected - reserve_units,
    )
