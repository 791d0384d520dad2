"""
Commission split between a branch and its parent agency.

The split is computed once, when the sale is created, from the rates in
force at that moment and stored on the sale. Later rate changes never
touch past sales.

    branch present:  branch = P * Rb / 100
                     agency = P * (Ra - Rb) / 100
    agency only:     agency = P * Ra / 100
    direct sale:     agency = P * DEFAULT_COMMISSION_RATE / 100
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from app.config import settings
from app.core.exceptions import SettlementError, ErrorCode

TWO_PLACES = Decimal("0.01")
HUNDRED = Decimal("100")


def to_money(value) -> Decimal:
    """Round to a fixed 2-decimal amount."""
    return Decimal(str(value)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class CommissionSplit:
    """Frozen commission figures for one sale."""
    total: Decimal
    branch_commission: Optional[Decimal]
    agency_commission: Optional[Decimal]
    branch_rate: Optional[Decimal] = None
    agency_rate: Optional[Decimal] = None


def validate_rate(rate, field: str = "commission_rate") -> Decimal:
    """Rates are percentages in [0, 100]."""
    if rate is None:
        raise SettlementError(f"{field} is required")
    rate = Decimal(str(rate))
    if rate < 0 or rate > HUNDRED:
        raise SettlementError(f"{field} must be between 0 and 100")
    return rate


def ensure_rate_cap(branch_rate, agency_rate) -> None:
    """A branch may never earn a larger share than its agency."""
    if Decimal(str(branch_rate)) > Decimal(str(agency_rate)):
        raise SettlementError(
            f"Branch commission rate ({branch_rate}%) cannot exceed "
            f"agency commission rate ({agency_rate}%)",
            code=ErrorCode.RATE_CAP_VIOLATION,
            details={"branch_rate": str(branch_rate), "agency_rate": str(agency_rate)},
        )


def split_commission(
    price,
    branch_rate=None,
    agency_rate=None,
    default_rate=None,
) -> CommissionSplit:
    """
    Compute the branch/agency commission shares for a sale price.

    Args:
        price: Gross sale price, must be positive
        branch_rate: Branch rate % (None when the sale has no branch)
        agency_rate: Agency rate % (None for a direct/system sale)
        default_rate: Rate applied when neither is present

    Returns:
        CommissionSplit whose total equals branch + agency shares
    """
    price = Decimal(str(price))
    if price <= 0:
        raise SettlementError("Sale price must be greater than zero")

    if branch_rate is not None:
        if agency_rate is None:
            raise SettlementError("Branch sale requires its agency rate")
        rb = validate_rate(branch_rate, "branch commission_rate")
        ra = validate_rate(agency_rate, "agency commission_rate")
        ensure_rate_cap(rb, ra)

        branch_share = to_money(price * rb / HUNDRED)
        agency_share = to_money(price * (ra - rb) / HUNDRED)
        return CommissionSplit(
            total=branch_share + agency_share,
            branch_commission=branch_share,
            agency_commission=agency_share,
            branch_rate=rb,
            agency_rate=ra,
        )

    if agency_rate is not None:
        ra = validate_rate(agency_rate, "agency commission_rate")
        agency_share = to_money(price * ra / HUNDRED)
        return CommissionSplit(
            total=agency_share,
            branch_commission=None,
            agency_commission=agency_share,
            agency_rate=ra,
        )

    rate = Decimal(str(default_rate if default_rate is not None else settings.DEFAULT_COMMISSION_RATE))
    agency_share = to_money(price * rate / HUNDRED)
    return CommissionSplit(
        total=agency_share,
        branch_commission=None,
        agency_commission=agency_share,
        agency_rate=rate,
    )
