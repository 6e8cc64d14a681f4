"""
Rental catalogue: packages, terms and the package x term price matrix.
All amounts are integer cents.
"""

from dataclasses import dataclass
from enum import Enum


class PackageType(str, Enum):
    WASHER_DRYER = "WASHER_DRYER"
    WASHER_ONLY = "WASHER_ONLY"
    DRYER_ONLY = "DRYER_ONLY"


class TermType(str, Enum):
    MONTH_TO_MONTH = "MONTH_TO_MONTH"
    SIX_MONTH = "SIX_MONTH"
    TWELVE_MONTH = "TWELVE_MONTH"


class DryerPlugType(str, Enum):
    THREE_PRONG = "THREE_PRONG"
    FOUR_PRONG = "FOUR_PRONG"


PACKAGE_LABELS: dict[PackageType, str] = {
    PackageType.WASHER_DRYER: "Washer + Dryer",
    PackageType.WASHER_ONLY: "Washer Only",
    PackageType.DRYER_ONLY: "Dryer Only",
}

TERM_LABELS: dict[TermType, str] = {
    TermType.MONTH_TO_MONTH: "Month-to-Month",
    TermType.SIX_MONTH: "6-Month Term",
    TermType.TWELVE_MONTH: "12-Month Term",
}

MINIMUM_TERM_MONTHS: dict[TermType, int] = {
    TermType.MONTH_TO_MONTH: 2,
    TermType.SIX_MONTH: 6,
    TermType.TWELVE_MONTH: 12,
}


@dataclass(frozen=True)
class PriceQuote:
    package_type: PackageType
    term_type: TermType
    monthly_price_cents: int
    setup_fee_cents: int
    minimum_term_months: int


# (monthly, setup fee)
_PRICING: dict[PackageType, dict[TermType, tuple[int, int]]] = {
    PackageType.WASHER_DRYER: {
        TermType.MONTH_TO_MONTH: (7900, 3900),
        TermType.SIX_MONTH: (6500, 3900),
        TermType.TWELVE_MONTH: (5900, 0),
    },
    PackageType.WASHER_ONLY: {
        TermType.MONTH_TO_MONTH: (7900, 3900),
        TermType.SIX_MONTH: (4000, 3900),
        TermType.TWELVE_MONTH: (3600, 0),
    },
    PackageType.DRYER_ONLY: {
        TermType.MONTH_TO_MONTH: (7900, 3900),
        TermType.SIX_MONTH: (3500, 3900),
        TermType.TWELVE_MONTH: (3200, 0),
    },
}


def get_pricing(package_type: PackageType, term_type: TermType) -> PriceQuote:
    package_type, term_type = PackageType(package_type), TermType(term_type)
    monthly, setup = _PRICING[package_type][term_type]
    return PriceQuote(
        package_type=package_type,
        term_type=term_type,
        monthly_price_cents=monthly,
        setup_fee_cents=setup,
        minimum_term_months=MINIMUM_TERM_MONTHS[term_type],
    )
