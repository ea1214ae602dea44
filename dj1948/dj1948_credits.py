"""Credit engine for DJ1948 columns C17..C32.

This is *not tax advice*. It implements the arithmetic described in the SII
filling instructions for Form 1948 (Arts. 14 A, 14 D N°3, 56 N°3 and 63 LIR).

Characteristics:
- Deterministic calculations on Decimal, rounded half-up to whole pesos.
- Regime validation fails fast with InvalidRegimeConfig.
- Columns the current formula set does not cover (C25..C32) are emitted as 0.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional

from .dj1948_models import (
    CategoryAmounts,
    CreditColumns,
    RegimeConfig,
    EXEMPT_CREDIT_COLUMNS,
    TAXABLE_CREDIT_COLUMNS,
)

FIRST_CREDIT_YEAR = 2017
POST_2020_YEAR = 2020


class InvalidRegimeConfig(ValueError):
    """Raised when a regime cannot be used to derive credits."""

    def __init__(self, problems: List[str]):
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))


def _d(x) -> Decimal:
    if isinstance(x, Decimal):
        return x
    return Decimal(str(x))


def _pesos(x: Decimal) -> int:
    # whole pesos, half-up
    return int(x.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _regime_problems(regime: RegimeConfig, require_tag: bool) -> List[str]:
    problems: List[str] = []
    if require_tag and regime.tax_regime is None:
        problems.append("tax_regime is required (14A or 14D3)")
    rate = _d(regime.corporate_tax_rate)
    if rate <= 0 or rate >= 1:
        problems.append(f"corporate_tax_rate must be strictly between 0 and 1, got {rate}")
    if regime.fiscal_year < FIRST_CREDIT_YEAR:
        problems.append(f"fiscal_year must be {FIRST_CREDIT_YEAR} or later, got {regime.fiscal_year}")
    return problems


def validate_regime_config(regime: Optional[RegimeConfig]) -> None:
    """Raise InvalidRegimeConfig listing every problem; a missing regime is valid."""
    if regime is None:
        return
    problems = _regime_problems(regime, require_tag=True)
    if problems:
        raise InvalidRegimeConfig(problems)


def calculate_credit_rate(regime: RegimeConfig) -> Decimal:
    """Gross-up factor turning a net distribution into its creditable tax.

    rate = t / (1 - t); for t = 0.27 this is 0.369863...
    """
    problems = _regime_problems(regime, require_tag=False)
    if problems:
        raise InvalidRegimeConfig(problems)
    t = _d(regime.corporate_tax_rate)
    return t / (Decimal("1") - t)


def _taxable_destination(regime: RegimeConfig) -> str:
    refund = regime.has_refund_right
    if regime.is_subject_to_restitution:
        return "c22" if refund else "c21"
    if regime.fiscal_year >= POST_2020_YEAR:
        return "c20" if refund else "c19"
    return "c18" if refund else "c17"


def calculate_credits_on_taxable_income(amounts: CategoryAmounts, regime: RegimeConfig) -> Dict[str, int]:
    """Credits C17..C22 on income with credit right (C5 + C6 + C7).

    C8 carries no credit right and never enters the base.
    """
    credits = {col: 0 for col in TAXABLE_CREDIT_COLUMNS}
    base = _d(amounts.c5) + _d(amounts.c6) + _d(amounts.c7)
    if base == 0:
        return credits

    credit_total = _pesos(base * calculate_credit_rate(regime))
    credits[_taxable_destination(regime)] = credit_total
    return credits


def calculate_credits_on_exempt_income(exempt_amount, regime: RegimeConfig) -> Dict[str, int]:
    """Credits C23/C24 on Art. 11 Ley 18.401 exempt income (C14).

    Exempt-income credits are always treated as subject to restitution, so only
    the refund right selects the column.
    """
    credits = {col: 0 for col in EXEMPT_CREDIT_COLUMNS}
    base = _d(exempt_amount)
    if base == 0:
        return credits

    credit_total = _pesos(base * calculate_credit_rate(regime))
    credits["c24" if regime.has_refund_right else "c23"] = credit_total
    return credits


def calculate_all_credits(amounts: CategoryAmounts, regime: RegimeConfig) -> CreditColumns:
    """Compute every credit column C17..C32 for one set of category amounts."""
    validate_regime_config(regime)

    taxable = calculate_credits_on_taxable_income(amounts, regime)
    exempt = calculate_credits_on_exempt_income(amounts.c14, regime)

    # C25 (IPE), C26-C30 (pre-2017 accumulations), C31 (ex Art. 21) and C32
    # (capital return) have no formula yet and stay at 0.
    return CreditColumns(**taxable, **exempt)
