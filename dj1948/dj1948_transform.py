"""Qualification → DJ1948 row mapping.

Each qualification becomes one Section B row: the period is turned into the
distribution date, the allocation factors split the amount across C8..C16,
whatever is left over is ordinary creditable income (C5), and the credit
engine fills C17..C32 when the record carries a regime.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .dj1948_credits import InvalidRegimeConfig, calculate_all_credits
from .dj1948_models import (
    CategoryAmounts,
    CreditColumns,
    Declarant,
    DeclarationData,
    DeclarationRow,
    FilerProfile,
    FilingOverrides,
    OnInvalidRegime,
    OwnershipFlag,
    Qualification,
    SPECIAL_CATEGORY_COLUMNS,
)

logger = logging.getLogger(__name__)

_ISO_DATE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_QUARTER = re.compile(r"^(\d{4})-Q([1-4])$")
_QUARTER_END = {1: (3, 31), 2: (6, 30), 3: (9, 30), 4: (12, 31)}


def _pesos(x: Decimal) -> int:
    return int(x.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def clean_rut(rut: str) -> str:
    """Strip dots, hyphens and spaces; upper-case the check digit."""
    return re.sub(r"[.\-\s]", "", rut or "").upper()


def period_to_date(period: str, last_modified: datetime) -> date:
    """Resolve a qualification period to its distribution date.

    YYYY-MM-DD is used as-is, YYYY-Qn maps to the quarter's last day, anything
    else falls back to the record's last-modified date.
    """
    text = (period or "").strip()

    m = _ISO_DATE.match(text)
    if m:
        try:
            return date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        except ValueError:
            logger.debug("period %r is not a calendar date, using last_modified", period)
            return last_modified.date()

    m = _QUARTER.match(text)
    if m:
        month, day = _QUARTER_END[int(m.group(2))]
        try:
            return date(int(m.group(1)), month, day)
        except ValueError:
            logger.debug("period %r has no valid year, using last_modified", period)
            return last_modified.date()

    logger.debug("unrecognised period %r, using last_modified", period)
    return last_modified.date()


def format_declaration_date(d: date) -> str:
    return f"{d.day:02d}.{d.month:02d}.{d.year:04d}"


def category_amounts(qualification: Qualification) -> CategoryAmounts:
    """Split the qualification amount into C5..C16."""
    total = qualification.amount.value

    buckets = {
        col: total * qualification.factors.for_column(col)
        for col in SPECIAL_CATEGORY_COLUMNS
    }
    allocated = sum(buckets.values(), Decimal("0"))
    # Anything not assigned to a special column is ordinary creditable income.
    c5 = max(Decimal("0"), total - allocated)

    # C6 (pre-2017 credits) and C7 (voluntary IDPC) need history we do not have.
    return CategoryAmounts(
        c5=_pesos(c5),
        c6=0,
        c7=0,
        **{col: _pesos(max(Decimal("0"), v)) for col, v in buckets.items()},
    )


def _credits_for(
    qualification: Qualification,
    amounts: CategoryAmounts,
    on_invalid_regime: OnInvalidRegime,
    warnings: Optional[List[str]],
) -> CreditColumns:
    if qualification.regime is None:
        return CreditColumns()
    try:
        return calculate_all_credits(amounts, qualification.regime)
    except InvalidRegimeConfig as e:
        if on_invalid_regime == OnInvalidRegime.PROPAGATE:
            raise
        msg = f"qualification {qualification.id}: invalid regime ({e}); credits set to 0"
        logger.warning(msg)
        if warnings is not None:
            warnings.append(msg)
        return CreditColumns()


def to_declaration_row(
    qualification: Qualification,
    receiver_rut: str = "",
    share_count: int = 0,
    ownership_flag: OwnershipFlag = OwnershipFlag.BARE_OWNER,
    *,
    on_invalid_regime: OnInvalidRegime = OnInvalidRegime.ZERO_CREDITS,
    warnings: Optional[List[str]] = None,
) -> DeclarationRow:
    """Map one qualification to a Section B row.

    With the default ZERO_CREDITS policy this never raises for a structurally
    valid record; an unusable regime zeroes C17..C32 and is reported through
    the log and the optional ``warnings`` list.
    """
    when = period_to_date(qualification.period, qualification.last_modified)
    amounts = category_amounts(qualification)
    credits = _credits_for(qualification, amounts, on_invalid_regime, warnings)

    return DeclarationRow(
        c1=format_declaration_date(when),
        c2=receiver_rut or "",
        c3=OwnershipFlag(ownership_flag),
        c4=share_count,
        **amounts.model_dump(),
        **credits.model_dump(),
        c33=qualification.certificate_number or "",
    )


def transform_declarant(profile: FilerProfile, overrides: Optional[FilingOverrides] = None) -> Declarant:
    overrides = overrides or FilingOverrides()
    name = overrides.taxpayer_name or f"{profile.first_name} {profile.last_name}".strip()
    return Declarant(
        rut=profile.rut,
        name=name,
        postal_address=overrides.postal_address or "No especificado",
        commune=overrides.commune or "No especificada",
        email=profile.email or "",
        phone=overrides.phone or "No especificado",
    )


def filter_by_taxpayer(qualifications: Iterable[Qualification], taxpayer_rut: Optional[str]) -> List[Qualification]:
    """Keep the records owned by one taxpayer; fall back to all records if none match."""
    quals = list(qualifications)
    if not taxpayer_rut:
        return quals
    wanted = clean_rut(taxpayer_rut)
    matched = [q for q in quals if q.taxpayer_rut and clean_rut(q.taxpayer_rut) == wanted]
    if not matched:
        logger.info("no qualifications for taxpayer %s, using all %d records", wanted, len(quals))
        return quals
    return matched


def format_rut(rut: str) -> str:
    """'123456789' -> '12.345.678-9'; values too short to carry a check digit come back cleaned."""
    clean = clean_rut(rut)
    if len(clean) < 2:
        return clean
    body, dv = clean[:-1], clean[-1]
    if body.isdigit():
        body = f"{int(body):,}".replace(",", ".")
    return f"{body}-{dv}"


def list_taxpayers(qualifications: Iterable[Qualification]) -> List[Dict[str, Any]]:
    """Distinct taxpayers in first-seen order, one DJ1948 each.

    Records without a taxpayer RUT are not listed.
    """
    counts: Dict[str, int] = {}
    for q in qualifications:
        if not q.taxpayer_rut:
            continue
        key = clean_rut(q.taxpayer_rut)
        counts[key] = counts.get(key, 0) + 1
    return [
        {"rut": format_rut(key), "rut_clean": key, "count": count}
        for key, count in counts.items()
    ]


def transform_to_declaration(
    qualifications: Iterable[Qualification],
    profile: FilerProfile,
    fiscal_year_label: str,
    overrides: Optional[FilingOverrides] = None,
    *,
    on_invalid_regime: OnInvalidRegime = OnInvalidRegime.ZERO_CREDITS,
) -> DeclarationData:
    """Build the complete filing content (sections A, B and C)."""
    overrides = overrides or FilingOverrides()
    declarant = transform_declarant(profile, overrides)

    receiver_rut, share_count, ownership_flag = _row_context(profile, overrides)
    warnings: List[str] = []
    rows = [
        to_declaration_row(
            q,
            receiver_rut,
            share_count,
            ownership_flag,
            on_invalid_regime=on_invalid_regime,
            warnings=warnings,
        )
        for q in qualifications
    ]

    return DeclarationData(
        declarant=declarant,
        rows=rows,
        excess_withdrawals=list(overrides.excess_withdrawals),
        fiscal_year_label=fiscal_year_label,
        warnings=warnings,
    )


def _row_context(profile: FilerProfile, overrides: FilingOverrides) -> Tuple[str, int, OwnershipFlag]:
    return (
        overrides.receiver_rut or profile.rut,
        overrides.share_count or 0,
        overrides.ownership_flag or OwnershipFlag.BARE_OWNER,
    )
