from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from dj1948.dj1948_credits import InvalidRegimeConfig
from dj1948.dj1948_models import (
    FilerProfile,
    FilingOverrides,
    Money,
    OnInvalidRegime,
    OwnershipFlag,
    Qualification,
    RegimeConfig,
    TaxFactors,
    TaxRegime,
)
from dj1948.dj1948_transform import (
    clean_rut,
    filter_by_taxpayer,
    format_rut,
    list_taxpayers,
    period_to_date,
    to_declaration_row,
    transform_declarant,
    transform_to_declaration,
)

LAST_MODIFIED = datetime(2024, 11, 5, 10, 30, tzinfo=timezone.utc)


def _qual(qid="q1", amount="1000000", period="2024-Q3", regime=None, **factors):
    return Qualification(
        id=qid,
        amount=Money(value=Decimal(amount)),
        factors=TaxFactors(**{k: Decimal(v) for k, v in factors.items()}),
        period=period,
        last_modified=LAST_MODIFIED,
        regime=regime,
    )


def _regime(**kw):
    base = dict(tax_regime=TaxRegime.GENERAL, corporate_tax_rate=Decimal("0.27"), fiscal_year=2024)
    base.update(kw)
    return RegimeConfig(**base)


@pytest.mark.parametrize(
    "period,expected",
    [
        ("2024-03-15", date(2024, 3, 15)),
        ("2024-Q1", date(2024, 3, 31)),
        ("2024-Q2", date(2024, 6, 30)),
        ("2024-Q3", date(2024, 9, 30)),
        ("2024-Q4", date(2024, 12, 31)),
        ("Q3 2024", date(2024, 11, 5)),
        ("2024-02-30", date(2024, 11, 5)),
        ("0000-Q1", date(2024, 11, 5)),
        ("0000-01-15", date(2024, 11, 5)),
        ("", date(2024, 11, 5)),
    ],
)
def test_period_to_date(period, expected):
    assert period_to_date(period, LAST_MODIFIED) == expected


def test_quarter_period_is_formatted_as_declaration_date():
    row = to_declaration_row(_qual(period="2024-Q3"))
    assert row.c1 == "30.09.2024"


def test_reference_scenario():
    row = to_declaration_row(_qual(factor8="0.5", regime=_regime()))
    assert row.c8 == 500000
    assert row.c5 == 500000
    assert row.c19 == 184932
    others = [getattr(row, f"c{i}") for i in range(17, 33) if i != 19]
    assert all(v == 0 for v in others)


def test_c5_is_never_negative():
    row = to_declaration_row(_qual(factor8="0.7", factor9="0.6"))
    assert row.c5 == 0
    assert row.c8 == 700000
    assert row.c9 == 600000


def test_amounts_round_half_up():
    row = to_declaration_row(_qual(amount="101", factor8="0.5"))
    assert row.c8 == 51
    assert row.c5 == 51


def test_no_regime_means_no_credits():
    row = to_declaration_row(_qual(factor8="0.5"))
    assert all(getattr(row, f"c{i}") == 0 for i in range(17, 33))


def test_invalid_regime_zeroes_credits_and_warns():
    warnings = []
    row = to_declaration_row(_qual(regime=_regime(corporate_tax_rate=Decimal("1"))), warnings=warnings)
    assert all(getattr(row, f"c{i}") == 0 for i in range(17, 33))
    assert row.c5 == 1000000
    assert len(warnings) == 1
    assert "q1" in warnings[0]


def test_invalid_regime_can_propagate():
    with pytest.raises(InvalidRegimeConfig):
        to_declaration_row(
            _qual(regime=_regime(tax_regime=None)),
            on_invalid_regime=OnInvalidRegime.PROPAGATE,
        )


def test_row_identification_columns():
    q = _qual()
    q.certificate_number = "CERT-7"
    row = to_declaration_row(q, "12.345.678-9", 150, OwnershipFlag.USUFRUCT_HOLDER)
    assert row.c2 == "12.345.678-9"
    assert row.c3 == OwnershipFlag.USUFRUCT_HOLDER
    assert row.c4 == 150
    assert row.c33 == "CERT-7"


def test_clean_rut():
    assert clean_rut("76.123.456-k") == "76123456K"
    assert clean_rut(" 12 345 678-9 ") == "123456789"


def test_declarant_defaults_and_overrides():
    profile = FilerProfile(rut="76.123.456-7", first_name="Ana", last_name="Pérez", email="ana@example.cl")
    d = transform_declarant(profile)
    assert d.name == "Ana Pérez"
    assert d.postal_address == "No especificado"
    assert d.commune == "No especificada"
    assert d.phone == "No especificado"

    d = transform_declarant(profile, FilingOverrides(taxpayer_name="Corredora SpA", commune="Providencia"))
    assert d.name == "Corredora SpA"
    assert d.commune == "Providencia"


def test_filter_by_taxpayer_falls_back_to_all():
    a = _qual("a")
    a.taxpayer_rut = "11.111.111-1"
    b = _qual("b")
    b.taxpayer_rut = "22.222.222-2"
    assert [q.id for q in filter_by_taxpayer([a, b], "111111111")] == ["a"]
    assert [q.id for q in filter_by_taxpayer([a, b], "99.999.999-9")] == ["a", "b"]
    assert [q.id for q in filter_by_taxpayer([a, b], None)] == ["a", "b"]


def test_transform_to_declaration_keeps_input_order():
    profile = FilerProfile(rut="76.123.456-7", first_name="Ana", last_name="Pérez")
    quals = [_qual("q1", period="2024-01-31"), _qual("q2", period="2024-Q2"), _qual("q3", period="2024-12-01")]
    data = transform_to_declaration(quals, profile, "2024")
    assert [r.c1 for r in data.rows] == ["31.01.2024", "30.06.2024", "01.12.2024"]
    assert all(r.c2 == "76.123.456-7" for r in data.rows)
    assert all(r.c3 == OwnershipFlag.BARE_OWNER for r in data.rows)
    assert data.warnings == []


def test_year_zero_quarter_does_not_abort_filing():
    profile = FilerProfile(rut="76.123.456-7")
    data = transform_to_declaration([_qual("q1", period="0000-Q1"), _qual("q2", period="2024-Q1")], profile, "2024")
    assert [r.c1 for r in data.rows] == ["05.11.2024", "31.03.2024"]


def test_format_rut():
    assert format_rut("123456789") == "12.345.678-9"
    assert format_rut("7.654.321-k") == "7.654.321-K"
    assert format_rut("9") == "9"


def test_list_taxpayers_groups_by_clean_rut():
    a = _qual("a")
    a.taxpayer_rut = "11.111.111-1"
    b = _qual("b")
    b.taxpayer_rut = "111111111"
    c = _qual("c")
    c.taxpayer_rut = "22.222.222-k"
    d = _qual("d")
    assert list_taxpayers([a, b, c, d]) == [
        {"rut": "11.111.111-1", "rut_clean": "111111111", "count": 2},
        {"rut": "22.222.222-K", "rut_clean": "22222222K", "count": 1},
    ]
    assert list_taxpayers([]) == []
