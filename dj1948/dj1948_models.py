"""DJ1948 data model (SII Declaración Jurada 1948).

Goal: represent the *declared values* in a strict, auditable structure.

Design principles:
- One canonical field per declaration column (c1..c35).
- Monetary columns are whole pesos; sub-peso amounts are not legal in the file.
- Keep layout concerns (template line indices) out of this model.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, condecimal, conint


Factor = condecimal(ge=0, le=1)
Pesos = conint(ge=0)

# Columns that never hold numbers (date, receiver RUT, ownership flag, certificate).
NON_NUMERIC_COLUMNS = ("c1", "c2", "c3", "c33")
CATEGORY_COLUMNS = tuple(f"c{i}" for i in range(5, 17))
SPECIAL_CATEGORY_COLUMNS = tuple(f"c{i}" for i in range(8, 17))
CREDIT_COLUMNS = tuple(f"c{i}" for i in range(17, 33))
TAXABLE_CREDIT_COLUMNS = ("c17", "c18", "c19", "c20", "c21", "c22")
EXEMPT_CREDIT_COLUMNS = ("c23", "c24")


class TaxRegime(str, Enum):
    GENERAL = "14A"      # Art. 14 letra A) LIR
    SIMPLIFIED = "14D3"  # Pro Pyme general, Art. 14 D) N°3


class OwnershipFlag(int, Enum):
    USUFRUCT_HOLDER = 1
    BARE_OWNER = 2


class OnInvalidRegime(str, Enum):
    """What the row transformer does when a record's regime fails validation."""

    ZERO_CREDITS = "zeroCredits"
    PROPAGATE = "propagate"


class RegimeConfig(BaseModel):
    """Filer regime used to derive credits (C17..C32).

    Values are not range-checked here: a malformed regime must still reach the
    calculator so the row policy can decide what to do with it.
    """

    tax_regime: Optional[TaxRegime] = None
    corporate_tax_rate: Decimal = Field(..., description="IDPC rate, e.g. 0.27")
    fiscal_year: int
    has_refund_right: bool = False
    is_subject_to_restitution: bool = False


class Money(BaseModel):
    value: Decimal = Decimal("0")
    currency: str = "CLP"


class TaxFactors(BaseModel):
    """Allocation factors F8..F16, one per special income column."""

    factor8: Factor = Decimal("0")   # C8: sin derecho a crédito
    factor9: Factor = Decimal("0")   # C9: RAP y diferencia inicial
    factor10: Factor = Decimal("0")  # C10: otras rentas sin prioridad
    factor11: Factor = Decimal("0")  # C11: exceso distribuciones desproporcionadas
    factor12: Factor = Decimal("0")  # C12: ISFUT Ley 20.780
    factor13: Factor = Decimal("0")  # C13: rentas hasta 1983 / ISFUT / ISIF
    factor14: Factor = Decimal("0")  # C14: exentas IGC Art. 11 Ley 18.401
    factor15: Factor = Decimal("0")  # C15: exentos IGC y/o IA
    factor16: Factor = Decimal("0")  # C16: ingresos no constitutivos de renta

    def for_column(self, column: str) -> Decimal:
        return getattr(self, "factor" + column[1:])


class Qualification(BaseModel):
    """A persisted tax qualification, already validated upstream."""

    id: str
    amount: Money
    factors: TaxFactors = Field(default_factory=TaxFactors)
    period: str = ""
    last_modified: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    regime: Optional[RegimeConfig] = None
    taxpayer_rut: Optional[str] = None
    certificate_number: Optional[str] = None


class CategoryAmounts(BaseModel):
    """Income buckets C5..C16 in whole pesos."""

    c5: Pesos = 0
    c6: Pesos = 0
    c7: Pesos = 0
    c8: Pesos = 0
    c9: Pesos = 0
    c10: Pesos = 0
    c11: Pesos = 0
    c12: Pesos = 0
    c13: Pesos = 0
    c14: Pesos = 0
    c15: Pesos = 0
    c16: Pesos = 0


class CreditColumns(BaseModel):
    """Computed credits C17..C32."""

    # Acumulados desde 01.01.2017, no sujetos a restitución, generados 2017-2019
    c17: Pesos = 0
    c18: Pesos = 0
    # No sujetos a restitución, generados desde 01.01.2020
    c19: Pesos = 0
    c20: Pesos = 0
    # Sujetos a restitución
    c21: Pesos = 0
    c22: Pesos = 0
    # Asociados a rentas exentas (Art. 11 Ley 18.401)
    c23: Pesos = 0
    c24: Pesos = 0
    c25: Pesos = 0
    # Acumulados hasta 31.12.2016
    c26: Pesos = 0
    c27: Pesos = 0
    c28: Pesos = 0
    c29: Pesos = 0
    c30: Pesos = 0
    # Otros
    c31: Pesos = 0
    c32: Pesos = 0


class DeclarationRow(BaseModel):
    """Section B: one row per informed receiver (columns 1..33)."""

    # Identificación
    c1: str = ""                                  # fecha DD.MM.AAAA
    c2: str = ""                                  # RUT receptor
    c3: Optional[OwnershipFlag] = None            # 1 usufructuario, 2 nudo propietario
    c4: Pesos = 0                                 # cantidad de acciones al 31/12

    # Afectos a IGC / IA
    c5: Pesos = 0
    c6: Pesos = 0
    c7: Pesos = 0
    c8: Pesos = 0

    # Rentas con tributación cumplida, exentas e INR
    c9: Pesos = 0
    c10: Pesos = 0
    c11: Pesos = 0
    c12: Pesos = 0
    c13: Pesos = 0
    c14: Pesos = 0
    c15: Pesos = 0
    c16: Pesos = 0

    # Créditos
    c17: Pesos = 0
    c18: Pesos = 0
    c19: Pesos = 0
    c20: Pesos = 0
    c21: Pesos = 0
    c22: Pesos = 0
    c23: Pesos = 0
    c24: Pesos = 0
    c25: Pesos = 0
    c26: Pesos = 0
    c27: Pesos = 0
    c28: Pesos = 0
    c29: Pesos = 0
    c30: Pesos = 0
    c31: Pesos = 0
    c32: Pesos = 0

    c33: str = ""                                 # número de certificado

    def numeric_values(self) -> Dict[str, int]:
        return {
            f"c{i}": getattr(self, f"c{i}")
            for i in range(1, 34)
            if f"c{i}" not in NON_NUMERIC_COLUMNS
        }


class ExcessWithdrawal(BaseModel):
    """Section C: pending excess withdrawals per beneficiary."""

    c34: str
    c35: Pesos = 0


class Declarant(BaseModel):
    """Section A: identity of the filing entity."""

    rut: str = ""
    name: str = ""
    postal_address: str = "No especificado"
    commune: str = "No especificada"
    email: str = ""
    phone: str = "No especificado"


class FilerProfile(BaseModel):
    """The account generating the filing (usually the broker)."""

    rut: str = ""
    first_name: str = ""
    last_name: str = ""
    email: str = ""


class FilingOverrides(BaseModel):
    """Optional per-filing values supplied by the caller."""

    postal_address: Optional[str] = None
    commune: Optional[str] = None
    phone: Optional[str] = None
    receiver_rut: Optional[str] = None
    share_count: Optional[int] = Field(None, ge=0)
    ownership_flag: Optional[OwnershipFlag] = None
    taxpayer_name: Optional[str] = None
    excess_withdrawals: List[ExcessWithdrawal] = Field(default_factory=list)


class Totals(BaseModel):
    """Final summary block: per-column sums plus the number of informed rows."""

    columns: Dict[str, int] = Field(default_factory=lambda: {f"c{i}": 0 for i in range(1, 36)})
    row_count: int = 0

    def __getitem__(self, column: str) -> int:
        return self.columns.get(column, 0)


class DeclarationData(BaseModel):
    declarant: Declarant
    rows: List[DeclarationRow] = Field(default_factory=list)
    excess_withdrawals: List[ExcessWithdrawal] = Field(default_factory=list)
    fiscal_year_label: str
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    warnings: List[str] = Field(default_factory=list)


class DeclarationDocument(BaseModel):
    """A rendered filing plus provenance hashes."""

    doc_type: Literal["DJ1948"] = "DJ1948"
    filename: str
    media_type: str
    content_sha256: str
    document_version_id: str
    row_count: int
    totals: Totals
    warnings: List[str] = Field(default_factory=list)
