"""Fixed-template serializer for DJ1948.

Approach:
1) Use the SII template (semicolon-separated, one physical line per entry) as
   the skeleton.
2) Write declarant identity into named slots of the skeleton.
3) Insert one line per informed row right after the section B column header,
   and section C lines after the C34/C35 header.
4) Overwrite the summary totals line (shifted by the inserted lines) and join
   everything with CRLF.

The slot map is the only place that knows template line numbers. If SII
publishes a new template revision, update ``TEMPLATE_LINES`` and the slot map
together; ``check_template`` refuses a skeleton whose header lines moved.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from .dj1948_models import Declarant, DeclarationRow, ExcessWithdrawal, Totals
from .dj1948_template_lines import TEMPLATE_LINES
from .dj1948_transform import clean_rut

logger = logging.getLogger(__name__)

DELIMITER = ";"
LINE_TERMINATOR = "\r\n"


class DeclarationError(ValueError):
    """The filing cannot be serialized; no partial output is produced."""

    def __init__(self, problems: List[str]):
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))


@dataclass(frozen=True)
class FieldSlot:
    line: int
    field: int


@dataclass(frozen=True)
class TemplateSlots:
    """Named positions inside the SII template (0-based physical lines)."""

    declarant_rut: FieldSlot = FieldSlot(7, 0)
    declarant_name: FieldSlot = FieldSlot(7, 2)
    declarant_email: FieldSlot = FieldSlot(11, 0)
    fiscal_year: FieldSlot = FieldSlot(11, 2)
    section_b_header: int = 23   # C1;C2;...;C33
    section_c_header: int = 33   # C34;C35
    summary_header: int = 44     # C36;...;C66
    summary_totals: int = 45

    header_markers: Tuple[Tuple[str, str], ...] = (
        ("section_b_header", "C1;C2;"),
        ("section_c_header", "C34;C35;"),
        ("summary_header", "C36;C37;"),
    )


def default_slots() -> TemplateSlots:
    return TemplateSlots()


def check_template(lines: Sequence[str], slots: TemplateSlots) -> None:
    for attr, marker in slots.header_markers:
        idx = getattr(slots, attr)
        if idx >= len(lines) or not lines[idx].startswith(marker):
            raise ValueError(f"template line {idx} is not the {attr} ({marker!r}...)")
    if slots.summary_totals >= len(lines):
        raise ValueError(f"template has no summary totals line {slots.summary_totals}")


def split_rut(rut: str) -> Tuple[str, str]:
    """'12.345.678-9' -> ('12345678', '9')."""
    clean = clean_rut(rut)
    if len(clean) < 2:
        return clean, ""
    return clean[:-1], clean[-1]


def _cell(value: Any) -> str:
    # A delimiter or line break inside a value would shift every column after it.
    return str(value).replace(DELIMITER, " ").replace("\r", " ").replace("\n", " ").strip()


def row_values(row: DeclarationRow) -> List[Any]:
    """Section B values in file order; the receiver RUT takes two columns."""
    body, dv = split_rut(row.c2)
    values: List[Any] = [
        row.c1,
        body,
        dv,
        int(row.c3) if row.c3 is not None else "",
        row.c4,
    ]
    values.extend(getattr(row, f"c{i}") for i in range(5, 33))
    values.append(_cell(row.c33))
    return values


def excess_values(excess: ExcessWithdrawal) -> List[Any]:
    return [clean_rut(excess.c34), excess.c35]


def totals_values(totals: Totals) -> List[Any]:
    """C36..C66: shares, C5..C32, excess withdrawals, then the number of cases."""
    values: List[Any] = [totals["c4"]]
    values.extend(totals[f"c{i}"] for i in range(5, 33))
    values.append(totals["c35"])
    values.append(totals.row_count)
    return values


def _set_field(fields: List[str], index: int, value: str) -> None:
    while len(fields) <= index:
        fields.append("")
    fields[index] = value


def _pad(values: List[Any], width: int) -> List[Any]:
    return values + [""] * max(0, width - len(values))


class TemplateSerializer:
    """Renders declarant, rows and totals into the SII template."""

    def __init__(self, lines: Sequence[str] = TEMPLATE_LINES, slots: Optional[TemplateSlots] = None):
        self.slots = slots or default_slots()
        check_template(lines, self.slots)
        self.lines: Tuple[str, ...] = tuple(lines)

    def _skeleton(self) -> List[List[Any]]:
        return [line.split(DELIMITER) for line in self.lines]

    def _validate(self, declarant: Declarant, fiscal_year_label: str) -> None:
        problems = []
        if not (declarant.rut or "").strip():
            problems.append("declarant RUT is required")
        if not str(fiscal_year_label or "").strip():
            problems.append("fiscal year label is required")
        if problems:
            raise DeclarationError(problems)

    def to_grid(
        self,
        declarant: Declarant,
        rows: Sequence[DeclarationRow],
        totals: Totals,
        fiscal_year_label: str,
        excess_withdrawals: Iterable[ExcessWithdrawal] = (),
    ) -> List[List[Any]]:
        """Filled template as an array of arrays, one entry per file line.

        Numbers stay numeric so spreadsheet writers keep them as numbers.
        """
        self._validate(declarant, fiscal_year_label)
        s = self.slots
        grid = self._skeleton()

        for slot, value in (
            (s.declarant_rut, declarant.rut),
            (s.declarant_name, declarant.name),
            (s.declarant_email, declarant.email),
            (s.fiscal_year, fiscal_year_label),
        ):
            _set_field(grid[slot.line], slot.field, _cell(value))

        # Section C goes first so the section B insert does not move its anchor.
        excess_lines = [excess_values(e) for e in excess_withdrawals]
        grid[s.section_c_header + 1:s.section_c_header + 1] = excess_lines

        data_lines = [row_values(r) for r in rows]
        grid[s.section_b_header + 1:s.section_b_header + 1] = data_lines

        totals_idx = s.summary_totals + len(data_lines) + len(excess_lines)
        width = len(grid[totals_idx])
        grid[totals_idx] = _pad(totals_values(totals), width)

        logger.debug(
            "DJ1948 grid: %d rows, %d excess withdrawals, totals at line %d",
            len(data_lines), len(excess_lines), totals_idx,
        )
        return grid

    def serialize(
        self,
        declarant: Declarant,
        rows: Sequence[DeclarationRow],
        totals: Totals,
        fiscal_year_label: str,
        excess_withdrawals: Iterable[ExcessWithdrawal] = (),
    ) -> str:
        grid = self.to_grid(declarant, rows, totals, fiscal_year_label, excess_withdrawals)
        return LINE_TERMINATOR.join(DELIMITER.join(str(v) for v in line) for line in grid)


def serialize(
    declarant: Declarant,
    rows: Sequence[DeclarationRow],
    totals: Totals,
    fiscal_year_label: str,
    excess_withdrawals: Iterable[ExcessWithdrawal] = (),
) -> str:
    return TemplateSerializer().serialize(declarant, rows, totals, fiscal_year_label, excess_withdrawals)
