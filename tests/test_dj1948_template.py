import pytest

from dj1948.dj1948_models import Declarant, DeclarationRow, ExcessWithdrawal, OwnershipFlag
from dj1948.dj1948_template import (
    DeclarationError,
    TemplateSerializer,
    TemplateSlots,
    check_template,
    serialize,
    split_rut,
)
from dj1948.dj1948_template_lines import TEMPLATE_LINES
from dj1948.dj1948_totals import aggregate

TEMPLATE = list(TEMPLATE_LINES)
DECLARANT = Declarant(rut="76.123.456-7", name="Corredora Andes SpA", email="dj@andes.cl")


def _row(day=31, c5=1000, c19=370):
    return DeclarationRow(
        c1=f"{day:02d}.03.2024",
        c2="12.345.678-9",
        c3=OwnershipFlag.BARE_OWNER,
        c4=100,
        c5=c5,
        c19=c19,
        c33="CERT-1",
    )


def _lines(rows=(), excess=()):
    text = serialize(DECLARANT, list(rows), aggregate(rows, excess), "2024", excess)
    return text.split("\r\n")


def test_template_shape():
    assert len(TEMPLATE) == 51
    check_template(TEMPLATE, TemplateSlots())


def test_empty_filing_keeps_full_skeleton():
    text = serialize(DECLARANT, [], aggregate([]), "2024")
    lines = text.split("\r\n")
    assert len(lines) == 51
    assert "\n" not in text.replace("\r\n", "")
    totals = lines[45].split(";")
    assert totals[:31] == ["0"] * 31
    assert len(totals) == len(TEMPLATE[45].split(";"))


def test_declarant_slots():
    lines = _lines()
    assert lines[7].split(";")[0] == "76.123.456-7"
    assert lines[7].split(";")[2] == "Corredora Andes SpA"
    assert lines[11].split(";")[0] == "dj@andes.cl"
    assert lines[11].split(";")[2] == "2024"


def test_declarant_values_cannot_break_columns():
    d = Declarant(rut="76.123.456-7", name="Andes; Inversiones\nSpA")
    lines = serialize(d, [], aggregate([]), "2024").split("\r\n")
    assert len(lines) == 51
    assert lines[7].split(";")[2] == "Andes  Inversiones SpA"
    assert len(lines[7].split(";")) == len(TEMPLATE[7].split(";"))


def test_rows_are_inserted_after_column_header():
    rows = [_row(day=d) for d in (29, 30, 31)]
    lines = _lines(rows)
    assert len(lines) == 54
    assert lines[23].startswith("C1;C2;")
    assert [l.split(";")[0] for l in lines[24:27]] == ["29.03.2024", "30.03.2024", "31.03.2024"]
    assert lines[27] == TEMPLATE[24]
    assert lines[47].startswith("C36;")


def test_data_line_layout():
    line = _lines([_row()])[24].split(";")
    assert line[:6] == ["31.03.2024", "12345678", "9", "2", "100", "1000"]
    assert len(line) == 34
    # C19 sits after date, split RUT, C3, C4 and C5..C18
    assert line[19] == "370"
    assert line[-1] == "CERT-1"


def test_totals_line_shifts_with_rows():
    rows = [_row(), _row(c5=500, c19=185)]
    lines = _lines(rows)
    totals = lines[45 + len(rows)].split(";")
    assert totals[0] == "200"
    assert totals[1] == "1500"
    assert totals[15] == "555"
    assert totals[30] == "2"
    assert lines[44 + len(rows)].startswith("C36;")


def test_section_c_lines():
    lines = _lines(excess=[ExcessWithdrawal(c34="9.876.543-k", c35=5000)])
    assert lines[33].startswith("C34;C35;")
    assert lines[34] == "9876543K;5000"
    assert len(lines) == 52
    totals = lines[46].split(";")
    assert totals[29] == "5000"
    assert totals[30] == "0"


def test_missing_declarant_rut_fails_before_output():
    with pytest.raises(DeclarationError) as exc:
        serialize(Declarant(name="Sin RUT"), [_row()], aggregate([_row()]), "2024")
    assert exc.value.problems == ["declarant RUT is required"]


def test_missing_rut_and_year_in_one_error():
    with pytest.raises(DeclarationError) as exc:
        serialize(Declarant(), [], aggregate([]), "  ")
    assert len(exc.value.problems) == 2


def test_grid_keeps_numbers():
    rows = [_row()]
    grid = TemplateSerializer().to_grid(DECLARANT, rows, aggregate(rows), "2024")
    assert len(grid) == 52
    assert grid[24][5] == 1000
    assert isinstance(grid[24][5], int)
    assert grid[46][30] == 1


def test_moved_template_is_rejected():
    with pytest.raises(ValueError):
        check_template(TEMPLATE, TemplateSlots(section_b_header=22))


def test_split_rut():
    assert split_rut("12.345.678-9") == ("12345678", "9")
    assert split_rut("7.654.321-k") == ("7654321", "K")
    assert split_rut("") == ("", "")


def test_serializer_rejects_mismatched_lines_up_front():
    with pytest.raises(ValueError):
        TemplateSerializer(lines=TEMPLATE[1:])


def test_serializer_uses_injected_lines():
    lines = list(TEMPLATE)
    lines[0] = "custom;header"
    text = TemplateSerializer(lines=lines).serialize(DECLARANT, [], aggregate([]), "2024")
    assert text.split("\r\n")[0] == "custom;header"


def test_serializing_leaves_template_untouched():
    rows = [_row()]
    serializer = TemplateSerializer()
    first = serializer.serialize(DECLARANT, rows, aggregate(rows), "2024")
    second = serializer.serialize(DECLARANT, rows, aggregate(rows), "2024")
    assert first == second
    assert serializer.lines == TEMPLATE_LINES
    assert TEMPLATE_LINES[7].startswith("ROL ÚNICO TRIBUTARIO;")
