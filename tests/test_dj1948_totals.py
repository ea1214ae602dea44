from dj1948.dj1948_models import DeclarationRow, ExcessWithdrawal
from dj1948.dj1948_totals import aggregate


def test_empty_filing_is_all_zero():
    totals = aggregate([])
    assert totals.row_count == 0
    assert all(v == 0 for v in totals.columns.values())


def test_numeric_columns_are_summed():
    rows = [
        DeclarationRow(c1="31.03.2024", c2="1-9", c4=10, c5=100, c19=37, c33="A"),
        DeclarationRow(c1="30.06.2024", c2="1-9", c4=5, c5=50, c8=20, c33="B"),
    ]
    totals = aggregate(rows)
    assert totals.row_count == 2
    assert totals["c4"] == 15
    assert totals["c5"] == 150
    assert totals["c8"] == 20
    assert totals["c19"] == 37
    for col in ("c1", "c2", "c3", "c33"):
        assert totals[col] == 0


def test_order_does_not_matter():
    a = DeclarationRow(c5=1, c17=2, c32=3)
    b = DeclarationRow(c5=10, c20=20, c31=30)
    assert aggregate([a, b]).columns == aggregate([b, a]).columns


def test_excess_withdrawals_feed_c35():
    totals = aggregate([], [ExcessWithdrawal(c34="1-9", c35=1000), ExcessWithdrawal(c34="2-7", c35=250)])
    assert totals["c35"] == 1250
    assert totals.row_count == 0
