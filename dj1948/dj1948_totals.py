"""Cuadro resumen final: per-column totals of a DJ1948 filing."""

from __future__ import annotations

from typing import Iterable

from .dj1948_models import DeclarationRow, ExcessWithdrawal, Totals


def aggregate(rows: Iterable[DeclarationRow], excess_withdrawals: Iterable[ExcessWithdrawal] = ()) -> Totals:
    """Sum every numeric column (C4..C32) across rows, plus C35 from section C.

    Text columns (date, RUT, ownership flag, certificate number) stay at 0.
    An empty filing yields all zeros and row_count 0.
    """
    totals = Totals()
    count = 0
    for row in rows:
        count += 1
        for col, value in row.numeric_values().items():
            totals.columns[col] += value

    for excess in excess_withdrawals:
        totals.columns["c35"] += excess.c35

    totals.row_count = count
    return totals
