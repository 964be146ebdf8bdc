"""Ranking-score arithmetic for single charts and whole players."""

from __future__ import annotations

import math
from collections.abc import Iterable

from .models import RksRecord

BEST_COUNT = 27
AP_COUNT = 3


def round_half_away(value: float, digits: int = 2) -> float:
    """Round to the given number of decimals, halves away from zero."""
    scale = 10**digits
    scaled = abs(value) * scale
    rounded = math.floor(scaled + 0.5)
    return math.copysign(rounded / scale, value)


def sort_by_rks(records: Iterable[RksRecord]) -> list[RksRecord]:
    """A new list of the records, highest rks first; equal ones keep their order."""
    return sorted(records, key=lambda r: r.rks, reverse=True)


def calculate_player_rks_details(records: Iterable[RksRecord]) -> tuple[float, float]:
    """The player's exact rks and its value rounded to two decimals.

    The score is the sum of the best 27 charts and the best 3 phi charts, over 30.
    """
    ordered = sort_by_rks(records)
    if not ordered:
        return 0.0, 0.0
    best_sum = sum(r.rks for r in ordered[:BEST_COUNT])
    ap_sum = sum(r.rks for r in [r for r in ordered if r.acc >= 100.0][:AP_COUNT])
    exact = (best_sum + ap_sum) / 30.0
    return exact, round_half_away(exact * 100.0, 0) / 100.0


def calculate_chart_rks(acc_percent: float, constant: float) -> float:
    """The rks a chart of this constant gives at this accuracy (in percent)."""
    acc = acc_percent / 100.0
    if acc < 0.7:
        return 0.0
    return ((acc * 100.0 - 55.0) / 45.0) ** 2 * constant