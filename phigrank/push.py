"""How much accuracy a chart needs for the player's displayed rks to go up by 0.01."""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass

from .models import RksRecord
from .rks import AP_COUNT, BEST_COUNT, calculate_chart_rks, sort_by_rks

log = logging.getLogger(__name__)

NO_PUSH = 100.0
_MAX_ITERATIONS = 100
_PRECISION = 1e-5


@dataclass(frozen=True)
class _Precalculated:
    """The current best-27 and phi-3 state of a player."""

    exact_rks: float
    b27_sum: float
    ap3_sum: float
    b27_records: tuple[RksRecord, ...]
    ap_records: tuple[RksRecord, ...]

    @classmethod
    def from_sorted_records(cls, records: Sequence[RksRecord]) -> _Precalculated:
        b27 = tuple(records[:BEST_COUNT])
        b27_sum = sum(r.rks for r in b27)
        ap = tuple(r for r in records if r.acc >= 100.0)
        ap3_sum = sum(r.rks for r in ap[:AP_COUNT])
        return cls(
            exact_rks=(b27_sum + ap3_sum) / 30.0,
            b27_sum=b27_sum,
            ap3_sum=ap3_sum,
            b27_records=b27,
            ap_records=ap,
        )


def _split_chart_id(chart_id: str) -> tuple[str, str] | None:
    parts = chart_id.rsplit("-", 1)
    if len(parts) != 2:
        return None
    return parts[0], parts[1]


def _is_chart(record: RksRecord, song_id: str, difficulty: str) -> bool:
    return record.song_id == song_id and record.difficulty == difficulty


def _simulate(
    chart_id: str,
    constant: float,
    test_acc: float,
    all_sorted: Sequence[RksRecord],
    pre: _Precalculated,
) -> float:
    """The player's exact rks if the chart were played at test_acc."""
    split = _split_chart_id(chart_id)
    if split is None:
        return pre.exact_rks
    song_id, difficulty = split

    simulated_rks = calculate_chart_rks(test_acc, constant)
    simulated_is_ap = test_acc >= 100.0

    original = next((r for r in all_sorted if _is_chart(r, song_id, difficulty)), None)
    original_is_ap = original is not None and original.acc >= 100.0

    b27_sum = pre.b27_sum
    b27_candidates = list(pre.b27_records)
    removed_from_b27 = False
    if original is not None:
        pos = next(
            (i for i, r in enumerate(b27_candidates) if _is_chart(r, song_id, difficulty)),
            None,
        )
        if pos is not None:
            b27_sum -= original.rks
            del b27_candidates[pos]
            removed_from_b27 = True

    if len(b27_candidates) < BEST_COUNT and not removed_from_b27:
        b27_min = 0.0
    elif not b27_candidates:
        b27_min = 0.0
    else:
        lowest = b27_candidates[-1].rks
        if len(b27_candidates) >= BEST_COUNT:
            b27_min = lowest
        elif len(all_sorted) > BEST_COUNT:
            b27_min = min(all_sorted[BEST_COUNT].rks, lowest)
        else:
            b27_min = lowest

    if simulated_rks > b27_min:
        b27_sum += simulated_rks
        if len(pre.b27_records) >= BEST_COUNT:
            pushed_out = pre.b27_records[BEST_COUNT - 1] if removed_from_b27 else pre.b27_records[-1]
            b27_sum -= pushed_out.rks

    ap_candidates = list(pre.ap_records)
    if original_is_ap:
        pos = next(
            (i for i, r in enumerate(ap_candidates) if _is_chart(r, song_id, difficulty)),
            None,
        )
        if pos is not None:
            del ap_candidates[pos]
    if simulated_is_ap:
        ap_candidates.append(
            RksRecord(
                song_id=song_id,
                song_name="",
                difficulty=difficulty,
                difficulty_value=0.0,
                acc=100.0,
                score=None,
                rks=simulated_rks,
            )
        )
        ap_candidates = sort_by_rks(ap_candidates)
    ap3_sum = sum(r.rks for r in ap_candidates[:AP_COUNT])

    return (b27_sum + ap3_sum) / 30.0


def target_rks_threshold(current_exact_rks: float) -> float:
    """The exact rks at which the two-decimal rks shows 0.01 more than now."""
    third_decimal = int(math.fmod(current_exact_rks * 1000.0, 10.0))
    base = math.floor(current_exact_rks * 100.0) / 100.0
    return base + (0.005 if third_decimal < 5 else 0.015)


def calculate_target_chart_push_acc(
    target_chart_id_full: str,
    target_chart_constant: float,
    all_sorted_records: Sequence[RksRecord],
) -> float | None:
    """The lowest accuracy on the chart that raises the displayed rks by 0.01.

    ``all_sorted_records`` must be sorted by rks, highest first. Returns 100.0 when
    the chart cannot push the rks, and None when the chart id is not "song-difficulty".
    """
    pre = _Precalculated.from_sorted_records(all_sorted_records)
    current = pre.exact_rks
    threshold = target_rks_threshold(current)

    b27_full = len(pre.b27_records) >= BEST_COUNT
    ap3_full = len(pre.ap_records) >= AP_COUNT
    min_b27 = pre.b27_records[-1].rks if b27_full else 0.0
    min_ap3 = pre.ap_records[AP_COUNT - 1].rks if ap3_full else 0.0
    if (
        b27_full
        and ap3_full
        and target_chart_constant < min_b27
        and target_chart_constant < min_ap3
    ):
        return NO_PUSH

    if current >= threshold:
        return NO_PUSH

    split = _split_chart_id(target_chart_id_full)
    if split is None:
        log.debug("malformed chart id: %s", target_chart_id_full)
        return None
    song_id, difficulty = split

    current_acc = next(
        (max(r.acc, 70.0) for r in all_sorted_records if _is_chart(r, song_id, difficulty)),
        70.0,
    )

    if (
        _simulate(target_chart_id_full, target_chart_constant, 100.0, all_sorted_records, pre)
        < threshold
    ):
        return NO_PUSH

    low, high = current_acc, 100.0
    for _ in range(_MAX_ITERATIONS):
        if high - low < _PRECISION:
            break
        mid = low + (high - low) / 2.0
        simulated = _simulate(
            target_chart_id_full, target_chart_constant, mid, all_sorted_records, pre
        )
        if simulated >= threshold:
            high = mid
        else:
            low = mid

    result_acc = max(high, 70.0)
    rounded = math.ceil(result_acc * 100.0) / 100.0
    if abs(rounded - current_acc) < _PRECISION:
        rounded = math.ceil(result_acc * 1000.0) / 1000.0
    return min(rounded, 100.0)