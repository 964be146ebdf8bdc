"""Statistics and per-chart data shown on player and song reports."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

from .models import RksRecord, SongDifficulty, SongRecord
from .push import NO_PUSH, calculate_target_chart_push_acc
from .rks import AP_COUNT, BEST_COUNT, calculate_player_rks_details, sort_by_rks

DIFFICULTIES: tuple[str, ...] = ("EZ", "HD", "IN", "AT")
DEFAULT_LEADERBOARD_LIMIT = 20
MAX_LEADERBOARD_LIMIT = 100


@dataclass
class PlayerStats:
    """Summary figures for a player's best-N report."""

    ap_top_3_avg: float | None
    best_27_avg: float | None
    real_rks: float | None
    player_name: str | None
    update_time: datetime
    n: int
    ap_top_3_scores: list[RksRecord] = field(default_factory=list)


@dataclass
class SongDifficultyScore:
    """A player's standing on one difficulty of a song."""

    score: float | None
    acc: float | None
    rks: float | None
    difficulty_value: float | None
    is_fc: bool | None
    is_phi: bool | None
    player_push_acc: float | None


def build_push_acc_map(
    top_records: Iterable[RksRecord], sorted_records: Sequence[RksRecord]
) -> dict[str, float]:
    """Push accuracies for every non-phi chart with a positive constant among top_records.

    ``sorted_records`` holds all of the player's records, highest rks first.
    """
    push_map: dict[str, float] = {}
    for record in top_records:
        if record.acc >= 100.0 or record.difficulty_value <= 0.0:
            continue
        chart_id = f"{record.song_id}-{record.difficulty}"
        push_acc = calculate_target_chart_push_acc(
            chart_id, record.difficulty_value, sorted_records
        )
        if push_acc is not None:
            push_map[chart_id] = push_acc
    return push_map


def build_player_stats(
    records: Iterable[RksRecord], n: int, player_name: str | None = None
) -> PlayerStats:
    """Rounded rks, best-27 average and phi top-3 figures of a player."""
    ordered = sort_by_rks(records)
    _, rounded_rks = calculate_player_rks_details(ordered)

    ap_top = [r for r in ordered if r.acc == 100.0][:AP_COUNT]
    ap_top_3_avg = (
        sum(r.rks for r in ap_top) / AP_COUNT if len(ap_top) >= AP_COUNT else None
    )

    best = ordered[:BEST_COUNT]
    best_27_avg = sum(r.rks for r in best) / len(best) if best else None

    return PlayerStats(
        ap_top_3_avg=ap_top_3_avg,
        best_27_avg=best_27_avg,
        real_rks=rounded_rks,
        player_name=player_name,
        update_time=datetime.now(timezone.utc),
        n=n,
        ap_top_3_scores=ap_top,
    )


def build_song_difficulty_scores(
    song_id: str,
    constants: SongDifficulty,
    song_records: Mapping[str, SongRecord] | None,
    all_sorted_records: Sequence[RksRecord],
) -> dict[str, SongDifficultyScore]:
    """The player's result and push accuracy on each of the four difficulties of a song."""
    records = song_records or {}
    scores: dict[str, SongDifficultyScore] = {}
    for diff_key in DIFFICULTIES:
        constant = constants.constant_for(diff_key)
        record = records.get(diff_key)
        acc = record.acc if record is not None else None
        is_phi = acc == 100.0 if acc is not None else False

        if constant is not None and constant > 0.0 and not is_phi:
            push_acc = calculate_target_chart_push_acc(
                f"{song_id}-{diff_key}", constant, all_sorted_records
            )
        else:
            push_acc = NO_PUSH

        scores[diff_key] = SongDifficultyScore(
            score=record.score if record is not None else None,
            acc=acc,
            rks=record.rks if record is not None else None,
            difficulty_value=constant,
            is_fc=record.fc if record is not None else None,
            is_phi=is_phi,
            player_push_acc=push_acc,
        )
    return scores


def leaderboard_limit(limit: int | None) -> int:
    """How many players a leaderboard shows: 20 by default, never more than 100."""
    chosen = DEFAULT_LEADERBOARD_LIMIT if limit is None else limit
    return min(chosen, MAX_LEADERBOARD_LIMIT)