"""Updating stored player archives: scores, rks and push accuracies."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone

from .archive_store import (
    _SCORE_COLUMNS,
    ArchiveStore,
    DatabaseError,
    _format_time,
    _row_to_chart_score,
)
from .models import ChartScore, RksRecord
from .push import calculate_target_chart_push_acc
from .rks import AP_COUNT, sort_by_rks

log = logging.getLogger(__name__)

_INSERT_SCORE = (
    "INSERT INTO chart_scores ("
    "player_id, song_id, song_name, difficulty, difficulty_value, "
    "score, acc, rks, is_fc, is_phi, play_time, is_current"
    ") VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1)"
)

_UPSERT_PLAYER = (
    "INSERT INTO player_archives (player_id, player_name, rks, update_time) "
    "VALUES (?, ?, ?, ?) "
    "ON CONFLICT(player_id) DO UPDATE SET "
    "player_name = excluded.player_name, update_time = excluded.update_time"
)


def _now_text() -> str:
    return _format_time(datetime.now(timezone.utc))


class PlayerArchiveService(ArchiveStore):
    """Player archives that can also be written to and rescored."""

    def update_player_score(self, player_id: str, player_name: str, score: ChartScore) -> None:
        """Store a new current score for one chart, then rescore the player."""
        log.info(
            "updating %s: %s %s acc=%.2f rks=%.2f",
            player_id, score.song_id, score.difficulty, score.acc, score.rks,
        )
        with self._transaction("更新玩家成绩失败") as conn:
            conn.execute(
                "INSERT OR REPLACE INTO player_archives "
                "(player_id, player_name, rks, update_time) VALUES (?, ?, ?, ?)",
                (player_id, player_name, 0.0, _now_text()),
            )
            conn.execute(
                "UPDATE chart_scores SET is_current = 0 "
                "WHERE player_id = ? AND song_id = ? AND difficulty = ?",
                (player_id, score.song_id, score.difficulty),
            )
            conn.execute(
                _INSERT_SCORE,
                (
                    player_id,
                    score.song_id,
                    score.song_name,
                    score.difficulty,
                    score.difficulty_value,
                    score.score,
                    score.acc,
                    score.rks,
                    int(score.is_fc),
                    int(score.is_phi),
                    _format_time(score.play_time),
                ),
            )
        self.invalidate(player_id)
        self.recalculate_player_rks(player_id)
        if self.config.store_push_acc:
            self.recalculate_push_acc(player_id)

    def recalculate_player_rks(self, player_id: str) -> float:
        """Recompute and store the player's rks from their current scores."""
        with self._database("查询成绩RKS失败") as conn:
            rks_values = [
                row[0]
                for row in conn.execute(
                    "SELECT rks FROM chart_scores "
                    "WHERE player_id = ? AND is_current = 1 ORDER BY rks DESC",
                    (player_id,),
                )
            ]
            ap_values = [
                row[0]
                for row in conn.execute(
                    "SELECT rks FROM chart_scores "
                    "WHERE player_id = ? AND is_current = 1 AND acc >= 100.0 "
                    "ORDER BY rks DESC",
                    (player_id,),
                )
            ]

        best_n_count = self.config.best_n_count
        best_denominator = min(len(rks_values), best_n_count)
        best_avg = (
            sum(rks_values[:best_n_count]) / best_denominator if best_denominator else 0.0
        )

        ap_top = ap_values[:AP_COUNT]
        ap_avg = sum(ap_top) / len(ap_top) if ap_top else 0.0

        weights = {0: (1.0, 0.0), 1: (5.0 / 6.0, 1.0 / 6.0), 2: (2.0 / 3.0, 1.0 / 3.0)}
        best_weight, ap_weight = weights.get(len(ap_top), (0.5, 0.5))
        final_rks = best_avg * best_weight + ap_avg * ap_weight

        log.info(
            "rks of %s: best%d avg=%.4f, ap top %d avg=%.4f, final=%.4f",
            player_id, best_n_count, best_avg, len(ap_top), ap_avg, final_rks,
        )
        with self._transaction("更新玩家RKS失败") as conn:
            conn.execute(
                "UPDATE player_archives SET rks = ?, update_time = ? WHERE player_id = ?",
                (final_rks, _now_text(), player_id),
            )
        return final_rks

    def update_player_scores_from_rks_records(
        self,
        player_id: str,
        player_name: str,
        rks_records: Sequence[RksRecord],
        fc_map: Mapping[str, bool],
    ) -> None:
        """Replace the player's current scores with these records, then rescore them."""
        if not rks_records:
            log.warning("no records for %s (%s); only the player entry is updated",
                        player_id, player_name)
            with self._transaction("更新玩家信息失败") as conn:
                conn.execute(_UPSERT_PLAYER, (player_id, player_name, 0.0, _now_text()))
            return

        update_time = _now_text()
        with self._transaction("批量更新成绩失败") as conn:
            conn.execute(_UPSERT_PLAYER, (player_id, player_name, 0.0, update_time))
            conn.execute(
                "UPDATE chart_scores SET is_current = 0 WHERE player_id = ?", (player_id,)
            )
            conn.executemany(
                _INSERT_SCORE,
                [
                    (
                        player_id,
                        record.song_id,
                        record.song_name,
                        record.difficulty,
                        record.difficulty_value,
                        record.score if record.score is not None else 0.0,
                        record.acc,
                        record.rks,
                        int(fc_map.get(f"{record.song_id}-{record.difficulty}", False)),
                        int(record.acc >= 100.0),
                        update_time,
                    )
                    for record in rks_records
                ],
            )

        try:
            new_rks = self.recalculate_player_rks(player_id)
            log.info("rks of %s (%s) is now %.4f", player_id, player_name, new_rks)
        except DatabaseError as exc:
            log.error("recalculating rks of %s failed: %s", player_id, exc)

        if self.config.store_push_acc:
            try:
                self.recalculate_push_acc(player_id)
            except DatabaseError as exc:
                log.error("recalculating push acc of %s failed: %s", player_id, exc)

        self.invalidate(player_id)

    def recalculate_push_acc(self, player_id: str) -> None:
        """Recompute and store the push accuracy of every chart the player can improve."""
        if self.get_player_archive(player_id) is None:
            raise DatabaseError(f"玩家不存在: {player_id}")

        with self._database("获取成绩记录失败") as conn:
            rows = conn.execute(
                f"SELECT {_SCORE_COLUMNS} FROM chart_scores "
                "WHERE player_id = ? AND is_current = 1",
                (player_id,),
            ).fetchall()
        scores = [_row_to_chart_score(row) for row in rows]
        sorted_records = sort_by_rks(
            RksRecord(
                song_id=s.song_id,
                song_name=s.song_name,
                difficulty=s.difficulty,
                difficulty_value=s.difficulty_value,
                acc=s.acc,
                score=s.score,
                rks=s.rks,
            )
            for s in scores
        )

        count = 0
        with self._transaction("更新推分ACC失败") as conn:
            conn.execute("DELETE FROM push_acc WHERE player_id = ?", (player_id,))
            for score in scores:
                if score.acc >= 100.0 or score.difficulty_value <= 0.0:
                    continue
                chart_id = f"{score.song_id}-{score.difficulty}"
                push_acc = calculate_target_chart_push_acc(
                    chart_id, score.difficulty_value, sorted_records
                )
                if push_acc is None or push_acc <= score.acc:
                    continue
                conn.execute(
                    "INSERT OR REPLACE INTO push_acc "
                    "(player_id, song_id, difficulty, push_acc, update_time) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (player_id, score.song_id, score.difficulty, push_acc, _now_text()),
                )
                count += 1

        log.info("%s has %d charts that can push rks", player_id, count)
        self.invalidate(player_id)