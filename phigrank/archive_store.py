"""SQLite storage and caching of player archives."""

from __future__ import annotations

import copy
import logging
import os
import sqlite3
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from .models import ArchiveConfig, ChartScore, ChartScoreHistory, PlayerArchive

log = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 300.0

_SCHEMA = """
CREATE TABLE IF NOT EXISTS player_archives (
    player_id   TEXT PRIMARY KEY,
    player_name TEXT NOT NULL,
    rks         REAL NOT NULL DEFAULT 0,
    update_time TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS chart_scores (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    player_id        TEXT NOT NULL,
    song_id          TEXT NOT NULL,
    song_name        TEXT NOT NULL,
    difficulty       TEXT NOT NULL,
    difficulty_value REAL NOT NULL,
    score            REAL NOT NULL,
    acc              REAL NOT NULL,
    rks              REAL NOT NULL,
    is_fc            INTEGER NOT NULL,
    is_phi           INTEGER NOT NULL,
    play_time        TEXT NOT NULL,
    is_current       INTEGER NOT NULL DEFAULT 1
);
CREATE INDEX IF NOT EXISTS idx_chart_scores_player
    ON chart_scores (player_id, is_current);
CREATE TABLE IF NOT EXISTS push_acc (
    player_id   TEXT NOT NULL,
    song_id     TEXT NOT NULL,
    difficulty  TEXT NOT NULL,
    push_acc    REAL NOT NULL,
    update_time TEXT NOT NULL,
    PRIMARY KEY (player_id, song_id, difficulty)
);
"""

_SCORE_COLUMNS = (
    "song_id, song_name, difficulty, difficulty_value, score, acc, rks, "
    "is_fc, is_phi, play_time"
)


class DatabaseError(Exception):
    """A database operation failed."""


def _format_time(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat()


def _parse_time(text: str) -> datetime:
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    moment = datetime.fromisoformat(text)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _row_to_chart_score(row: tuple) -> ChartScore:
    (song_id, song_name, difficulty, difficulty_value, score, acc, rks, is_fc, is_phi, play_time) = row
    return ChartScore(
        song_id=song_id,
        song_name=song_name,
        difficulty=difficulty,
        difficulty_value=difficulty_value,
        score=score,
        acc=acc,
        rks=rks,
        is_fc=is_fc != 0,
        is_phi=is_phi != 0,
        play_time=_parse_time(play_time),
    )


class ArchiveStore:
    """Reads and deletes player archives, with a short-lived in-memory cache."""

    def __init__(
        self,
        database: str | os.PathLike[str] | sqlite3.Connection,
        config: ArchiveConfig | None = None,
    ) -> None:
        if isinstance(database, sqlite3.Connection):
            self.connection = database
        else:
            self.connection = sqlite3.connect(database, check_same_thread=False)
        self.config = config if config is not None else ArchiveConfig()
        self._lock = threading.RLock()
        self._cache: dict[str, tuple[PlayerArchive, float]] = {}

    @contextmanager
    def _database(self, action: str) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self.connection
            except sqlite3.Error as exc:
                raise DatabaseError(f"{action}: {exc}") from exc

    @contextmanager
    def _transaction(self, action: str) -> Iterator[sqlite3.Connection]:
        with self._database(action) as conn:
            with conn:
                yield conn

    def init_tables(self) -> None:
        """Create the archive tables if they do not exist."""
        with self._database("创建数据表失败") as conn:
            conn.executescript(_SCHEMA)

    def _cached(self, player_id: str) -> PlayerArchive | None:
        with self._lock:
            entry = self._cache.get(player_id)
            if entry is None:
                return None
            archive, stored_at = entry
            if time.monotonic() - stored_at < CACHE_TTL_SECONDS:
                return copy.deepcopy(archive)
            return None

    def invalidate(self, player_id: str) -> None:
        """Forget the cached archive of a player."""
        with self._lock:
            self._cache.pop(player_id, None)

    def get_player_archive(self, player_id: str) -> PlayerArchive | None:
        """The player's archive, or None when the player is unknown."""
        cached = self._cached(player_id)
        if cached is not None:
            log.debug("archive of %s served from cache", player_id)
            return cached

        with self._database("查询玩家失败") as conn:
            player = conn.execute(
                "SELECT player_id, player_name, rks, update_time "
                "FROM player_archives WHERE player_id = ?",
                (player_id,),
            ).fetchone()
        if player is None:
            return None

        with self._database("查询成绩失败") as conn:
            score_rows = conn.execute(
                f"SELECT {_SCORE_COLUMNS} FROM chart_scores "
                "WHERE player_id = ? AND is_current = 1",
                (player_id,),
            ).fetchall()
        scores = [_row_to_chart_score(row) for row in score_rows]
        best_scores = {f"{s.song_id}-{s.difficulty}": s for s in scores}
        best_n_scores = sorted(scores, key=lambda s: s.rks, reverse=True)[
            : self.config.best_n_count
        ]

        with self._database("查询历史记录失败") as conn:
            history_rows = conn.execute(
                "SELECT song_id, difficulty, score, acc, rks, is_fc, is_phi, play_time "
                "FROM chart_scores WHERE player_id = ? "
                "ORDER BY song_id, difficulty, play_time DESC",
                (player_id,),
            ).fetchall()
        chart_histories: dict[str, list[ChartScoreHistory]] = {}
        for song_id, difficulty, score, acc, rks, is_fc, is_phi, play_time in history_rows:
            chart_histories.setdefault(f"{song_id}-{difficulty}", []).append(
                ChartScoreHistory(
                    score=score,
                    acc=acc,
                    rks=rks,
                    is_fc=is_fc != 0,
                    is_phi=is_phi != 0,
                    play_time=_parse_time(play_time),
                )
            )
        limit = self.config.history_max_records
        for key, histories in chart_histories.items():
            histories.sort(key=lambda h: h.play_time, reverse=True)
            if limit > 0:
                chart_histories[key] = histories[:limit]

        push_acc_map: dict[str, float] | None = None
        if self.config.store_push_acc:
            with self._database("查询推分ACC失败") as conn:
                push_rows = conn.execute(
                    "SELECT song_id, difficulty, push_acc FROM push_acc WHERE player_id = ?",
                    (player_id,),
                ).fetchall()
            push_acc_map = {f"{song}-{diff}": value for song, diff, value in push_rows} or None

        archive = PlayerArchive(
            player_id=player[0],
            player_name=player[1],
            rks=player[2],
            update_time=_parse_time(player[3]),
            best_scores=best_scores,
            best_n_scores=best_n_scores,
            chart_histories=chart_histories,
            push_acc_map=push_acc_map,
        )
        with self._lock:
            self._cache[player_id] = (copy.deepcopy(archive), time.monotonic())
        return archive

    def delete_player_archive(self, player_id: str) -> None:
        """Remove the player, their scores and their push accuracies."""
        with self._transaction("删除玩家存档失败") as conn:
            conn.execute("DELETE FROM player_archives WHERE player_id = ?", (player_id,))
            conn.execute("DELETE FROM chart_scores WHERE player_id = ?", (player_id,))
            conn.execute("DELETE FROM push_acc WHERE player_id = ?", (player_id,))
        self.invalidate(player_id)

    def get_player_best_scores(self, player_id: str, n: int | None = None) -> list[ChartScore]:
        """Every current score of the player, in storage order; n is not applied."""
        del n
        self.get_player_archive(player_id)
        with self._database("查询成绩失败") as conn:
            rows = conn.execute(
                f"SELECT {_SCORE_COLUMNS} FROM chart_scores "
                "WHERE player_id = ? AND is_current = 1",
                (player_id,),
            ).fetchall()
        return [_row_to_chart_score(row) for row in rows]

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._cache.clear()
            self.connection.close()