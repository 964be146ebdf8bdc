"""The rks leaderboard over stored player archives."""

from __future__ import annotations

import logging

from .archive_store import ArchiveStore, DatabaseError, _parse_time
from .models import RKSRankingEntry
from .reports import leaderboard_limit

log = logging.getLogger(__name__)


def get_rks_ranking(store: ArchiveStore, limit: int) -> list[RKSRankingEntry]:
    """The stored players with the highest rks, best first, at most ``limit`` of them."""
    with store._database("获取基础排行榜数据失败") as conn:
        rows = conn.execute(
            "SELECT player_id, player_name, rks, update_time "
            "FROM player_archives ORDER BY rks DESC LIMIT ?",
            (limit,),
        ).fetchall()

    entries: list[RKSRankingEntry] = []
    for player_id, player_name, rks, update_text in rows:
        try:
            update_time = _parse_time(update_text)
        except (TypeError, ValueError) as exc:
            raise DatabaseError(f"解析排行榜更新时间失败 ({player_id}): {exc}") from exc
        entries.append(
            RKSRankingEntry(
                player_id=player_id,
                player_name=player_name,
                rks=rks,
                b27_rks=None,
                ap3_rks=None,
                ap_count=None,
                update_time=update_time,
            )
        )
    log.debug("ranking holds %d players", len(entries))
    return entries


def ranking_for_display(store: ArchiveStore, limit: int | None = None) -> list[RKSRankingEntry]:
    """The leaderboard as shown: 20 players by default, never more than 100."""
    return get_rks_ranking(store, leaderboard_limit(limit))