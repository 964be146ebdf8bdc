"""Song lookup by id, title or nickname."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from .models import SongDifficulty, SongInfo

log = logging.getLogger(__name__)


class SongNotFoundError(LookupError):
    """No song matches the query."""


class AmbiguousSongNameError(LookupError):
    """The query matches several songs."""


def _names_song(info: SongInfo, song_name: str) -> bool:
    """Whether a nickname-list entry refers to this song."""
    lowered = song_name.lower()
    return (
        info.song == song_name
        or info.song.lower() == lowered
        or info.id.split(".")[0] == song_name
        or info.id == song_name
        or info.id.lower() == lowered
    )


class SongService:
    """Answers song queries against a fixed catalogue."""

    def __init__(
        self,
        songs: Iterable[SongInfo],
        difficulties: Mapping[str, SongDifficulty],
        nicknames: Mapping[str, list[str]],
    ) -> None:
        self._songs = list(songs)
        self._difficulties = dict(difficulties)
        self._nicknames = {name: list(nicks) for name, nicks in nicknames.items()}

    def _resolve_alias(self, song_name: str) -> SongInfo | None:
        return next((info for info in self._songs if _names_song(info, song_name)), None)

    def search_song(self, query: str) -> SongInfo:
        """Find a song by exact id, title, nickname, then by unique partial title or nickname."""
        if not query:
            raise SongNotFoundError("输入为空")
        query = query.strip()
        query_lower = query.lower()

        for info in self._songs:
            if info.id == query:
                return info
        for info in self._songs:
            if info.song.lower() == query_lower:
                return info

        orphan_alias: str | None = None
        for song_name, nicknames in self._nicknames.items():
            if any(nick.lower() == query_lower for nick in nicknames):
                found = self._resolve_alias(song_name)
                if found is not None:
                    return found
                orphan_alias = song_name
                break

        name_matches = [info for info in self._songs if query_lower in info.song.lower()]
        if len(name_matches) == 1:
            return name_matches[0]

        nickname_matches: list[tuple[SongInfo, str]] = []
        for song_name, nicknames in self._nicknames.items():
            nickname = next((n for n in nicknames if query_lower in n.lower()), None)
            if nickname is None:
                continue
            found = self._resolve_alias(song_name)
            if found is not None:
                nickname_matches.append((found, nickname))
            else:
                log.warning("nickname %r of %r has no matching song", nickname, song_name)

        if len(nickname_matches) == 1:
            return nickname_matches[0][0]

        if name_matches:
            raise AmbiguousSongNameError(", ".join(info.song for info in name_matches))
        if nickname_matches:
            raise AmbiguousSongNameError(
                ", ".join(f"{info.song} (别名: {nick})" for info, nick in nickname_matches)
            )

        if orphan_alias is not None:
            return self._fallback_for_alias(orphan_alias)

        raise SongNotFoundError(query)

    def _fallback_for_alias(self, song_name: str) -> SongInfo:
        for info in self._songs:
            if info.id.startswith(f"{song_name}.") or info.id == song_name:
                return info
        song_part = song_name.split(".")[0]
        if song_part != song_name:
            for info in self._songs:
                if info.song == song_part:
                    return info
        log.warning("creating placeholder song info for %r", song_name)
        return SongInfo(id=song_name, song=song_name, composer="未知作曲家")

    def get_song_id(self, query: str) -> str:
        if not query:
            raise SongNotFoundError("输入为空")
        return self.search_song(query).id

    def get_song_difficulty(self, song_id: str) -> SongDifficulty:
        try:
            return self._difficulties[song_id]
        except KeyError:
            raise SongNotFoundError(song_id) from None

    def get_all_songs(self) -> list[SongInfo]:
        return list(self._songs)

    def get_song_id_by_name(self, name_or_alias: str) -> str:
        return self.get_song_id(name_or_alias)

    def get_song_id_by_nickname(self, nickname: str) -> str:
        return self.get_song_id(nickname)

    def get_song_info(self, song_id: str) -> SongInfo:
        return self.search_song(song_id)

    def get_song_by_id(self, song_id: str) -> SongInfo:
        return self.search_song(song_id)

    def search_song_by_name(self, name: str) -> SongInfo:
        return self.search_song(name)

    def search_song_by_nickname(self, nickname: str) -> SongInfo:
        return self.search_song(nickname)