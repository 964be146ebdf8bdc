"""Data types for saves, songs, RKS records and player archives."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

NicknameMap = dict[str, list[str]]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SongRecord:
    """One chart's result in a save."""

    score: float | None = None
    acc: float | None = None
    fc: bool | None = None
    difficulty: float | None = None
    rks: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialise, leaving out the difficulty and rks when they are unset."""
        data: dict[str, Any] = {"score": self.score, "acc": self.acc, "fc": self.fc}
        if self.difficulty is not None:
            data["difficulty"] = self.difficulty
        if self.rks is not None:
            data["rks"] = self.rks
        return data


@dataclass
class RksRecord:
    """A chart result with its computed ranking score; sorts highest rks first."""

    song_id: str
    song_name: str
    difficulty: str
    difficulty_value: float
    acc: float
    score: float | None
    rks: float

    @classmethod
    def from_song_record(
        cls,
        song_id: str,
        song_name: str,
        difficulty: str,
        difficulty_value: float,
        record: SongRecord,
    ) -> RksRecord:
        acc = record.acc if record.acc is not None else 0.0
        rks = ((acc - 55.0) / 45.0) ** 2 * difficulty_value if acc >= 70.0 else 0.0
        return cls(
            song_id=song_id,
            song_name=song_name,
            difficulty=difficulty,
            difficulty_value=difficulty_value,
            acc=acc,
            score=record.score,
            rks=rks,
        )

    def __lt__(self, other: RksRecord) -> bool:
        if not isinstance(other, RksRecord):
            return NotImplemented
        return self.rks > other.rks


@dataclass
class RksResult:
    """All RKS records of a player, highest first."""

    records: list[RksRecord] = field(default_factory=list)

    @classmethod
    def from_records(cls, records: list[RksRecord]) -> RksResult:
        return cls(records=sorted(records, key=lambda r: r.rks, reverse=True))


@dataclass
class GameSave:
    """A decoded cloud save."""

    game_key: dict[str, Any] | None = None
    game_progress: dict[str, Any] | None = None
    game_record: dict[str, dict[str, SongRecord]] | None = None
    settings: dict[str, Any] | None = None
    user: dict[str, Any] | None = None

    def fc_map(self) -> dict[str, bool]:
        """Map "song_id-difficulty" to True for every full-combo chart."""
        if not self.game_record:
            return {}
        return {
            f"{song_id}-{diff_name}": True
            for song_id, difficulties in self.game_record.items()
            for diff_name, record in difficulties.items()
            if record.fc is True
        }

    def player_id(self) -> str:
        """The player's object id, or "unknown" when the save does not carry one."""
        object_id = (self.user or {}).get("objectId")
        return object_id if isinstance(object_id, str) else "unknown"


@dataclass
class SaveSummary:
    checksum: str
    update_at: str
    url: str
    save_version: int
    challenge: int
    rks: float
    game_version: int
    avatar: str
    ez: tuple[int, int, int]
    hd: tuple[int, int, int]
    inl: tuple[int, int, int]
    at: tuple[int, int, int]


@dataclass
class SongInfo:
    id: str
    song: str
    composer: str
    illustrator: str | None = None
    ez_charter: str | None = None
    hd_charter: str | None = None
    in_charter: str | None = None
    at_charter: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "song": self.song,
            "composer": self.composer,
            "illustrator": self.illustrator,
            "EZ": self.ez_charter,
            "HD": self.hd_charter,
            "IN": self.in_charter,
            "AT": self.at_charter,
        }


@dataclass
class SongDifficulty:
    id: str
    ez: float | None = None
    hd: float | None = None
    inl: float | None = None
    at: float | None = None

    def constant_for(self, difficulty: str) -> float | None:
        """The chart constant for "EZ", "HD", "IN" or "AT"; None for anything else."""
        return {"EZ": self.ez, "HD": self.hd, "IN": self.inl, "AT": self.at}.get(difficulty)


@dataclass
class SongNickname:
    id: str
    nicknames: list[str] = field(default_factory=list)


@dataclass
class SongQuery:
    song_id: str | None = None
    song_name: str | None = None
    nickname: str | None = None
    difficulty: str | None = None


@dataclass
class PredictedConstants:
    ez: float | None = None
    hd: float | None = None
    inl: float | None = None
    at: float | None = None


@dataclass
class PredictionResponse:
    song_id: str
    difficulty: str
    predicted_constant: float | None = None


@dataclass
class B30Record:
    song_id: str
    difficulty_str: str
    score: float | None
    acc: float | None
    fc: bool | None
    difficulty: float | None
    rks: float | None
    is_ap: bool


@dataclass
class B30Result:
    overall_rks: float
    top_27: list[B30Record] = field(default_factory=list)
    top_3_ap: list[B30Record] = field(default_factory=list)


@dataclass
class ChartScore:
    song_id: str
    song_name: str
    difficulty: str
    difficulty_value: float
    score: float
    acc: float
    rks: float
    is_fc: bool
    is_phi: bool
    play_time: datetime

    @classmethod
    def from_rks_record(cls, record: RksRecord, is_fc: bool, is_phi: bool) -> ChartScore:
        """Build a score stamped now; whether it is a phi follows from the record's acc."""
        del is_phi
        return cls(
            song_id=record.song_id,
            song_name=record.song_name,
            difficulty=record.difficulty,
            difficulty_value=record.difficulty_value,
            score=record.score if record.score is not None else 0.0,
            acc=record.acc,
            rks=record.rks,
            is_fc=is_fc,
            is_phi=record.acc >= 100.0,
            play_time=_utc_now(),
        )


@dataclass
class ChartScoreHistory:
    score: float
    acc: float
    rks: float
    is_fc: bool
    is_phi: bool
    play_time: datetime


@dataclass
class PlayerArchive:
    player_id: str
    player_name: str
    rks: float
    update_time: datetime
    best_scores: dict[str, ChartScore] = field(default_factory=dict)
    best_n_scores: list[ChartScore] = field(default_factory=list)
    chart_histories: dict[str, list[ChartScoreHistory]] = field(default_factory=dict)
    push_acc_map: dict[str, float] | None = None


@dataclass
class PlayerBasicInfo:
    player_id: str
    player_name: str
    rks: float
    update_time: datetime


@dataclass
class ArchiveConfig:
    store_push_acc: bool = True
    best_n_count: int = 27
    history_max_records: int = 10


@dataclass
class RKSRankingEntry:
    player_id: str
    player_name: str
    rks: float
    update_time: datetime
    b27_rks: float | None = None
    ap3_rks: float | None = None
    ap_count: int | None = None