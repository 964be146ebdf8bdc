"""Client for the game's cloud save service and helpers over decoded saves."""

from __future__ import annotations

import hashlib
import json
import logging
import urllib.error
import urllib.request
from collections.abc import Mapping
from typing import Any

from .accounts import UserProfile
from .models import GameSave, RksRecord, RksResult, SongRecord
from .song import SongNotFoundError

log = logging.getLogger(__name__)

USER_AGENT = "LeanCloud-CSharp-SDK/1.0.3"
MIN_SAVE_SIZE = 30


class PhigrosError(Exception):
    """A request to the cloud service failed or returned something unusable."""


class AuthError(PhigrosError):
    """The session token was rejected."""


class InvalidSaveSizeError(PhigrosError):
    """The downloaded save is too small to be valid."""

    def __init__(self, size: int) -> None:
        super().__init__(f"save data too small: {size} bytes")
        self.size = size


class ChecksumMismatchError(PhigrosError):
    """The downloaded save does not match the checksum the service announced."""

    def __init__(self, expected: str, actual: str) -> None:
        super().__init__(f"checksum mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class RecordNotFoundError(PhigrosError, LookupError):
    """The save holds no record for what was asked."""


def calculate_checksum(data: bytes) -> str:
    """The lower-case hex MD5 of the data."""
    return hashlib.md5(data).hexdigest()


def verify_save_data(data: bytes, expected_checksum: str) -> bytes:
    """Return the data if it is large enough and matches the checksum; raise otherwise."""
    if len(data) <= MIN_SAVE_SIZE:
        raise InvalidSaveSizeError(len(data))
    actual = calculate_checksum(data)
    if actual != expected_checksum:
        raise ChecksumMismatchError(expected_checksum, actual)
    return data


def build_rks_result(save: GameSave, song_names: Mapping[str, str] | None = None) -> RksResult:
    """RKS records for every chart with a valid accuracy and constant, highest first."""
    if save.game_record is None:
        raise RecordNotFoundError("没有游戏记录数据")
    names = song_names or {}
    records = [
        RksRecord.from_song_record(
            song_id, names.get(song_id, song_id), diff_name, record.difficulty, record
        )
        for song_id, difficulties in save.game_record.items()
        for diff_name, record in difficulties.items()
        if record.acc is not None
        and record.difficulty is not None
        and record.acc >= 70.0
        and record.difficulty > 0.0
    ]
    return RksResult.from_records(records)


def find_song_record(
    save: GameSave, song_id: str, difficulty: str | None = None
) -> dict[str, SongRecord]:
    """The records of one song, optionally narrowed to a single difficulty."""
    if save.game_record is None:
        raise RecordNotFoundError("没有游戏记录数据")
    try:
        song_records = save.game_record[song_id]
    except KeyError:
        raise SongNotFoundError(song_id) from None
    if difficulty is None:
        return dict(song_records)
    try:
        return {difficulty: song_records[difficulty]}
    except KeyError:
        raise RecordNotFoundError(f"没有找到歌曲 {song_id} 的 {difficulty} 难度记录") from None


class PhigrosClient:
    """Talks to the cloud save service over HTTP."""

    def __init__(
        self, app_id: str, app_key: str, base_url: str, timeout: float = 30.0
    ) -> None:
        self.app_id = app_id
        self.app_key = app_key
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.timeout = timeout

    def _api_headers(self, token: str) -> dict[str, str]:
        return {
            "X-LC-Id": self.app_id,
            "X-LC-Key": self.app_key,
            "User-Agent": USER_AGENT,
            "Accept": "application/json",
            "X-LC-Session": token,
        }

    def _get(self, url: str, headers: Mapping[str, str] | None = None) -> tuple[int, bytes]:
        request = urllib.request.Request(url, headers=dict(headers or {}), method="GET")
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                return response.status, response.read()
        except urllib.error.HTTPError as exc:
            with exc:
                return exc.code, exc.read()
        except (urllib.error.URLError, OSError) as exc:
            raise PhigrosError(f"request failed: {exc}") from exc

    def fetch_summary(self, token: str) -> dict[str, Any]:
        """The save summary document for the token's account."""
        status, body = self._get(
            f"{self.base_url}classes/_GameSave?limit=1", self._api_headers(token)
        )
        if not 200 <= status < 300:
            raise PhigrosError(f"获取存档摘要失败: HTTP {status}")
        try:
            return json.loads(body)
        except ValueError as exc:
            raise PhigrosError(f"invalid summary response: {exc}") from exc

    def download_save(self, url: str) -> bytes:
        """The raw save file at the given URL."""
        status, body = self._get(url)
        if not 200 <= status < 300:
            raise PhigrosError(f"下载存档失败: HTTP {status}")
        return body

    def fetch_save(self, token: str) -> bytes:
        """Download the account's save and check its size and checksum."""
        summary = self.fetch_summary(token)
        try:
            game_file = summary["results"][0]["gameFile"]
        except (KeyError, IndexError, TypeError):
            game_file = {}
        url = game_file.get("url") if isinstance(game_file, dict) else None
        if not isinstance(url, str):
            raise PhigrosError("无法获取存档URL")
        meta = game_file.get("metaData")
        checksum = meta.get("_checksum") if isinstance(meta, dict) else None
        if not isinstance(checksum, str):
            raise PhigrosError("无法获取存档校验和")
        data = self.download_save(url)
        log.debug("downloaded save of %d bytes", len(data))
        return verify_save_data(data, checksum)

    def get_profile(self, token: str) -> UserProfile:
        """The account's profile; AuthError when the token is rejected."""
        status, body = self._get(f"{self.base_url}users/me", self._api_headers(token))
        if not 200 <= status < 300:
            log.error("profile request failed: HTTP %s", status)
            if status == 401:
                raise AuthError("Token 无效或已过期")
            raise PhigrosError(f"获取 Profile 失败: HTTP {status}")
        try:
            return UserProfile.from_dict(json.loads(body))
        except (ValueError, AttributeError) as exc:
            raise PhigrosError(f"解析 Profile 响应失败: {exc}") from exc