"""Internal users, their platform bindings and unbind verification codes."""

from __future__ import annotations

import logging
import os
import secrets
import sqlite3
import string
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

from .accounts import (
    InternalUser,
    PlatformBinding,
    PlatformBindingInfo,
    TokenListResponse,
    UnbindVerificationCode,
)
from .archive_store import DatabaseError

log = logging.getLogger(__name__)

CODE_LENGTH = 8
CODE_LIFETIME = timedelta(minutes=5)
_CODE_ALPHABET = string.ascii_letters + string.digits

_SCHEMA = """
CREATE TABLE IF NOT EXISTS internal_users (
    internal_id TEXT PRIMARY KEY,
    nickname    TEXT,
    update_time TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS platform_bindings (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    internal_id   TEXT NOT NULL,
    platform      TEXT NOT NULL,
    platform_id   TEXT NOT NULL,
    session_token TEXT NOT NULL,
    bind_time     TEXT NOT NULL,
    UNIQUE (platform, platform_id)
);
CREATE INDEX IF NOT EXISTS idx_platform_bindings_token
    ON platform_bindings (session_token);
CREATE INDEX IF NOT EXISTS idx_platform_bindings_internal
    ON platform_bindings (internal_id);
CREATE TABLE IF NOT EXISTS unbind_verification_codes (
    platform    TEXT NOT NULL,
    platform_id TEXT NOT NULL,
    code        TEXT NOT NULL,
    expires_at  TEXT NOT NULL,
    PRIMARY KEY (platform, platform_id)
);
"""

_BINDING_COLUMNS = "id, internal_id, platform, platform_id, session_token, bind_time"


class BindingNotFoundError(LookupError):
    """No platform binding matches."""


class UserNotFoundError(LookupError):
    """No internal user has this id."""


class VerificationCodeExpiredError(Exception):
    """The verification code has expired."""


class VerificationCodeInvalidError(Exception):
    """The verification code does not match the stored one."""


class VerificationCodeNotFoundError(LookupError):
    """No verification code was requested for this platform account."""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(text: str) -> datetime:
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    moment = datetime.fromisoformat(text)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _row_to_binding(row: tuple) -> PlatformBinding:
    binding_id, internal_id, platform, platform_id, session_token, bind_time = row
    return PlatformBinding(
        id=binding_id,
        internal_id=internal_id,
        platform=platform,
        platform_id=platform_id,
        session_token=session_token,
        bind_time=bind_time,
    )


class UserService:
    """Manages internal ids and the platform accounts bound to them."""

    def __init__(self, database: str | os.PathLike[str] | sqlite3.Connection) -> None:
        if isinstance(database, sqlite3.Connection):
            self.connection = database
        else:
            self.connection = sqlite3.connect(database, check_same_thread=False)
        self._lock = threading.RLock()

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
        """Create the user and binding tables if they do not exist."""
        with self._database("创建数据表失败") as conn:
            conn.executescript(_SCHEMA)

    def is_platform_id_bound(self, platform: str, platform_id: str) -> bool:
        with self._database("检查平台ID绑定时出错") as conn:
            (count,) = conn.execute(
                "SELECT COUNT(*) FROM platform_bindings WHERE platform = ? AND platform_id = ?",
                (platform.lower(), platform_id),
            ).fetchone()
        return count > 0

    def get_binding_by_platform_id(self, platform: str, platform_id: str) -> PlatformBinding:
        platform = platform.lower()
        with self._database("获取绑定信息时数据库错误") as conn:
            row = conn.execute(
                f"SELECT {_BINDING_COLUMNS} FROM platform_bindings "
                "WHERE platform = ? AND platform_id = ?",
                (platform, platform_id),
            ).fetchone()
        if row is None:
            raise BindingNotFoundError(f"未找到平台 {platform} 的 ID {platform_id} 的绑定")
        return _row_to_binding(row)

    def get_binding_by_token(self, token: str) -> PlatformBinding:
        with self._database("获取绑定信息时数据库错误") as conn:
            row = conn.execute(
                f"SELECT {_BINDING_COLUMNS} FROM platform_bindings "
                "WHERE session_token = ? LIMIT 1",
                (token,),
            ).fetchone()
        if row is None:
            raise BindingNotFoundError("未找到 Token 的绑定")
        return _row_to_binding(row)

    def get_bindings_by_internal_id(self, internal_id: str) -> list[PlatformBinding]:
        with self._database("获取内部ID绑定信息时数据库错误") as conn:
            rows = conn.execute(
                f"SELECT {_BINDING_COLUMNS} FROM platform_bindings WHERE internal_id = ?",
                (internal_id,),
            ).fetchall()
        return [_row_to_binding(row) for row in rows]

    def get_internal_user(self, internal_id: str) -> InternalUser:
        with self._database("获取内部用户信息时数据库错误") as conn:
            row = conn.execute(
                "SELECT internal_id, nickname, update_time FROM internal_users "
                "WHERE internal_id = ?",
                (internal_id,),
            ).fetchone()
        if row is None:
            raise UserNotFoundError(f"未找到内部ID为 {internal_id} 的用户")
        return InternalUser(internal_id=row[0], nickname=row[1], update_time=row[2])

    def create_internal_user(self, nickname: str | None = None) -> InternalUser:
        user = InternalUser.create(nickname)
        with self._transaction("创建内部用户时出错") as conn:
            conn.execute(
                "INSERT INTO internal_users (internal_id, nickname, update_time) "
                "VALUES (?, ?, ?)",
                (user.internal_id, user.nickname, user.update_time),
            )
        return user

    def save_platform_binding(self, binding: PlatformBinding) -> None:
        with self._transaction("保存平台绑定时出错") as conn:
            conn.execute(
                "INSERT INTO platform_bindings "
                "(internal_id, platform, platform_id, session_token, bind_time) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    binding.internal_id,
                    binding.platform.lower(),
                    binding.platform_id,
                    binding.session_token,
                    binding.bind_time,
                ),
            )

    def update_platform_binding_token(
        self, platform: str, platform_id: str, new_token: str
    ) -> None:
        with self._transaction("更新平台绑定token时出错") as conn:
            conn.execute(
                "UPDATE platform_bindings SET session_token = ?, bind_time = ? "
                "WHERE platform = ? AND platform_id = ?",
                (new_token, _utc_now().isoformat(), platform.lower(), platform_id),
            )

    def get_token_list(self, internal_id: str) -> TokenListResponse:
        """Every binding of an internal user, for display."""
        return TokenListResponse(
            internal_id=internal_id,
            bindings=[
                PlatformBindingInfo(
                    platform=b.platform,
                    platform_id=b.platform_id,
                    session_token=b.session_token,
                    bind_time=b.bind_time,
                )
                for b in self.get_bindings_by_internal_id(internal_id)
            ],
        )

    def delete_platform_binding(self, platform: str, platform_id: str) -> str:
        """Remove a binding and return its internal id; drop the user if nothing is left bound."""
        platform = platform.lower()
        internal_id = self.get_binding_by_platform_id(platform, platform_id).internal_id

        with self._transaction("删除平台绑定时出错") as conn:
            deleted = conn.execute(
                "DELETE FROM platform_bindings WHERE platform = ? AND platform_id = ?",
                (platform, platform_id),
            ).rowcount
        if deleted == 0:
            raise BindingNotFoundError(
                f"删除失败：未找到平台 {platform} 的 ID {platform_id} 的绑定"
            )

        with self._database("检查剩余绑定时出错") as conn:
            (remaining,) = conn.execute(
                "SELECT COUNT(*) FROM platform_bindings WHERE internal_id = ?",
                (internal_id,),
            ).fetchone()
        if remaining == 0:
            with self._transaction("删除内部用户时出错") as conn:
                conn.execute("DELETE FROM internal_users WHERE internal_id = ?", (internal_id,))
        return internal_id

    def generate_and_store_verification_code(
        self, platform: str, platform_id: str
    ) -> UnbindVerificationCode:
        """A fresh 8-character code for unbinding, valid for five minutes."""
        platform = platform.lower()
        code = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(CODE_LENGTH))
        expires_at = _utc_now() + CODE_LIFETIME
        with self._transaction("存储验证码时出错") as conn:
            conn.execute(
                "INSERT OR REPLACE INTO unbind_verification_codes "
                "(platform, platform_id, code, expires_at) VALUES (?, ?, ?, ?)",
                (platform, platform_id, code, expires_at.isoformat()),
            )
        return UnbindVerificationCode(
            platform=platform, platform_id=platform_id, code=code, expires_at=expires_at
        )

    def validate_and_consume_verification_code(
        self, platform: str, platform_id: str, provided_code: str
    ) -> None:
        """Check a code and delete it once it has been used; raise when it is wrong."""
        platform = platform.lower()
        with self._database("查询验证码时出错") as conn:
            row = conn.execute(
                "SELECT code, expires_at FROM unbind_verification_codes "
                "WHERE platform = ? AND platform_id = ?",
                (platform, platform_id),
            ).fetchone()
        if row is None:
            log.warning("no verification code for %s %s", platform, platform_id)
            raise VerificationCodeNotFoundError(
                f"未找到平台 {platform} 的 ID {platform_id} 的验证码请求"
            )
        stored_code, expires_text = row
        if _utc_now() > _parse_time(expires_text):
            try:
                self._delete_verification_code(platform, platform_id)
            except DatabaseError as exc:
                log.warning("could not delete expired code: %s", exc)
            raise VerificationCodeExpiredError("验证码已过期")
        if stored_code != provided_code:
            raise VerificationCodeInvalidError("验证码不匹配")
        self._delete_verification_code(platform, platform_id)

    def _delete_verification_code(self, platform: str, platform_id: str) -> None:
        with self._transaction("删除验证码时出错") as conn:
            conn.execute(
                "DELETE FROM unbind_verification_codes WHERE platform = ? AND platform_id = ?",
                (platform.lower(), platform_id),
            )

    def get_or_create_internal_id_by_token(
        self, token: str, platform: str, platform_id: str
    ) -> str:
        """The internal id the token belongs to, binding the platform account if needed."""
        platform = platform.lower()
        try:
            return self.get_binding_by_token(token).internal_id
        except BindingNotFoundError:
            pass
        try:
            existing = self.get_binding_by_platform_id(platform, platform_id)
        except BindingNotFoundError:
            user = self.create_internal_user(None)
            self.save_platform_binding(
                PlatformBinding.create(user.internal_id, platform, platform_id, token)
            )
            return user.internal_id
        self.update_platform_binding_token(platform, platform_id, token)
        return existing.internal_id

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self.connection.close()