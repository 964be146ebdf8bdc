"""Account, binding and API response types."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

T = TypeVar("T")


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_jsonable(value: Any) -> Any:
    """Turn dataclasses, mappings, sequences and datetimes into JSON-ready values."""
    if is_dataclass(value) and not isinstance(value, type):
        to_dict = getattr(value, "to_dict", None)
        if callable(to_dict):
            return _to_jsonable(to_dict())
        return {f.name: _to_jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, dict):
        return {key: _to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(item) for item in value]
    if isinstance(value, datetime):
        return value.isoformat()
    return value


@dataclass
class UserProfile:
    """The profile returned by the game's account service."""

    object_id: str
    nickname: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserProfile:
        """Read a profile document; raises ValueError when a field is missing."""
        object_id = data.get("objectId")
        nickname = data.get("nickname")
        if not isinstance(object_id, str) or not isinstance(nickname, str):
            raise ValueError("profile needs string fields 'objectId' and 'nickname'")
        return cls(object_id=object_id, nickname=nickname)

    def to_dict(self) -> dict[str, Any]:
        return {"objectId": self.object_id, "nickname": self.nickname}


@dataclass
class InternalUser:
    """A user of this service, to which platform accounts are bound."""

    internal_id: str
    nickname: str | None
    update_time: str

    @classmethod
    def create(cls, nickname: str | None = None) -> InternalUser:
        return cls(
            internal_id=str(uuid.uuid4()),
            nickname=nickname,
            update_time=_utc_now_iso(),
        )


@dataclass
class PlatformBinding:
    """A platform account bound to an internal user by a session token."""

    id: int | None
    internal_id: str
    platform: str
    platform_id: str
    session_token: str
    bind_time: str

    @classmethod
    def create(
        cls, internal_id: str, platform: str, platform_id: str, session_token: str
    ) -> PlatformBinding:
        return cls(
            id=None,
            internal_id=internal_id,
            platform=platform.lower(),
            platform_id=platform_id,
            session_token=session_token,
            bind_time=_utc_now_iso(),
        )


@dataclass
class BindRequest:
    platform: str
    platform_id: str
    token: str


@dataclass
class IdentifierRequest:
    """Identifies a player by token or by platform account."""

    token: str | None = None
    platform: str | None = None
    platform_id: str | None = None
    verification_code: str | None = None


@dataclass
class UnbindInitiateResponse:
    verification_code: str
    expires_in_seconds: int
    message: str


@dataclass
class UnbindVerificationCode:
    platform: str
    platform_id: str
    code: str
    expires_at: datetime


@dataclass
class PlatformBindingInfo:
    platform: str
    platform_id: str
    session_token: str
    bind_time: str


@dataclass
class TokenListResponse:
    internal_id: str
    bindings: list[PlatformBindingInfo] = field(default_factory=list)


@dataclass
class ApiResponse(Generic[T]):
    """The envelope every API answer is wrapped in."""

    code: int
    status: str
    message: str | None = None
    data: T | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "status": self.status,
            "message": self.message,
            "data": _to_jsonable(self.data),
        }