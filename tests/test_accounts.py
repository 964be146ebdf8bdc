import uuid
from datetime import datetime

import pytest

from phigrank.accounts import (
    ApiResponse,
    IdentifierRequest,
    InternalUser,
    PlatformBinding,
    PlatformBindingInfo,
    TokenListResponse,
    UserProfile,
)
from phigrank.models import SongInfo


def test_profile_from_dict_reads_object_id():
    profile = UserProfile.from_dict({"objectId": "abc123", "nickname": "Alice", "extra": 1})
    assert profile.object_id == "abc123"
    assert profile.nickname == "Alice"


def test_profile_from_dict_missing_field():
    with pytest.raises(ValueError):
        UserProfile.from_dict({"objectId": "abc123"})


def test_internal_user_create_has_uuid4_and_timestamp():
    user = InternalUser.create("nick")
    assert uuid.UUID(user.internal_id).version == 4
    assert user.nickname == "nick"
    assert datetime.fromisoformat(user.update_time).utcoffset().total_seconds() == 0


def test_internal_user_ids_are_unique():
    assert InternalUser.create(None).internal_id != InternalUser.create(None).internal_id
    assert InternalUser.create(None).nickname is None


def test_platform_binding_create_lowercases_platform():
    binding = PlatformBinding.create("iid", "QQ", "12345", "token")
    assert binding.platform == "qq"
    assert binding.id is None
    assert binding.platform_id == "12345"
    assert binding.session_token == "token"
    assert datetime.fromisoformat(binding.bind_time).tzinfo is not None


def test_identifier_request_defaults_are_empty():
    request = IdentifierRequest()
    assert (request.token, request.platform, request.platform_id, request.verification_code) == (
        None,
        None,
        None,
        None,
    )


def test_api_response_serialises_nested_dataclasses():
    data = TokenListResponse(
        internal_id="iid",
        bindings=[PlatformBindingInfo("qq", "1", "token", "t0")],
    )
    result = ApiResponse(code=200, status="success", message="ok", data=data).to_dict()
    assert result == {
        "code": 200,
        "status": "success",
        "message": "ok",
        "data": {
            "internal_id": "iid",
            "bindings": [
                {"platform": "qq", "platform_id": "1", "session_token": "token", "bind_time": "t0"}
            ],
        },
    }


def test_api_response_uses_custom_to_dict():
    info = SongInfo(id="a.b", song="A", composer="B", ez_charter="x")
    result = ApiResponse(code=200, status="ok", data=info).to_dict()
    assert result["data"]["EZ"] == "x"
    assert result["data"]["id"] == "a.b"


def test_api_response_profile_keeps_wire_name():
    profile = UserProfile(object_id="o1", nickname="n")
    assert ApiResponse(code=200, status="ok", data=profile).to_dict()["data"] == {
        "objectId": "o1",
        "nickname": "n",
    }


def test_api_response_without_data():
    result = ApiResponse(code=400, status="error", message="bad").to_dict()
    assert result["data"] is None
    assert result["message"] == "bad"