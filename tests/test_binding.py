import pytest

from phigrank.accounts import BindRequest, IdentifierRequest, UnbindInitiateResponse
from phigrank.binding import (
    BadRequestError,
    ProfileVerificationFailedError,
    bind_user,
    list_tokens,
    unbind_user,
)
from phigrank.phigros import AuthError
from phigrank.users import (
    BindingNotFoundError,
    UserNotFoundError,
    UserService,
    VerificationCodeInvalidError,
)


@pytest.fixture
def users():
    service = UserService(":memory:")
    service.init_tables()
    yield service
    service.close()


def _no_fetch(token):
    raise AssertionError("fetch_user must not be called")


def test_new_binding_creates_internal_user(users):
    response = bind_user(users, BindRequest(platform="QQ", platform_id="100", token="token"))
    assert response.code == 200
    assert response.status == "success"
    binding = users.get_binding_by_token("token")
    assert response.data == {"internal_id": binding.internal_id}
    assert binding.platform == "qq"
    assert users.get_internal_user(binding.internal_id).internal_id == binding.internal_id


def test_rebinding_same_token_keeps_internal_id(users):
    first = bind_user(users, BindRequest(platform="qq", platform_id="100", token="token"))
    second = bind_user(users, BindRequest(platform="QQ", platform_id="100", token="token"))
    assert second.data == first.data
    assert "已绑定到同一Token" in second.message


def test_rebinding_other_token_updates_token(users):
    first = bind_user(users, BindRequest(platform="qq", platform_id="100", token="token"))
    second = bind_user(users, BindRequest(platform="qq", platform_id="100", token="secret"))
    assert second.data == first.data
    assert "已更新平台" in second.message
    assert users.get_binding_by_platform_id("qq", "100").session_token == "secret"


def test_second_platform_with_same_token_joins_user(users):
    first = bind_user(users, BindRequest(platform="qq", platform_id="100", token="token"))
    second = bind_user(users, BindRequest(platform="discord", platform_id="200", token="token"))
    assert second.data == first.data
    assert "已绑定到现有内部用户" in second.message
    bindings = users.get_bindings_by_internal_id(first.data["internal_id"])
    assert sorted(b.platform for b in bindings) == ["discord", "qq"]


def test_list_tokens_by_token_and_by_platform(users):
    bind_user(users, BindRequest(platform="qq", platform_id="100", token="token"))
    bind_user(users, BindRequest(platform="discord", platform_id="200", token="token"))
    by_token = list_tokens(users, IdentifierRequest(token="token"))
    by_platform = list_tokens(users, IdentifierRequest(platform="QQ", platform_id="100"))
    assert by_token.data == by_platform.data
    assert len(by_token.data.bindings) == 2
    assert by_token.message == "获取Token列表成功"


def test_list_tokens_needs_identifier(users):
    with pytest.raises(BadRequestError):
        list_tokens(users, IdentifierRequest(platform="qq"))


def test_list_tokens_unknown_token(users):
    with pytest.raises(BindingNotFoundError):
        list_tokens(users, IdentifierRequest(token="token"))


def test_unbind_requires_platform_and_id(users):
    with pytest.raises(BadRequestError):
        unbind_user(users, IdentifierRequest(token="token", platform="qq"), _no_fetch)


def test_unbind_with_token_removes_binding_and_user(users):
    bound = bind_user(users, BindRequest(platform="qq", platform_id="100", token="token"))
    internal_id = bound.data["internal_id"]
    response = unbind_user(
        users, IdentifierRequest(token="token", platform="QQ", platform_id="100"), _no_fetch
    )
    assert response.data == {"internal_id": internal_id}
    assert users.is_platform_id_bound("qq", "100") is False
    with pytest.raises(UserNotFoundError):
        users.get_internal_user(internal_id)


def test_unbind_with_wrong_token(users):
    bind_user(users, BindRequest(platform="qq", platform_id="100", token="token"))
    with pytest.raises(BadRequestError):
        unbind_user(
            users, IdentifierRequest(token="secret", platform="qq", platform_id="100"), _no_fetch
        )
    assert users.is_platform_id_bound("qq", "100") is True


def test_unbind_with_token_and_code_is_rejected(users):
    bind_user(users, BindRequest(platform="qq", platform_id="100", token="token"))
    request = IdentifierRequest(
        token="token", platform="qq", platform_id="100", verification_code="abc"
    )
    with pytest.raises(BadRequestError):
        unbind_user(users, request, _no_fetch)


def _initiate(users):
    bind_user(users, BindRequest(platform="qq", platform_id="100", token="token"))
    return unbind_user(users, IdentifierRequest(platform="qq", platform_id="100"), _no_fetch)


def test_unbind_initiation_issues_code(users):
    response = _initiate(users)
    assert response.status == "verification_initiated"
    verification = response.data["verification"]
    assert isinstance(verification, UnbindInitiateResponse)
    assert len(verification.verification_code) == 8
    assert 0 < verification.expires_in_seconds <= 300
    assert response.message == verification.message
    assert users.is_platform_id_bound("qq", "100") is True


def test_unbind_confirmation_with_matching_intro(users):
    initiated = _initiate(users)
    code = initiated.data["verification"].verification_code
    seen = []

    def fetch_user(token):
        seen.append(token)
        return {"selfIntro": f"  {code}\n"}

    response = unbind_user(
        users,
        IdentifierRequest(platform="qq", platform_id="100", verification_code=code),
        fetch_user,
    )
    assert seen == ["token"]
    assert response.data == {"internal_id": initiated.data["internal_id"]}
    assert users.is_platform_id_bound("qq", "100") is False


def test_unbind_confirmation_with_other_intro(users):
    code = _initiate(users).data["verification"].verification_code
    with pytest.raises(ProfileVerificationFailedError):
        unbind_user(
            users,
            IdentifierRequest(platform="qq", platform_id="100", verification_code=code),
            lambda token: {"selfIntro": "hello"},
        )
    assert users.is_platform_id_bound("qq", "100") is True


def test_unbind_confirmation_without_intro(users):
    code = _initiate(users).data["verification"].verification_code
    with pytest.raises(ProfileVerificationFailedError):
        unbind_user(
            users,
            IdentifierRequest(platform="qq", platform_id="100", verification_code=code),
            lambda token: None,
        )


def test_unbind_confirmation_with_wrong_code(users):
    _initiate(users)
    with pytest.raises(VerificationCodeInvalidError):
        unbind_user(
            users,
            IdentifierRequest(platform="qq", platform_id="100", verification_code="wrong"),
            _no_fetch,
        )


def test_unbind_confirmation_with_expired_token(users):
    code = _initiate(users).data["verification"].verification_code

    def fetch_user(token):
        raise AuthError("rejected")

    with pytest.raises(AuthError):
        unbind_user(
            users,
            IdentifierRequest(platform="qq", platform_id="100", verification_code=code),
            fetch_user,
        )
    assert users.is_platform_id_bound("qq", "100") is True