"""Binding and unbinding platform accounts to session tokens."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any

from .accounts import (
    ApiResponse,
    BindRequest,
    IdentifierRequest,
    PlatformBinding,
    TokenListResponse,
    UnbindInitiateResponse,
)
from .phigros import AuthError
from .users import BindingNotFoundError, UserService

log = logging.getLogger(__name__)

UserFetcher = Callable[[str], "Mapping[str, Any] | None"]


class BadRequestError(ValueError):
    """The request lacks what the operation needs or combines fields wrongly."""


class ProfileVerificationFailedError(Exception):
    """The player's profile text does not confirm the verification code."""


def _success(message: str, internal_id: str) -> ApiResponse[dict[str, Any]]:
    return ApiResponse(
        code=200,
        status="success",
        message=message,
        data={"internal_id": internal_id},
    )


def bind_user(users: UserService, request: BindRequest) -> ApiResponse[dict[str, Any]]:
    """Bind a platform account to a session token, reusing an internal user where possible."""
    platform = request.platform.lower()
    platform_id = request.platform_id

    if users.is_platform_id_bound(platform, platform_id):
        existing = users.get_binding_by_platform_id(platform, platform_id)
        if existing.session_token != request.token:
            users.update_platform_binding_token(platform, platform_id, request.token)
            return _success(
                f"已更新平台 {platform} 的 ID {platform_id} 的Token", existing.internal_id
            )
        return _success(
            f"平台 {platform} 的 ID {platform_id} 已绑定到同一Token", existing.internal_id
        )

    try:
        by_token = users.get_binding_by_token(request.token)
    except BindingNotFoundError:
        internal_id = users.get_or_create_internal_id_by_token(
            request.token, platform, platform_id
        )
        return _success(f"平台 {platform} 的 ID {platform_id} 已成功绑定", internal_id)

    users.save_platform_binding(
        PlatformBinding.create(by_token.internal_id, platform, platform_id, request.token)
    )
    return _success(
        f"平台 {platform} 的 ID {platform_id} 已绑定到现有内部用户", by_token.internal_id
    )


def list_tokens(
    users: UserService, request: IdentifierRequest
) -> ApiResponse[TokenListResponse]:
    """Every binding of the internal user identified by token or platform account."""
    if request.token is not None:
        internal_id = users.get_binding_by_token(request.token).internal_id
    elif request.platform is not None and request.platform_id is not None:
        internal_id = users.get_binding_by_platform_id(
            request.platform.lower(), request.platform_id
        ).internal_id
    else:
        raise BadRequestError("请提供token或平台信息")

    return ApiResponse(
        code=200,
        status="success",
        message="获取Token列表成功",
        data=users.get_token_list(internal_id),
    )


def unbind_user(
    users: UserService, request: IdentifierRequest, fetch_user: UserFetcher
) -> ApiResponse[dict[str, Any]]:
    """Unbind a platform account, by its token or by a code written into the profile.

    With a token the binding is removed at once. Without token or code a verification
    code is issued. With a code, ``fetch_user`` is called with the stored token and must
    return the save's user fields, whose ``selfIntro`` has to equal the code.
    """
    if request.platform is None or request.platform_id is None:
        raise BadRequestError("必须提供平台和平台ID")
    platform = request.platform.lower()
    platform_id = request.platform_id
    token = request.token
    code = request.verification_code

    if token is not None and code is None:
        binding = users.get_binding_by_platform_id(platform, platform_id)
        if binding.session_token != token:
            raise BadRequestError("平台ID与SessionToken不匹配")
        internal_id = users.delete_platform_binding(platform, platform_id)
        return _success("解绑成功 (平台ID+Token验证)", internal_id)

    if token is None and code is None:
        binding = users.get_binding_by_platform_id(platform, platform_id)
        details = users.generate_and_store_verification_code(platform, platform_id)
        remaining = details.expires_at - datetime.now(timezone.utc)
        expires_in = max(int(remaining.total_seconds()), 0)
        response = UnbindInitiateResponse(
            verification_code=details.code,
            expires_in_seconds=expires_in,
            message=(
                f"请在 {expires_in} 秒内将您的 Phigros 简介修改为此验证码，"
                "然后再次调用此接口并附带 verification_code 参数进行确认。"
            ),
        )
        return ApiResponse(
            code=200,
            status="verification_initiated",
            message=response.message,
            data={"verification": response, "internal_id": binding.internal_id},
        )

    if token is None and code is not None:
        binding = users.get_binding_by_platform_id(platform, platform_id)
        users.validate_and_consume_verification_code(platform, platform_id, code)
        try:
            user = fetch_user(binding.session_token)
        except AuthError as exc:
            log.warning("stored token of %s %s is no longer valid", platform, platform_id)
            raise AuthError(
                "无法获取存档核对简介 (Token已失效)，请稍后再试或使用平台ID+有效Token解绑"
            ) from exc

        intro = user.get("selfIntro") if user is not None else None
        if not isinstance(intro, str):
            raise ProfileVerificationFailedError("简介为空或无法读取，无法验证")
        if intro.strip() != code.strip():
            raise ProfileVerificationFailedError("简介内容与提供的验证码不匹配")
        users.delete_platform_binding(platform, platform_id)
        return _success("解绑成功 (简介验证)", binding.internal_id)

    raise BadRequestError(
        "无效的请求参数组合。请提供: (平台+平台ID+Token) 或 (平台+平台ID发起验证) "
        "或 (平台+平台ID+验证码确认)"
    )