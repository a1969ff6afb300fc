from __future__ import annotations

from pathlib import Path

import pytest

from mediaoffload.core.config import Settings
from mediaoffload.core.security import (
    ANONYMOUS,
    AccessPolicy,
    Capability,
    InvalidTokenError,
    PermissionDeniedError,
)


def make_policy(tmp_path: Path) -> AccessPolicy:
    settings = Settings(
        state_root=tmp_path / "state",
        uploads_root=tmp_path / "uploads",
        secret_key="test-secret",
        admin_api_key="admin-key",
        viewer_api_key="viewer-key",
        action_token_ttl_seconds=60,
    )
    return AccessPolicy(settings)


def test_api_keys_map_to_capabilities(tmp_path: Path) -> None:
    policy = make_policy(tmp_path)

    admin = policy.resolve_principal("admin-key")
    viewer = policy.resolve_principal("viewer-key")

    assert admin.can(Capability.MANAGE_OPTIONS) and admin.can(Capability.UPLOAD_FILES)
    assert viewer.can(Capability.UPLOAD_FILES)
    assert not viewer.can(Capability.MANAGE_OPTIONS)
    assert policy.resolve_principal("wrong") == ANONYMOUS
    assert policy.resolve_principal(None) == ANONYMOUS


def test_require_raises_for_missing_capability(tmp_path: Path) -> None:
    policy = make_policy(tmp_path)

    with pytest.raises(PermissionDeniedError):
        policy.require(policy.resolve_principal("viewer-key"), Capability.MANAGE_OPTIONS)


def test_issued_token_verifies_for_same_principal(tmp_path: Path) -> None:
    policy = make_policy(tmp_path)
    admin = policy.resolve_principal("admin-key")

    token = policy.issue_token(admin, now=1_000.0)

    policy.verify_token(admin, token, now=1_030.0)


def test_token_is_bound_to_principal_and_action(tmp_path: Path) -> None:
    policy = make_policy(tmp_path)
    admin = policy.resolve_principal("admin-key")
    viewer = policy.resolve_principal("viewer-key")
    token = policy.issue_token(admin, now=1_000.0)

    with pytest.raises(InvalidTokenError):
        policy.verify_token(viewer, token, now=1_000.0)
    with pytest.raises(InvalidTokenError):
        policy.verify_token(admin, token, "other_action", now=1_000.0)


@pytest.mark.parametrize("token", [None, "", "garbage", "1060.deadbeef", "9999999999.é", "9999999999.签名"])
def test_malformed_or_forged_tokens_fail(tmp_path: Path, token: str | None) -> None:
    policy = make_policy(tmp_path)

    with pytest.raises(InvalidTokenError, match="Security check failed"):
        policy.verify_token(policy.resolve_principal("admin-key"), token, now=1_000.0)


def test_expired_token_fails(tmp_path: Path) -> None:
    policy = make_policy(tmp_path)
    admin = policy.resolve_principal("admin-key")
    token = policy.issue_token(admin, now=1_000.0)

    with pytest.raises(InvalidTokenError):
        policy.verify_token(admin, token, now=1_061.0)


@pytest.mark.parametrize("api_key", ["é", "admin-kéy", "ключ"])
def test_non_ascii_api_keys_resolve_to_anonymous(tmp_path: Path, api_key: str) -> None:
    policy = make_policy(tmp_path)

    assert policy.resolve_principal(api_key) == ANONYMOUS
