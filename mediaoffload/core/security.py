from __future__ import annotations

import hashlib
import hmac
import time
from dataclasses import dataclass
from enum import Enum

from mediaoffload.core.config import Settings

BULK_OFFLOAD_ACTION = "bulk_offload"


class Capability(str, Enum):
    MANAGE_OPTIONS = "manage_options"
    UPLOAD_FILES = "upload_files"


class PermissionDeniedError(RuntimeError):
    pass


class InvalidTokenError(RuntimeError):
    pass


@dataclass(frozen=True)
class Principal:
    subject: str
    capabilities: frozenset[Capability]

    def can(self, capability: Capability) -> bool:
        return capability in self.capabilities


ANONYMOUS = Principal(subject="anonymous", capabilities=frozenset())


def _same_secret(given: str, expected: str) -> bool:
    return hmac.compare_digest(given.encode("utf-8"), expected.encode("utf-8"))


class AccessPolicy:
    def __init__(self, settings: Settings):
        self._settings = settings

    def resolve_principal(self, api_key: str | None) -> Principal:
        if not api_key:
            return ANONYMOUS
        admin_key = self._settings.admin_api_key
        if admin_key and _same_secret(api_key, admin_key):
            return Principal(
                subject="admin",
                capabilities=frozenset({Capability.MANAGE_OPTIONS, Capability.UPLOAD_FILES}),
            )
        viewer_key = self._settings.viewer_api_key
        if viewer_key and _same_secret(api_key, viewer_key):
            return Principal(subject="viewer", capabilities=frozenset({Capability.UPLOAD_FILES}))
        return ANONYMOUS

    def require(self, principal: Principal, capability: Capability) -> None:
        if not principal.can(capability):
            raise PermissionDeniedError("Permission denied")

    def _signature(self, action: str, subject: str, expires_at: int) -> str:
        material = f"{action}:{subject}:{expires_at}".encode("utf-8")
        return hmac.new(self._settings.secret_key.encode("utf-8"), material, hashlib.sha256).hexdigest()

    def issue_token(self, principal: Principal, action: str = BULK_OFFLOAD_ACTION, *, now: float | None = None) -> str:
        issued_at = time.time() if now is None else now
        expires_at = int(issued_at) + int(self._settings.action_token_ttl_seconds)
        return f"{expires_at}.{self._signature(action, principal.subject, expires_at)}"

    def verify_token(
        self,
        principal: Principal,
        token: str | None,
        action: str = BULK_OFFLOAD_ACTION,
        *,
        now: float | None = None,
    ) -> None:
        if not token:
            raise InvalidTokenError("Security check failed")
        raw_expires, _, signature = token.strip().partition(".")
        try:
            expires_at = int(raw_expires)
        except ValueError as exc:
            raise InvalidTokenError("Security check failed") from exc

        current = time.time() if now is None else now
        if expires_at < current:
            raise InvalidTokenError("Security check failed")
        expected = self._signature(action, principal.subject, expires_at)
        if not _same_secret(signature, expected):
            raise InvalidTokenError("Security check failed")
