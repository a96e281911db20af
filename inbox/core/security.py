"""Bearer tokens for agent sessions and the shared secret on gateway webhooks.

Tokens are ``<claims>.<signature>``: compact JSON claims and an HMAC-SHA256 over
them, both base64url without padding. Identity itself lives outside this service;
a token only carries who the caller is and whether they administer the inbox.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

TOKEN_VERSION = 2


@dataclass(frozen=True, slots=True)
class Principal:
    user_id: UUID
    agent_id: UUID
    is_admin: bool
    expires_at: datetime

    def to_claims(self, issued_at: datetime) -> dict[str, Any]:
        return {
            "v": TOKEN_VERSION,
            "uid": str(self.user_id),
            "aid": str(self.agent_id),
            "adm": self.is_admin,
            "iat": int(issued_at.timestamp()),
            "exp": int(self.expires_at.timestamp()),
        }

    @classmethod
    def from_claims(cls, claims: Mapping[str, Any]) -> Principal:
        if claims.get("v") != TOKEN_VERSION:
            raise ValueError("Unsupported token version")
        try:
            return cls(
                user_id=UUID(str(claims["uid"])),
                agent_id=UUID(str(claims["aid"])),
                is_admin=bool(claims.get("adm", False)),
                expires_at=datetime.fromtimestamp(int(claims["exp"]), UTC),
            )
        except (KeyError, ValueError, TypeError) as exc:
            raise ValueError("Malformed token payload") from exc


def _encode_segment(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _decode_segment(segment: str) -> bytes:
    return base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))


def _signature(claims_segment: str, secret: str) -> bytes:
    return hmac.digest(secret.encode("utf-8"), claims_segment.encode("ascii"), hashlib.sha256)


def create_agent_access_token(
    *,
    user_id: UUID,
    agent_id: UUID,
    secret: str,
    ttl_minutes: int,
    is_admin: bool = False,
) -> tuple[str, datetime]:
    issued_at = datetime.now(UTC)
    principal = Principal(
        user_id=user_id,
        agent_id=agent_id,
        is_admin=is_admin,
        expires_at=issued_at + timedelta(minutes=ttl_minutes),
    )
    claims = json.dumps(principal.to_claims(issued_at), separators=(",", ":"), sort_keys=True)
    claims_segment = _encode_segment(claims.encode("utf-8"))
    signature_segment = _encode_segment(_signature(claims_segment, secret))
    return f"{claims_segment}.{signature_segment}", principal.expires_at


def decode_agent_access_token(token: str, secret: str) -> Principal:
    claims_segment, separator, signature_segment = token.partition(".")
    if not separator or not claims_segment:
        raise ValueError("Malformed token")

    try:
        signature = _decode_segment(signature_segment)
    except (ValueError, TypeError) as exc:
        raise ValueError("Malformed token signature") from exc
    if not hmac.compare_digest(_signature(claims_segment, secret), signature):
        raise ValueError("Invalid token signature")

    try:
        claims = json.loads(_decode_segment(claims_segment))
    except (ValueError, TypeError) as exc:
        raise ValueError("Malformed token payload") from exc
    if not isinstance(claims, dict):
        raise ValueError("Malformed token payload")

    principal = Principal.from_claims(claims)
    if principal.expires_at <= datetime.now(UTC):
        raise ValueError("Token expired")
    return principal


def verify_webhook_secret(provided: str | None, expected: str) -> bool:
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))
