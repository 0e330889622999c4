"""Public signing links: opaque tokens that carry one signer's identity.

The token is a signed JWT naming the document and signer, so links need no
server-side table and never expose the internal ids in the URL path.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt

from signflow.services.exceptions import InvalidLink

_KIND = "public_sign"


@dataclass(frozen=True)
class SigningLink:
    document_id: str
    signer_id: str


class PublicLinkIssuer:
    def __init__(self, secret: str, algorithm: str = "HS256", expire_minutes: int = 60 * 24 * 7, base_url: str = ""):
        self.secret = secret
        self.algorithm = algorithm
        self.expire_minutes = expire_minutes
        self.base_url = base_url.rstrip("/")

    def issue(self, document_id: str, signer_id: str, now: datetime | None = None) -> str:
        now = now or datetime.now(timezone.utc)
        payload = {
            "kind": _KIND,
            "doc": document_id,
            "sub": signer_id,
            "iat": now,
            "exp": now + timedelta(minutes=self.expire_minutes),
        }
        raw = jwt.encode(payload, self.secret, algorithm=self.algorithm)
        return raw if isinstance(raw, str) else raw.decode("utf-8")

    def url_for(self, token: str) -> str:
        return f"{self.base_url}/sign/{token}"

    def resolve(self, token: str) -> SigningLink:
        """Return the (document, signer) a token grants; InvalidLink when bad or expired."""
        if not token or not isinstance(token, str):
            raise InvalidLink("Signing link is missing")
        try:
            payload = jwt.decode(token.strip(), self.secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise InvalidLink("Signing link has expired")
        except jwt.PyJWTError:
            raise InvalidLink("Signing link is not valid")
        if payload.get("kind") != _KIND or not payload.get("doc") or not payload.get("sub"):
            raise InvalidLink("Signing link is not valid")
        return SigningLink(document_id=payload["doc"], signer_id=payload["sub"])
