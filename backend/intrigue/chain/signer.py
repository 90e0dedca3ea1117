"""
Request signer.

Keyed HMAC-SHA256 over the canonical request digest. A backend that needs real
account signatures only has to supply another object with the same shape.
"""
from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass, field


@dataclass(frozen=True)
class KeySigner:
    identity: str
    secret: bytes = field(repr=False)

    @classmethod
    def generate(cls) -> "KeySigner":
        secret = secrets.token_bytes(32)
        return cls(identity=identity_for(secret), secret=secret)

    @classmethod
    def from_hex(cls, secret_hex: str) -> "KeySigner":
        secret = bytes.fromhex(secret_hex)
        return cls(identity=identity_for(secret), secret=secret)

    def sign(self, digest: bytes) -> str:
        return hmac.new(self.secret, digest, hashlib.sha256).hexdigest()

    def verify(self, digest: bytes, signature: str) -> bool:
        return hmac.compare_digest(self.sign(digest), signature)


def identity_for(secret: bytes) -> str:
    """Public identity derived from a signing secret (G-prefixed like the chain addresses)."""
    return "G" + hashlib.sha256(b"identity:" + secret).hexdigest()[:55].upper()
