"""
密谋承诺数据模型
"""
from dataclasses import dataclass, field
from typing import Any, Dict

from .action import PlotAction

DIGEST_SIZE = 32


@dataclass(frozen=True)
class PlotCommitment:
    """
    密谋承诺

    digest = SHA-256(target_tag || secret_nonce || action_byte)。
    secret_nonce 与 action_type 在揭示阶段之前不得公开。
    """

    action_type: PlotAction = field(repr=False)
    secret_nonce: bytes = field(repr=False)
    target_tag: bytes
    digest: bytes

    @property
    def digest_hex(self) -> str:
        return self.digest.hex()

    @property
    def target_hex(self) -> str:
        return self.target_tag.hex()

    @property
    def proof_data(self) -> bytes:
        """揭示载荷：secret_nonce || u32be(action)"""
        return self.secret_nonce + int(self.action_type).to_bytes(4, "big")

    def to_public_dict(self) -> Dict[str, Any]:
        """公开视图（不含秘密材料）"""
        return {"digest": self.digest_hex, "target": self.target_hex}
