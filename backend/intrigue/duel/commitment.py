"""
密谋承诺方案

基于哈希的承诺：digest = SHA-256(target || nonce || action)。
任何保持 commit/verify 形状的实现（例如真正的零知识证明）都可以替换本实现。
"""
import hashlib
import hmac
import logging
import secrets
from typing import Callable, Dict, Optional, Protocol, Set, Union

from .errors import EntropyUnavailableError, NonceReuseError
from .models.action import PlotAction
from .models.commitment import DIGEST_SIZE, PlotCommitment

logger = logging.getLogger(__name__)

NONCE_SIZE = 32

RandomSource = Callable[[int], bytes]
ProofStepHook = Callable[[int, int, str], None]

PROOF_STEPS = (
    "Preparing witness data",
    "Hashing target, nonce and action",
    "Sealing commitment digest",
)


class CommitmentProtocol(Protocol):
    """承诺方案契约"""

    def commit(
        self,
        target: Union[bytes, str, None],
        action: PlotAction,
        scope: Optional[str] = None,
    ) -> PlotCommitment:
        ...

    def verify(
        self,
        commitment: PlotCommitment,
        revealed_action,
        revealed_nonce: bytes,
        revealed_target: bytes,
    ) -> bool:
        ...


def compute_digest(target_tag: bytes, nonce: bytes, action: PlotAction) -> bytes:
    """计算承诺摘要"""
    return hashlib.sha256(target_tag + nonce + PlotAction(action).to_byte()).digest()


def target_tag_for(identity: str) -> bytes:
    """由目标身份（地址）派生 32 字节目标标签"""
    return hashlib.sha256(identity.encode("utf-8")).digest()


class CommitmentScheme:
    """
    哈希承诺方案

    职责：
    - 生成承诺（安全随机 nonce）
    - 常量时间校验揭示材料
    - 可选：同一作用域内拒绝重复 nonce
    """

    def __init__(
        self,
        random_source: Optional[RandomSource] = None,
        enforce_unique_nonces: bool = True,
        on_step: Optional[ProofStepHook] = None,
    ):
        self._random_source: RandomSource = random_source or secrets.token_bytes
        self.enforce_unique_nonces = enforce_unique_nonces
        self.on_step = on_step
        self._issued: Dict[str, Set[bytes]] = {}

    # ============================================
    # 公共接口
    # ============================================

    def commit(
        self,
        target: Union[bytes, str, None],
        action: PlotAction,
        scope: Optional[str] = None,
    ) -> PlotCommitment:
        """
        生成承诺

        Args:
            target: 目标身份（str）、32 字节目标标签，或 None（随机标签）
            action: 密谋行动
            scope: nonce 唯一性作用域（通常为会话ID）

        Returns:
            PlotCommitment: 完整承诺（含秘密材料）
        """
        action = PlotAction.parse(action)
        total = len(PROOF_STEPS)
        self._report(0, total)

        nonce = self._draw(NONCE_SIZE)
        if scope is not None and self.enforce_unique_nonces:
            issued = self._issued.setdefault(scope, set())
            if nonce in issued:
                raise NonceReuseError(scope)
            issued.add(nonce)

        target_tag = self._resolve_target(target)
        self._report(1, total)
        digest = compute_digest(target_tag, nonce, action)
        self._report(2, total)

        return PlotCommitment(
            action_type=action,
            secret_nonce=nonce,
            target_tag=target_tag,
            digest=digest,
        )

    def verify(
        self,
        commitment: PlotCommitment,
        revealed_action,
        revealed_nonce: bytes,
        revealed_target: bytes,
    ) -> bool:
        """
        校验揭示材料是否打开承诺

        不匹配或输入畸形时返回 False，从不抛出。
        """
        try:
            action = PlotAction.parse(revealed_action)
        except ValueError:
            return False
        if not isinstance(revealed_nonce, (bytes, bytearray)) or len(revealed_nonce) != NONCE_SIZE:
            return False
        if not isinstance(revealed_target, (bytes, bytearray)) or len(revealed_target) != DIGEST_SIZE:
            return False
        if not isinstance(commitment.digest, (bytes, bytearray)) or len(commitment.digest) != DIGEST_SIZE:
            return False

        recomputed = compute_digest(bytes(revealed_target), bytes(revealed_nonce), action)
        return hmac.compare_digest(recomputed, bytes(commitment.digest))

    def open(self, commitment: PlotCommitment) -> bool:
        """用承诺自身携带的秘密材料校验（揭示方自检）"""
        return self.verify(
            commitment,
            commitment.action_type,
            commitment.secret_nonce,
            commitment.target_tag,
        )

    def forget_scope(self, scope: str) -> None:
        """丢弃某作用域的 nonce 记录（会话关闭时调用）"""
        self._issued.pop(scope, None)

    # ============================================
    # 私有方法
    # ============================================

    def _draw(self, size: int) -> bytes:
        try:
            value = self._random_source(size)
        except (NotImplementedError, OSError) as exc:
            raise EntropyUnavailableError(f"{type(exc).__name__}: {exc}") from exc
        if not isinstance(value, (bytes, bytearray)) or len(value) != size:
            raise EntropyUnavailableError(f"random source returned malformed output for {size} bytes")
        return bytes(value)

    def _resolve_target(self, target: Union[bytes, str, None]) -> bytes:
        if target is None:
            return self._draw(DIGEST_SIZE)
        if isinstance(target, str):
            return target_tag_for(target)
        if isinstance(target, (bytes, bytearray)) and len(target) == DIGEST_SIZE:
            return bytes(target)
        raise ValueError(f"target tag must be {DIGEST_SIZE} bytes, got {len(target)}")

    def _report(self, step: int, total: int) -> None:
        if self.on_step:
            self.on_step(step, total, PROOF_STEPS[step])
