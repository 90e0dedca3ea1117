"""
配置管理模块
"""
import os
from pathlib import Path
from typing import Literal
from pydantic import BaseModel, ConfigDict
from dotenv import load_dotenv

# 加载环境变量
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


class Settings(BaseModel):
    """应用配置"""

    # 对局规则
    max_rounds: int = int(os.getenv("DUEL_MAX_ROUNDS", "3"))
    initial_hp: int = int(os.getenv("DUEL_INITIAL_HP", "100"))
    initial_mana: int = int(os.getenv("DUEL_INITIAL_MANA", "50"))
    initial_prestige: int = int(os.getenv("DUEL_INITIAL_PRESTIGE", "50"))
    max_prestige: int = int(os.getenv("DUEL_MAX_PRESTIGE", "100"))
    mana_cost_per_round: int = int(os.getenv("DUEL_MANA_COST_PER_ROUND", "10"))

    # 结算常量（策略选择，非推导不变量）
    draw_prestige: int = int(os.getenv("DUEL_DRAW_PRESTIGE", "5"))
    assassination_prestige: int = int(os.getenv("DUEL_ASSASSINATION_PRESTIGE", "30"))
    bribery_prestige: int = int(os.getenv("DUEL_BRIBERY_PRESTIGE", "15"))
    rebellion_prestige: int = int(os.getenv("DUEL_REBELLION_PRESTIGE", "20"))
    failed_plot_penalty: int = int(os.getenv("DUEL_FAILED_PLOT_PENALTY", "10"))
    damage_min: int = int(os.getenv("DUEL_DAMAGE_MIN", "15"))
    damage_max: int = int(os.getenv("DUEL_DAMAGE_MAX", "24"))
    # 终局声望相同时的胜者
    tie_break: Literal["player1", "player2"] = os.getenv("DUEL_TIE_BREAK", "player1")

    # 承诺方案
    enforce_unique_nonces: bool = _env_bool("DUEL_ENFORCE_UNIQUE_NONCES", "true")

    # 执行后端：auto | jsonrpc | memory | none
    backend_kind: Literal["auto", "jsonrpc", "memory", "none"] = os.getenv("DUEL_BACKEND", "auto")
    backend_rpc_url: str = os.getenv("BACKEND_RPC_URL", "")
    contract_id: str = os.getenv("DUEL_CONTRACT_ID", "")
    network_passphrase: str = os.getenv(
        "NETWORK_PASSPHRASE", "Test SDF Network ; September 2015"
    )
    base_fee: int = int(os.getenv("BACKEND_BASE_FEE", "10000000"))
    tx_timeout_seconds: int = int(os.getenv("BACKEND_TX_TIMEOUT_SECONDS", "30"))
    backend_request_timeout_seconds: float = float(
        os.getenv("BACKEND_REQUEST_TIMEOUT_SECONDS", "10")
    )

    # 交易编排
    poll_interval_seconds: float = float(os.getenv("TX_POLL_INTERVAL_SECONDS", "1.0"))
    poll_max_attempts: int = int(os.getenv("TX_POLL_MAX_ATTEMPTS", "30"))
    max_attempts: int = int(os.getenv("TX_MAX_ATTEMPTS", "3"))
    retry_backoff_seconds: float = float(os.getenv("TX_RETRY_BACKOFF_SECONDS", "0.5"))

    # 审计账本
    ledger_dir: str = os.getenv("DUEL_LEDGER_DIR", "./ledger")

    # API 配置
    api_prefix: str = "/api"
    cors_origins: list = ["*"]

    model_config = ConfigDict(env_file=".env", case_sensitive=False)


# 全局配置实例
settings = Settings()


def validate_config() -> bool:
    """
    验证配置是否完整

    Returns:
        bool: 配置是否有效（无效时对局只能以本地模式运行）
    """
    if settings.damage_min > settings.damage_max:
        print("警告: DUEL_DAMAGE_MIN 大于 DUEL_DAMAGE_MAX")
        return False

    if settings.backend_kind == "jsonrpc" and (
        not settings.backend_rpc_url or not settings.contract_id
    ):
        print("警告: 未设置 BACKEND_RPC_URL / DUEL_CONTRACT_ID，对局将以本地模式运行")
        return False

    ledger_parent = Path(settings.ledger_dir).resolve().parent
    if not ledger_parent.exists():
        print(f"警告: 账本目录的上级目录不存在: {ledger_parent}")
        return False

    return True
