"""
Dynasty Intrigue - 承诺-揭示密谋对决

- duel: 承诺方案、结算引擎、对局状态机
- chain: 执行后端契约与适配器
- services: 交易编排、会话控制、注册表、事件与账本
"""

__version__ = "0.1.0"
