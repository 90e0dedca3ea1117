#!/usr/bin/env python3
"""
Dynasty Intrigue - 对决测试CLI工具

直接调用服务层的交互式命令行工具，无需启动HTTP服务器。

功能：
- 与对手AI进行三回合密谋对决
- 本地 / 内存后端 / JSON-RPC 后端三种运行方式
- 查看承诺、账本、事件与对账结果

使用方式:
    cd backend
    python play_cli.py
    python play_cli.py --backend none --opponent cunning
"""
import asyncio
from typing import List, Optional

from rich.box import ROUNDED, SIMPLE
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from intrigue.config import settings
from intrigue.dependencies import build_backend_handle
from intrigue.duel.errors import DuelError
from intrigue.duel.models.action import PlotAction
from intrigue.duel.models.round_result import RoundResult, RoundWinner
from intrigue.duel.models.session import DuelEvent, DuelEventType, DuelPhase
from intrigue.duel.rules import OPPONENT_PERSONALITIES, ResolutionRules
from intrigue.services.event_bus import EventBus
from intrigue.services.session_registry import SessionRegistry
from intrigue.services.session_controller import SessionController
from intrigue.services.transaction_orchestrator import build_orchestrator


# ==================== 配置 ====================

# 颜色主题
COLORS = {
    "player": "bright_green",
    "rival": "bright_red",
    "system": "bright_magenta",
    "commit": "bright_cyan",
    "error": "bright_red",
    "hint": "dim",
    "debug": "dim cyan",
    "warning": "yellow",
}

ACTION_HOTKEYS = {
    "1": PlotAction.ASSASSINATION,
    "2": PlotAction.BRIBERY,
    "3": PlotAction.REBELLION,
}


# ==================== 显示渲染 ====================

class DuelRenderer:
    """对决界面渲染器"""

    def __init__(self, debug_mode: bool = True):
        self.console = Console()
        self.debug_mode = debug_mode

    def clear(self):
        self.console.clear()

    def print_banner(self):
        banner = """
╔═══════════════════════════════════════════════════════════════╗
║           Dynasty Intrigue - 密谋对决 开发测试工具              ║
╚═══════════════════════════════════════════════════════════════╝
"""
        self.console.print(banner, style="bold bright_blue")

    def print_help(self):
        help_text = """
[bold]密谋命令:[/bold]
  1 / assassination   暗杀（克制贿赂）
  2 / bribery         贿赂（克制叛乱）
  3 / rebellion       叛乱（克制暗杀）

[bold]信息命令:[/bold]
  status          查看双方属性
  ledger          查看审计账本
  events [n]      查看最近 n 条事件
  reconcile       与执行后端对账
  export          导出账本到 DUEL_LEDGER_DIR

[bold]系统命令:[/bold]
  restart         终局后重新开始
  help            显示帮助
  quit/exit       退出
"""
        self.console.print(Panel(help_text, title="帮助", border_style="blue", box=ROUNDED))

    def print_status(self, controller: SessionController):
        session = controller.session
        table = Table(box=SIMPLE, show_header=True)
        table.add_column("")
        table.add_column(session.player1.name, style=COLORS["player"])
        table.add_column(session.player2.name, style=COLORS["rival"])
        for label, attr in (("声望", "prestige"), ("生命", "hp"), ("法力", "mana")):
            p1 = getattr(session.player1, attr)
            p2 = getattr(session.player2, attr)
            p1_max = getattr(session.player1, f"max_{attr}")
            p2_max = getattr(session.player2, f"max_{attr}")
            table.add_row(label, f"{p1}/{p1_max}", f"{p2}/{p2_max}")

        mode = session.mode.value
        if session.degraded_reason:
            mode = f"{mode} (降级: {session.degraded_reason})"
        title = (
            f"会话 {session.session_id} | 回合 {session.round_number}/{session.max_rounds}"
            f" | {session.phase.value} | {mode}"
        )
        self.console.print(Panel(table, title=title, border_style="blue"))

    def print_result(self, controller: SessionController, result: RoundResult):
        session = controller.session
        if result.winner is RoundWinner.NONE:
            headline = "势均力敌，双方各得声望"
            style = COLORS["system"]
        elif result.winner is RoundWinner.PLAYER1:
            headline = f"{session.player1.name} 的密谋得逞！"
            style = COLORS["player"]
        else:
            headline = f"{session.player2.name} 的密谋得逞！"
            style = COLORS["rival"]

        body = (
            f"{session.player1.name}: {result.player1_action.display_name}  vs  "
            f"{session.player2.name}: {result.player2_action.display_name}\n"
            f"声望变化: {result.prestige_delta[0]:+d} / {result.prestige_delta[1]:+d}\n"
            f"伤害: {result.hp_damage[0]} / {result.hp_damage[1]}"
        )
        self.console.print(Panel(body, title=f"[bold]{headline}[/bold]", border_style=style))

    def print_ledger(self, controller: SessionController):
        entries = controller.ledger.entries()
        if not entries:
            self.print_hint("账本为空")
            return
        table = Table(title="审计账本", box=ROUNDED)
        table.add_column("回合")
        table.add_column("玩家1")
        table.add_column("玩家2")
        table.add_column("胜者")
        table.add_column("承诺(前12位)")
        table.add_column("审计")
        for entry in entries:
            digests = " / ".join((d or "-")[:12] for d in (entry.player1_digest, entry.player2_digest))
            table.add_row(
                str(entry.round_number),
                entry.player1_action,
                entry.player2_action,
                str(entry.result.get("winner")),
                digests,
                "✓" if entry.audited else "[yellow]未审计[/yellow]",
            )
        self.console.print(table)

    def print_events(self, events: List[DuelEvent]):
        for event in events:
            self.console.print(
                f"[{COLORS['debug']}]#{event.seq} r{event.round} {event.event_type.value} {event.payload}[/]"
            )

    def print_error(self, message: str):
        self.console.print(f"[{COLORS['error']}]错误: {message}[/]")

    def print_system(self, message: str):
        self.console.print(f"[{COLORS['system']}]{message}[/]")

    def print_warning(self, message: str):
        self.console.print(f"[{COLORS['warning']}]{message}[/]")

    def print_hint(self, message: str):
        self.console.print(f"[{COLORS['hint']}]{message}[/]")

    def print_debug(self, message: str):
        if self.debug_mode:
            self.console.print(f"[{COLORS['debug']}][DEBUG] {message}[/]")

    def get_input(self, controller: SessionController) -> str:
        session = controller.session
        if session.phase is DuelPhase.GAME_OVER:
            prompt_str = "[终局] "
        else:
            prompt_str = f"[回合 {session.round_number}] 1暗杀 2贿赂 3叛乱 "
        try:
            return Prompt.ask(f"[green]{prompt_str}[/green]")
        except (KeyboardInterrupt, EOFError):
            return "quit"


# ==================== 主类 ====================

class DuelCLI:
    """对决CLI主类（直接服务调用）"""

    def __init__(
        self,
        backend: str = "memory",
        opponent: str = "random",
        player_name: str = "玩家",
        debug_mode: bool = True,
    ):
        self.renderer = DuelRenderer(debug_mode=debug_mode)
        self.event_bus = EventBus()
        settings.backend_kind = backend
        handle = build_backend_handle(settings)
        self.registry = SessionRegistry(
            orchestrator=build_orchestrator(handle, settings),
            rules=ResolutionRules.from_settings(settings),
            event_bus=self.event_bus,
            enforce_unique_nonces=settings.enforce_unique_nonces,
        )
        self.opponent = opponent
        self.player_name = player_name
        self.controller: Optional[SessionController] = None
        self.running = True
        self.event_bus.subscribe(DuelEventType.COMMITMENT_GENERATED, self._on_commitment)
        self.event_bus.subscribe(DuelEventType.MODE_DEGRADED, self._on_degraded)

    async def start(self):
        self.renderer.clear()
        self.renderer.print_banner()
        handle = self.registry.backend_handle
        self.renderer.print_system(
            f"执行后端: {handle.state.value} {handle.endpoint or handle.detail}"
        )

        try:
            self.controller = self.registry.create(
                player1_name=self.player_name,
                player2_name=f"对手({self.opponent})",
                opponent=self.opponent,
            )
            await self.controller.start()
        except DuelError as e:
            self.renderer.print_error(f"创建会话失败: {e}")
            return

        self.renderer.print_status(self.controller)
        self.renderer.print_hint("输入 1/2/3 选择密谋，help 查看帮助")
        await self.main_loop()

    async def main_loop(self):
        while self.running:
            try:
                user_input = self.renderer.get_input(self.controller)
                if not user_input.strip():
                    continue
                await self.handle_input(user_input.strip())
            except KeyboardInterrupt:
                self.renderer.print_system("\n正在退出...")
                break
            except (DuelError, ValueError) as e:
                self.renderer.print_error(str(e))

    async def handle_input(self, user_input: str):
        parts = user_input.split(maxsplit=1)
        cmd = parts[0].lower()
        arg = parts[1] if len(parts) > 1 else ""

        if cmd in ("quit", "exit", "q"):
            self.running = False
            self.renderer.print_system("再会。")
        elif cmd == "help":
            self.renderer.print_help()
        elif cmd == "status":
            self.renderer.print_status(self.controller)
        elif cmd == "ledger":
            self.renderer.print_ledger(self.controller)
        elif cmd == "events":
            limit = int(arg) if arg.isdigit() else 10
            self.renderer.print_events(self.controller.session.event_log[-limit:])
        elif cmd == "reconcile":
            await self.cmd_reconcile()
        elif cmd == "export":
            path = self.controller.ledger.export()
            self.renderer.print_system(f"账本已导出: {path}")
        elif cmd == "restart":
            await self.controller.restart()
            await self.controller.start()
            self.renderer.print_status(self.controller)
        else:
            await self.cmd_plot(ACTION_HOTKEYS.get(cmd, cmd))

    async def cmd_plot(self, action):
        action = PlotAction.parse(action)
        result = await self.controller.play_round(action)
        self.renderer.print_result(self.controller, result)
        self.renderer.print_status(self.controller)

        session = self.controller.session
        if session.is_over:
            winner = session.get_player(session.winner)
            self.renderer.console.print(
                Panel(f"[bold]{winner.name}[/bold] 赢得了王朝的权柄", title="终局", border_style="bright_yellow")
            )
            self.renderer.print_ledger(self.controller)
            self.renderer.print_hint("输入 restart 再来一局，quit 退出")

    async def cmd_reconcile(self):
        report = await self.controller.reconcile()
        if report.skipped:
            self.renderer.print_hint("本地模式，无需对账")
        elif report.consistent:
            self.renderer.print_system("本地状态与后端一致")
        else:
            for divergence in report.divergences:
                self.renderer.print_warning(f"分歧: {divergence}")

    def _on_commitment(self, event: DuelEvent):
        self.renderer.print_debug(
            f"{event.payload.get('player')} 承诺 {str(event.payload.get('digest', ''))[:16]}..."
        )

    def _on_degraded(self, event: DuelEvent):
        self.renderer.print_warning(f"已降级为本地模式: {event.payload.get('reason')}")


# ==================== 入口 ====================

async def main():
    """主入口"""
    import argparse

    parser = argparse.ArgumentParser(description="Dynasty Intrigue - 对决测试CLI")
    parser.add_argument(
        "--backend",
        choices=["memory", "jsonrpc", "none"],
        default="memory",
        help="执行后端",
    )
    parser.add_argument(
        "--opponent",
        choices=sorted(OPPONENT_PERSONALITIES),
        default="random",
        help="对手性格",
    )
    parser.add_argument("--name", default="玩家", help="玩家名称")
    parser.add_argument("--no-debug", action="store_true", help="禁用调试信息")
    args = parser.parse_args()

    cli = DuelCLI(
        backend=args.backend,
        opponent=args.opponent,
        player_name=args.name,
        debug_mode=not args.no_debug,
    )
    await cli.start()


if __name__ == "__main__":
    asyncio.run(main())
