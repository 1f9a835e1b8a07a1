"""交易决策核心统一命令行入口。

通过子命令驱动不同任务：

- `backtest`：单次回测。按配置回放历史 K 线，输出交易统计。
- `learn`：强化学习纸面交易循环（paper 实时行情 / dry-run 本地回放）。
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from typing import Any

from engine.backtest_engine import BacktestEngine
from engine.trading_engine import LearningEngine


@dataclass
class CliArgs:
    """命令行参数结构。

    config: 配置文件路径
    task: 要运行的任务类型 (backtest/learn)
    """
    config: str
    task: str
    episodes: int | None = None  # 覆盖 learning.max_episodes
    steps: int | None = None     # 覆盖 learning.max_steps_per_episode
    artifacts_dir: str | None = None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="trading-core", description="交易决策核心统一入口")

    def _add_config_arg(p: argparse.ArgumentParser, *, default: Any) -> None:
        p.add_argument(
            "--config",
            default=default,
            help="配置文件路径 (默认: config/config.yml)",
        )

    # 允许 `main.py --config ... backtest`（全局）与 `main.py backtest --config ...`（子命令）
    _add_config_arg(parser, default="config/config.yml")

    sub = parser.add_subparsers(dest="task")

    p_backtest = sub.add_parser("backtest", help="单次回测")
    _add_config_arg(p_backtest, default=argparse.SUPPRESS)
    p_backtest.add_argument(
        "--artifacts-dir",
        default=None,
        help="导出 trades.csv / equity.csv 的目录",
    )

    p_learn = sub.add_parser("learn", help="强化学习纸面交易循环")
    _add_config_arg(p_learn, default=argparse.SUPPRESS)
    p_learn.add_argument("--episodes", type=int, default=None, help="运行多少个 episode")
    p_learn.add_argument("--steps", type=int, default=None, help="每个 episode 的最大步数")

    return parser


def parse_args(argv: list[str] | None = None) -> CliArgs:
    parser = build_parser()
    ns = parser.parse_args(argv)
    task = ns.task or "backtest"
    config = getattr(ns, "config", "config/config.yml")
    return CliArgs(
        config=str(config),
        task=task,
        episodes=getattr(ns, "episodes", None),
        steps=getattr(ns, "steps", None),
        artifacts_dir=getattr(ns, "artifacts_dir", None),
    )


def main(argv: list[str] | None = None) -> Any:
    """程序主入口，返回对应子命令的 summary dict。"""
    args = parse_args(argv)

    if args.task == "backtest":
        return BacktestEngine(cfg_path=args.config, artifacts_dir=args.artifacts_dir).run().summary

    if args.task == "learn":
        return LearningEngine(
            cfg_path=args.config,
            max_episodes=args.episodes,
            max_steps=args.steps,
        ).run().summary

    raise ValueError(f"Unknown task: {args.task}")


if __name__ == "__main__":
    main()
