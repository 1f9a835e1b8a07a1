"""策略注册表：字符串 -> Strategy 实现。"""

from __future__ import annotations

import inspect
from typing import Any, Callable, Mapping

from algo.strategy.base import Strategy
from algo.strategy.default import DefaultStrategy
from algo.strategy.ppo import PPOStrategy
from shared.config.schema import StrategyConfig

_REGISTRY: dict[str, Callable[..., Strategy]] = {}


def register_strategy(name: str, cls: Callable[..., Strategy]) -> None:
    _REGISTRY[name] = cls


def get_strategy_cls(name: str) -> Callable[..., Strategy]:
    if name not in _REGISTRY:
        raise ValueError(f"Unknown strategy: {name}")
    return _REGISTRY[name]


def available_strategies() -> list[str]:
    return sorted(_REGISTRY)


def _filter_init_kwargs(cls: Callable[..., Any], params: Mapping[str, Any]) -> dict[str, Any]:
    """过滤出 __init__ 支持的参数，避免配置里多字段导致报错。"""
    try:
        sig = inspect.signature(cls)
    except (TypeError, ValueError):
        return dict(params)

    if any(p.kind == inspect.Parameter.VAR_KEYWORD for p in sig.parameters.values()):
        return dict(params)

    allowed = {name for name in sig.parameters.keys() if name != "self"}
    return {k: v for k, v in params.items() if k in allowed}


def build_strategy(cfg: StrategyConfig | Mapping[str, Any] | None, **extra: Any) -> Strategy:
    """从配置构建策略实例。

    支持：
    - StrategyConfig
    - dict（含 type + 参数字段）
    - None（默认 ppo）

    `extra` 会与配置参数合并（如注入 logger）。
    """
    if cfg is None:
        name, params = "ppo", {}
    elif isinstance(cfg, StrategyConfig):
        name = str(cfg.type)
        params = dict(cfg.params or {})
    elif isinstance(cfg, Mapping):
        name = str(cfg.get("type", "ppo"))
        params = dict(cfg.get("params") or {}) if "params" in cfg else dict(cfg)
        params.pop("type", None)
    else:
        raise ValueError("strategy cfg must be StrategyConfig or dict")

    cls = get_strategy_cls(name)
    kwargs = _filter_init_kwargs(cls, {**params, **extra})
    return cls(**kwargs)


# 默认注册
register_strategy("default", DefaultStrategy)
register_strategy("ppo", PPOStrategy)
