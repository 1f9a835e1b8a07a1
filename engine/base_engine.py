"""执行引擎基类。

回测（BacktestEngine）与学习循环（LearningEngine）共用同一出口：`run() -> EngineResult`，
组件在引擎内按依赖顺序构建（叶子在前）后注入，避免组件之间互相引用。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class EngineResult:
    """引擎运行结果。`summary` 可直接序列化，`artifacts` 放结果对象与导出文件路径。"""

    summary: dict[str, Any]
    artifacts: dict[str, Any] | None = None


class BaseEngine(ABC):
    """引擎抽象基类。"""

    @abstractmethod
    def run(self) -> EngineResult:
        raise NotImplementedError
