"""领域异常。

普通的风控拒绝不走异常（返回 RiskCheck）；这里只放需要中止当前运行的错误。
"""


class SimulationInvariantError(RuntimeError):
    """模拟器内部不变量被破坏（例如同一 symbol 重复开仓）。"""


class RiskAssessmentError(RuntimeError):
    """风控评估所依赖的基础设施失败（例如行情状态查询异常）。"""


class DataSourceError(RuntimeError):
    """行情数据源连接/拉取失败。"""
