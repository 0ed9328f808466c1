"""
统一异常定义
数据源错误分为可重试（临时）与不可恢复（永久）两类，扫描冲突单独定义
"""

from typing import Optional


class SignalServiceError(Exception):
    """服务内所有业务异常的基类"""


class DataSourceError(SignalServiceError):
    """数据源拉取失败"""

    def __init__(self, message: str, symbol: Optional[str] = None, source: Optional[str] = None):
        super().__init__(message)
        self.symbol = symbol
        self.source = source


class TransientError(DataSourceError):
    """网络异常、超时、限流、上游 5xx：本轮扫描记为错误，不重试"""


class PermanentError(DataSourceError):
    """代码无效或数据源无此标的：调用方可自行加入排除列表"""


class ScanConflictError(SignalServiceError):
    """同一扫描目标已有扫描在运行"""

    def __init__(self, target: str):
        super().__init__(f"扫描已在运行中: {target}")
        self.target = target
