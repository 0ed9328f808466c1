"""扫描相关模型"""

from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class ScanState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


class ScanProgress(BaseModel):
    """扫描进度事件；同一次扫描内 scanned 单调不减且不超过 total"""
    kind: Literal["start", "progress", "done"]
    scanned: int = 0
    total: int = 0
    skipped: int = 0
    errors: int = 0
    completed_at: Optional[datetime] = None

    def to_sse(self) -> str:
        return f"data: {self.model_dump_json(exclude_none=True)}\n\n"


class ScanRequest(BaseModel):
    """不指定 symbols 时扫描整个自选股列表"""
    symbols: Optional[List[str]] = Field(default=None, description="本次扫描的股票代码")
