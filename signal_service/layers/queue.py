"""
Layer 0 – 准入队列层
限制对单一外部依赖的同时在途请求数，避免触发数据源的隐式限流。
每类依赖（行情、基本面、网页抓取）持有独立队列，慢依赖不会占满快依赖的并发额度。
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Set, Tuple, TypeVar

from signal_service.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")
TaskFactory = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class QueueState:
    """队列计数快照"""
    name: str
    capacity: int
    running: int
    pending: int


class AdmissionQueue:
    """
    并发上限为 capacity 的异步任务队列

    - 任意时刻最多 capacity 个任务在执行
    - 每当一个槽位释放即重新派发，已提交任务最终都会执行
    - 任务失败只传递给其提交者，不影响其他任务，也不缩减容量
    """

    def __init__(self, capacity: int, name: str = "default"):
        if capacity < 1:
            raise ValueError(f"队列容量必须 >= 1: {capacity}")
        self.name = name
        self.capacity = capacity
        self._running = 0
        self._pending: Deque[Tuple[TaskFactory, asyncio.Future]] = deque()
        self._runners: Set[asyncio.Task] = set()

    @property
    def running(self) -> int:
        return self._running

    @property
    def pending(self) -> int:
        return len(self._pending)

    def state(self) -> QueueState:
        return QueueState(self.name, self.capacity, self._running, len(self._pending))

    async def submit(self, task: Callable[[], Awaitable[T]]) -> T:
        """
        提交一个异步任务，等待其结果

        Args:
            task: 无参协程函数，被准入后才会调用
        """
        future = asyncio.get_running_loop().create_future()
        self._pending.append((task, future))
        self._dispatch()
        return await future

    def _dispatch(self) -> None:
        while self._running < self.capacity and self._pending:
            task, future = self._pending.popleft()
            if future.done():
                # 提交者已取消，未开始的任务直接丢弃
                continue
            self._running += 1
            runner = asyncio.ensure_future(self._run(task, future))
            self._runners.add(runner)
            runner.add_done_callback(self._runners.discard)

    async def _run(self, task: TaskFactory, future: asyncio.Future) -> None:
        try:
            result = await task()
        except asyncio.CancelledError:
            if not future.done():
                future.cancel()
            raise
        except Exception as exc:
            if not future.done():
                future.set_exception(exc)
        else:
            if not future.done():
                future.set_result(result)
        finally:
            self._running -= 1
            self._dispatch()


# ── 按依赖类别划分的共享队列 ───────────────────────────────
_queues: Dict[str, AdmissionQueue] = {}


def get_queue(name: str, capacities: Optional[Dict[str, int]] = None) -> AdmissionQueue:
    """获取指定依赖类别的共享队列（首次调用时按配置创建）"""
    queue = _queues.get(name)
    if queue is None:
        capacities = capacities or settings.QUEUE_CAPACITIES
        if name not in capacities:
            raise KeyError(f"未配置的队列类别: {name}")
        queue = AdmissionQueue(capacities[name], name=name)
        _queues[name] = queue
        logger.debug(f"创建准入队列: {name}（容量 {queue.capacity}）")
    return queue


def queue_states() -> Dict[str, QueueState]:
    return {name: q.state() for name, q in _queues.items()}
