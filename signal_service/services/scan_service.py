"""
扫描服务
对一组股票代码做 N 路并行刷新：命中新鲜缓存则跳过，否则计算并回写缓存，
按固定批量推送进度事件，最后以 done 事件结束进度流。

同一扫描目标同时只允许一个扫描运行（单实例保护），状态由 ScanCoordinator 实例持有。
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, Iterator, List, Optional, Protocol

from signal_service.config import settings
from signal_service.errors import ScanConflictError
from signal_service.layers.cache import TieredCache
from signal_service.layers.queue import AdmissionQueue
from signal_service.models.scan import ScanProgress, ScanState

logger = logging.getLogger(__name__)

ComputeFn = Callable[[str], Awaitable[Any]]


# ── 进度通道 ──────────────────────────────────────────────

class ProgressSink(Protocol):
    async def send(self, event: ScanProgress) -> None: ...

    async def close(self) -> None: ...


_CLOSED = object()


class ChannelProgressSink:
    """基于 asyncio.Queue 的进度通道，关闭后写入被忽略，迭代在关闭处结束"""

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, event: ScanProgress) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item


# ── 扫描编排 ──────────────────────────────────────────────

class _Outcome(str, Enum):
    REFRESHED = "refreshed"
    SKIPPED = "skipped"
    FAILED = "failed"


class RefreshOrchestrator:
    """
    单次扫描实例：Idle → Running → Completed / Aborted

    workers 个协程共享同一个代码游标，各自领取下一个未处理代码；
    处理结果经完成通道汇总到单一消费者，由它更新计数并推送进度。

    Args:
        compute: 单个代码的计算函数，返回值写回 cache
        cache: 判定是否跳过、并承接计算结果的分级缓存
        workers: 并行协程数
        progress_every: 每完成多少个代码推送一次 progress
        exclude: 排除列表，不计入 total，也不会被计算
        queue: 若指定，计算任务经由该准入队列执行
    """

    def __init__(
        self,
        compute: ComputeFn,
        cache: TieredCache,
        workers: Optional[int] = None,
        progress_every: Optional[int] = None,
        exclude: Optional[Iterable[str]] = None,
        queue: Optional[AdmissionQueue] = None,
    ):
        workers = settings.SCAN_WORKERS if workers is None else workers
        progress_every = settings.SCAN_PROGRESS_EVERY if progress_every is None else progress_every
        if workers < 1:
            raise ValueError(f"并行协程数必须 >= 1: {workers}")
        if progress_every < 1:
            raise ValueError(f"进度推送间隔必须 >= 1: {progress_every}")

        self._compute = compute
        self._cache = cache
        self._workers = workers
        self._progress_every = progress_every
        self._exclude = set(settings.SCAN_EXCLUDE_SYMBOLS if exclude is None else exclude)
        self._queue = queue
        self._cancel_requested = False

        self.state = ScanState.IDLE
        self.total = 0
        self.scanned = 0
        self.skipped = 0
        self.errors = 0
        self.last_event: Optional[ScanProgress] = None

    def prepare(self, symbols: Iterable[str]) -> List[str]:
        """去重并过滤排除列表，保持原有顺序"""
        return [s for s in dict.fromkeys(symbols) if s not in self._exclude]

    def cancel(self) -> None:
        """停止领取新代码；在途计算继续完成并回写缓存"""
        if not self._cancel_requested:
            self._cancel_requested = True
            if self.state is ScanState.RUNNING:
                logger.info(f"扫描取消: 已完成 {self.scanned}/{self.total}")

    def snapshot(self, kind: str) -> ScanProgress:
        return ScanProgress(
            kind=kind,
            scanned=self.scanned,
            total=self.total,
            skipped=self.skipped,
            errors=self.errors,
            completed_at=datetime.now(tz=timezone.utc) if kind == "done" else None,
        )

    async def run(self, symbols: Iterable[str], sink: ProgressSink) -> Optional[ScanProgress]:
        """执行扫描，返回最后一个事件；无论成败都会关闭 sink"""
        if self.state is not ScanState.IDLE:
            raise RuntimeError(f"扫描实例不可重复运行（当前状态 {self.state.value}）")

        universe = self.prepare(symbols)
        self.total = len(universe)
        self.state = ScanState.RUNNING
        logger.info(f"扫描开始: 共 {self.total} 个代码，{self._workers} 路并行")

        try:
            await self._emit(sink, self.snapshot("start"))

            completions: asyncio.Queue = asyncio.Queue()
            cursor = iter(universe)
            workers = [
                asyncio.create_task(self._worker(cursor, completions))
                for _ in range(min(self._workers, self.total))
            ]

            finished = 0
            while finished < len(workers):
                outcome = await completions.get()
                if outcome is None:
                    finished += 1
                    continue
                self._record(outcome)
                if self.scanned % self._progress_every == 0 or self.scanned == self.total:
                    await self._emit(sink, self.snapshot("progress"))

            await asyncio.gather(*workers)

            if self._cancel_requested:
                self.state = ScanState.ABORTED
                logger.warning(
                    f"扫描中止: {self.scanned}/{self.total}，跳过 {self.skipped}，错误 {self.errors}"
                )
            else:
                self.state = ScanState.COMPLETED
                await self._emit(sink, self.snapshot("done"))
                logger.info(
                    f"扫描完成: {self.scanned}/{self.total}，跳过 {self.skipped}，错误 {self.errors}"
                )
        except asyncio.CancelledError:
            self._cancel_requested = True
            self.state = ScanState.ABORTED
            raise
        except Exception as exc:
            self._cancel_requested = True
            self.state = ScanState.ABORTED
            logger.error(f"扫描异常终止: {exc}", exc_info=True)
        finally:
            await sink.close()

        return self.last_event

    def _record(self, outcome: _Outcome) -> None:
        self.scanned += 1
        if outcome is _Outcome.SKIPPED:
            self.skipped += 1
        elif outcome is _Outcome.FAILED:
            self.errors += 1

    async def _emit(self, sink: ProgressSink, event: ScanProgress) -> None:
        # 取消后不再推送进度
        if self._cancel_requested and event.kind != "start":
            return
        self.last_event = event
        await sink.send(event)

    async def _worker(self, cursor: Iterator[str], completions: asyncio.Queue) -> None:
        try:
            while not self._cancel_requested:
                symbol = next(cursor, None)
                if symbol is None:
                    break
                completions.put_nowait(await self._process(symbol))
        finally:
            completions.put_nowait(None)

    async def _process(self, symbol: str) -> _Outcome:
        cached = await self._cache.get(symbol)
        if cached.hit:
            return _Outcome.SKIPPED

        try:
            if self._queue is not None:
                result = await self._queue.submit(lambda: self._compute(symbol))
            else:
                result = await self._compute(symbol)
        except Exception as exc:
            logger.warning(f"{symbol} 刷新失败（本轮不重试）: {exc}")
            return _Outcome.FAILED

        await self._cache.set(symbol, result)
        return _Outcome.REFRESHED


# ── 单实例保护 ────────────────────────────────────────────

@dataclass
class ScanHandle:
    target: str
    orchestrator: RefreshOrchestrator
    sink: ChannelProgressSink
    task: asyncio.Task

    def cancel(self) -> None:
        self.orchestrator.cancel()

    async def events(self):
        async for event in self.sink:
            yield event


class ScanCoordinator:
    """按扫描目标维护运行中的扫描，拒绝同一目标的并发请求"""

    def __init__(self):
        self._active: Dict[str, ScanHandle] = {}
        self._latest: Dict[str, RefreshOrchestrator] = {}

    def is_running(self, target: str) -> bool:
        return target in self._active

    def start(
        self,
        target: str,
        symbols: Iterable[str],
        compute: ComputeFn,
        cache: TieredCache,
        **options: Any,
    ) -> ScanHandle:
        """
        启动扫描并立即返回句柄；必须在事件循环内调用

        Raises:
            ScanConflictError: 该目标已有扫描在运行
        """
        if target in self._active:
            logger.warning(f"拒绝重复扫描请求: {target}")
            raise ScanConflictError(target)

        orchestrator = RefreshOrchestrator(compute, cache, **options)
        sink = ChannelProgressSink()
        task = asyncio.create_task(orchestrator.run(list(symbols), sink))
        handle = ScanHandle(target=target, orchestrator=orchestrator, sink=sink, task=task)

        self._active[target] = handle
        self._latest[target] = orchestrator
        task.add_done_callback(lambda t: self._finish(handle, t))
        return handle

    def _finish(self, handle: ScanHandle, task: asyncio.Task) -> None:
        if self._active.get(handle.target) is handle:
            del self._active[handle.target]
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"扫描任务异常退出: {handle.target} {task.exception()}")

    def status(self) -> Dict[str, dict]:
        result = {}
        for target, orchestrator in self._latest.items():
            last = orchestrator.last_event
            result[target] = {
                "state": orchestrator.state.value,
                "running": target in self._active,
                "last_event": last.model_dump(mode="json", exclude_none=True) if last else None,
            }
        return result


# ── 模块级别单例 ──────────────────────────────────────────
_coordinator: Optional[ScanCoordinator] = None


def get_scan_coordinator() -> ScanCoordinator:
    global _coordinator
    if _coordinator is None:
        _coordinator = ScanCoordinator()
    return _coordinator
