# processor.py
"""
ClearBatch 核心处理器 (完全异步版)。

封装了并发控制、断点续跑、后台批量刷盘、进度显示与最终统计。
N 个 worker 协程从同一个 FIFO 队列中竞争取出记录，每条记录只调用一次API；
取消信号是协作式的：已发出的请求会等待其完成，队列则停止继续消费。
无论正常结束还是被中断，剩余结果都会被写盘，并且一定会输出最终统计。
"""
import asyncio
from enum import Enum
from typing import List, Protocol, Sequence, Tuple

from api_gateway import REQUEST_CANCELLED, Gateway
from ledger import PersistenceLedger
from logging_config import logger
from progress import ProgressReporter, ProgressSnapshot
from records import ProcessingResult, Record


class ConfigProtocol(Protocol):
    """定义期望的配置对象的结构（“形状”），用于更严格的类型提示。"""
    THREAD_COUNT: int; CLEAR_CODE: str
    PROGRESS_BATCH_SIZE: int; WRITE_BATCH_SIZE: int; FLUSH_INTERVAL: float
    SHOW_PROGRESS: bool | None

    @property
    def success_file(self) -> str: ...

    @property
    def error_file(self) -> str: ...


class PoolState(str, Enum):
    IDLE = "Idle"
    LOADING_LEDGER = "LoadingLedger"
    DISPATCHING = "Dispatching"
    DRAINING = "Draining"
    FLUSHING = "Flushing"
    SUMMARIZED = "Summarized"


class BatchProcessor:
    """
    对一批记录并发调用远端API的处理器。

    Args:
        config: 已校验的配置对象。
        gateway: 提供 `submit(record, clear_code)` 的API网关。
        ledger: 持久化账本；默认按配置创建。
        reporter: 进度汇总器；默认按配置创建。
    """

    def __init__(self, config: ConfigProtocol, gateway: Gateway,
                 ledger: PersistenceLedger | None = None, reporter: ProgressReporter | None = None):
        self.config = config
        self.gateway = gateway
        self.ledger = ledger or PersistenceLedger(
            config.success_file, config.error_file, batch_size=config.WRITE_BATCH_SIZE
        )
        self.reporter = reporter or ProgressReporter(
            batch_size=config.PROGRESS_BATCH_SIZE,
            success_file=config.success_file,
            error_file=config.error_file,
            show_progress=config.SHOW_PROGRESS,
        )
        self.state = PoolState.IDLE

        self._successes: List[Record] = []
        self._failures: List[ProcessingResult] = []

    def _partition(self, records: Sequence[Record]) -> Tuple[List[Record], List[Record]]:
        """按输入顺序把记录分为待处理与应跳过 (已成功或本次输入中重复) 两组。"""
        pending, skipped = [], []
        seen = set()
        for record in records:
            key = record.key()
            if self.ledger.is_processed(record) or key in seen:
                skipped.append(record)
            else:
                seen.add(key)
                pending.append(record)
        return pending, skipped

    def _route(self, result: ProcessingResult):
        if result.is_success:
            self._successes.append(result.record)
        else:
            self._failures.append(result)
        self.reporter.report(result)

    async def _worker(self, worker_id: int, queue: asyncio.Queue, semaphore: asyncio.Semaphore,
                      cancel_event: asyncio.Event):
        """
        从共享队列中取记录直到队列耗尽或收到取消信号。

        任务本身被取消时，正在处理的记录登记为 "Request cancelled"，随后取消继续向上传播，
        队列中剩余的记录不会再被发送。
        """
        logger.debug(f"Worker {worker_id} 启动")
        while not cancel_event.is_set():
            try:
                record = queue.get_nowait()
            except asyncio.QueueEmpty:
                break

            async with semaphore:
                try:
                    result = await self.gateway.submit(record, self.config.CLEAR_CODE)
                except asyncio.CancelledError:
                    self._route(ProcessingResult.failure(record, REQUEST_CANCELLED))
                    queue.task_done()
                    logger.warning(f"Worker {worker_id} 被取消，停止取记录")
                    raise
                except Exception as e:
                    logger.error(f"Worker {worker_id} 处理记录 '{record.key()}' 时出错: {e}", exc_info=True)
                    result = ProcessingResult.failure(record, f"Worker error: {e}")

            self._route(result)
            queue.task_done()
        logger.debug(f"Worker {worker_id} 结束")

    async def _flush_accumulated(self):
        """把自上次刷盘以来新增的结果交给账本：成功按批写，失败立即写。"""
        # 整体换出累加器，之后 worker 追加的结果留给下一次刷盘。
        new_successes, self._successes = self._successes, []
        new_failures, self._failures = self._failures, []

        if new_successes:
            await self.ledger.record_successes(new_successes)
        if new_failures:
            await self.ledger.record_failures(new_failures)

    async def _periodic_flusher(self, stop_event: asyncio.Event):
        interval = self.config.FLUSH_INTERVAL
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
            if stop_event.is_set():
                break
            try:
                await self._flush_accumulated()
            except Exception:
                logger.error("后台批量保存任务出错", exc_info=True)

    async def _final_flush(self):
        await self._flush_accumulated()
        await self.ledger.flush_all()

    async def run(self, records: Sequence[Record], cancel_event: asyncio.Event | None = None) -> ProgressSnapshot:
        """
        处理全部记录的公共入口：加载账本 -> 分发 -> 消费 -> 刷盘 -> 统计。

        Args:
            records: 已解析的输入记录。
            cancel_event: 协作式取消信号；被设置后 worker 处理完当前记录即退出。

        Returns:
            ProgressSnapshot: 输出最终统计时的计数快照。
        """
        cancel_event = cancel_event or asyncio.Event()
        records = list(records)

        self.state = PoolState.LOADING_LEDGER
        await self.ledger.load_processed_keys()

        self.state = PoolState.DISPATCHING
        pending, skipped = self._partition(records)
        self.reporter.initialize(len(records))
        for record in skipped:
            self.reporter.report(ProcessingResult.skipped(record))
        if skipped:
            logger.info(f"跳过 {len(skipped)} 条已处理或重复的记录 (断点续跑)。")

        queue: asyncio.Queue = asyncio.Queue()
        for record in pending:
            queue.put_nowait(record)

        thread_count = max(1, self.config.THREAD_COUNT)
        semaphore = asyncio.Semaphore(thread_count)
        stop_flusher = asyncio.Event()
        logger.info(f"使用 {thread_count} 个 worker 处理剩余的 {len(pending)} 条记录。")

        self.state = PoolState.DRAINING
        flusher = asyncio.create_task(self._periodic_flusher(stop_flusher))
        try:
            workers = [
                asyncio.create_task(self._worker(i + 1, queue, semaphore, cancel_event))
                for i in range(thread_count)
            ]
            await asyncio.gather(*workers)
        finally:
            stop_flusher.set()
            await asyncio.gather(flusher, return_exceptions=True)

            self.state = PoolState.FLUSHING
            logger.info("处理循环结束或中断，正在写入剩余批次数据...")
            try:
                await asyncio.shield(self._final_flush())
            except Exception:
                logger.error("清理阶段保存剩余结果时出错", exc_info=True)

            self.state = PoolState.SUMMARIZED
            self.reporter.display_summary()
            snapshot = self.reporter.snapshot()
            if cancel_event.is_set():
                logger.warning("处理被用户中断，已保存当前进度。")
            logger.info(
                f"处理结束。成功: {snapshot.success}，失败: {snapshot.failed}，跳过: {snapshot.skipped}，"
                f"总计: {snapshot.total}"
            )
        return snapshot
