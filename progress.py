# progress.py
"""
进度统计与显示。

`ProgressReporter` 只做观察：汇总计数、按批次节流刷新 tqdm 进度行，并在结束时输出最终统计。
所有计数的修改都在同一把锁内完成，读取时得到一致的快照。
"""
import sys
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, TextIO

from tqdm import tqdm

from records import ProcessingResult, ProcessingStatus

SUMMARY_RULE = "=" * 63


@dataclass(frozen=True)
class ProgressSnapshot:
    total: int
    processed: int
    success: int
    failed: int
    skipped: int
    elapsed: float

    @property
    def percent_complete(self) -> float:
        return self.processed / self.total * 100 if self.total else 0.0

    @property
    def rate(self) -> float:
        return self.processed / self.elapsed if self.elapsed > 0 else 0.0

    @property
    def completed(self) -> bool:
        return self.processed >= self.total


ProgressListener = Callable[[ProgressSnapshot], None]


def _percentage(value: int, total: int) -> float:
    return value / total * 100 if total else 0.0


def format_duration(seconds: float) -> str:
    seconds = int(seconds)
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


class ProgressReporter:
    """
    线程安全的进度汇总器。

    Args:
        batch_size: 距上次刷新至少累计多少条记录才重绘进度行。
        success_file: 最终统计中展示的成功文件路径。
        error_file: 最终统计中展示的失败文件路径。
        stream: 进度行与最终统计的输出流，默认 stderr / stdout。
        show_progress: 是否显示进度条；None 表示仅在 TTY 下显示。
    """

    def __init__(self, batch_size: int = 20, success_file: str = "", error_file: str = "",
                 stream: TextIO | None = None, show_progress: bool | None = None):
        self.batch_size = max(1, batch_size)
        self.success_file = success_file
        self.error_file = error_file
        self._stream = stream
        self._show_progress = show_progress
        self._lock = threading.Lock()
        self._listeners: List[ProgressListener] = []
        self._bar: tqdm | None = None

        self.total = 0
        self.processed = 0
        self.success = 0
        self.failed = 0
        self.skipped = 0
        self.start_time = time.monotonic()
        self.last_report_time = self.start_time
        self.last_report_count = 0

    def add_listener(self, listener: ProgressListener):
        """注册一个回调，每次刷新进度行时收到一份 `ProgressSnapshot`。"""
        self._listeners.append(listener)

    def initialize(self, total: int):
        with self._lock:
            self.total = total
            self.processed = self.success = self.failed = self.skipped = 0
            self.start_time = time.monotonic()
            self.last_report_time = self.start_time
            self.last_report_count = 0

            if self._bar is not None:
                self._bar.close()
            out = self._stream or sys.stderr
            disable = not out.isatty() if self._show_progress is None else not self._show_progress
            self._bar = tqdm(total=total, desc="处理中", file=out, disable=disable,
                             mininterval=0, dynamic_ncols=True, leave=True)

    def report(self, result: ProcessingResult):
        with self._lock:
            self.processed += 1
            if result.status is ProcessingStatus.SUCCESS:
                self.success += 1
            elif result.status is ProcessingStatus.FAILED:
                self.failed += 1
            else:
                self.skipped += 1

            if self.processed - self.last_report_count >= self.batch_size or self.processed == self.total:
                self._refresh()

    def snapshot(self) -> ProgressSnapshot:
        with self._lock:
            return self._snapshot()

    def _snapshot(self) -> ProgressSnapshot:
        return ProgressSnapshot(
            total=self.total,
            processed=self.processed,
            success=self.success,
            failed=self.failed,
            skipped=self.skipped,
            elapsed=time.monotonic() - self.start_time,
        )

    def _refresh(self):
        # 调用方已持有锁。
        self.last_report_count = self.processed
        self.last_report_time = time.monotonic()
        snap = self._snapshot()
        if self._bar is not None:
            self._bar.n = snap.processed
            self._bar.set_postfix_str(
                f"成功: {snap.success}, 失败: {snap.failed}, 跳过: {snap.skipped}", refresh=False
            )
            self._bar.refresh()
        for listener in self._listeners:
            listener(snap)

    def display_summary(self) -> str:
        """输出并返回最终统计。即使运行被中途停止也会调用。"""
        with self._lock:
            snap = self._snapshot()
            if self._bar is not None:
                self._bar.n = snap.processed
                self._bar.close()
                self._bar = None

            title = "处理完成!" if snap.completed else "处理已停止 (提前结束)"
            lines = [
                "",
                SUMMARY_RULE,
                f"  {title}",
                SUMMARY_RULE,
                f"  总记录数:   {snap.total:,}",
                f"  成功:       {snap.success:,} ({_percentage(snap.success, snap.processed):.1f}%)",
                f"  失败:       {snap.failed:,} ({_percentage(snap.failed, snap.processed):.1f}%)",
                f"  跳过:       {snap.skipped:,} ({_percentage(snap.skipped, snap.processed):.1f}%)",
                "",
                f"  耗时:       {format_duration(snap.elapsed)}",
                f"  处理速度:   {snap.rate:.1f} 条/秒",
                "",
                f"  成功记录:   {self.success_file}",
                f"  失败记录:   {self.error_file}",
                SUMMARY_RULE,
            ]
            summary = "\n".join(lines)

            out = self._stream or sys.stdout
            print(summary, file=out)
            out.flush()
            return summary
