# ledger.py
"""
持久化账本：记录成功 (用于断点续跑) 与失败 (用于审计) 的结果。

- 成功记录先在内存中排队，达到批量大小或显式 `flush_all()` 时写盘。
  写盘方式为 "读取整个 JSON 数组 -> 追加 -> 写临时文件 -> 原子替换"，
  每次刷盘的开销与成功总数成正比，适用于数万条记录的规模。
- 失败记录逐条立即追加到 JSONL 文件，不做批量。
- 所有写盘路径共用一把 `asyncio.Lock`；内存中的已处理主键集合只增不减，在锁外更新。
"""
import asyncio
import json
import os
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Set

import aiofiles
import aiofiles.os

from logging_config import logger
from records import ProcessingResult, Record, utc_now


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def success_entry(record: Record, processed_at: datetime) -> Dict[str, Any]:
    return {"key": record.key(), **record.identity(), "processedAt": _iso(processed_at)}


def failure_entry(result: ProcessingResult) -> Dict[str, Any]:
    return {
        "key": result.record.key(),
        **result.record.identity(),
        "errorMessage": result.error_message or "Unknown error",
        "failedAt": _iso(result.processed_at),
    }


class PersistenceLedger:
    """
    成功/失败存储与内存中已处理主键集合的唯一所有者。

    Args:
        success_file: 成功记录的 JSON 数组文件。
        error_file: 失败记录的 JSONL 文件。
        batch_size: 成功记录累计到多少条时自动写盘。
    """

    def __init__(self, success_file: str, error_file: str, batch_size: int = 100):
        self.success_file = success_file
        self.error_file = error_file
        self.batch_size = max(1, batch_size)
        self.processed_keys: Set[str] = set()
        self._pending: List[Record] = []
        self._write_lock = asyncio.Lock()

    async def _ensure_dir_exists(self):
        for file_path in (self.success_file, self.error_file):
            dir_name = os.path.dirname(file_path)
            if dir_name:
                await aiofiles.os.makedirs(dir_name, exist_ok=True)

    async def _read_success_store(self) -> List[Dict[str, Any]]:
        """读取成功文件；文件不存在或为空时返回空列表。内容无法解析时抛出 ValueError。"""
        if not await aiofiles.os.path.exists(self.success_file):
            return []
        async with aiofiles.open(self.success_file, 'r', encoding='utf-8') as f:
            text = await f.read()
        if not text.strip():
            return []
        data = json.loads(text)
        if not isinstance(data, list):
            raise ValueError(f"期望 JSON 数组，实际为 {type(data).__name__}")
        return data

    async def load_processed_keys(self) -> Set[str]:
        """从成功文件加载已处理记录的主键。任何读取或解析错误只记录日志，视为空。"""
        if not await aiofiles.os.path.exists(self.success_file):
            logger.info(f"未找到成功记录文件 '{self.success_file}'，从头开始处理。")
            return self.processed_keys

        logger.info(f"正在从 '{self.success_file}' 加载已处理记录...")
        try:
            entries = await self._read_success_store()
        except (OSError, ValueError) as e:
            logger.error(f"加载成功记录文件 '{self.success_file}' 失败，按空文件处理: {e}")
            return self.processed_keys

        loaded = 0
        for entry in entries:
            key = entry.get("key") if isinstance(entry, dict) else None
            if isinstance(key, str) and key:
                self.processed_keys.add(key)
                loaded += 1
        logger.info(f"加载完成。找到 {loaded} 条可跳过的已处理记录。")
        return self.processed_keys

    def is_processed(self, record: Record) -> bool:
        return record.key() in self.processed_keys

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def record_successes(self, records: Iterable[Record]):
        """登记成功记录：主键立即可见，落盘则按批进行。"""
        for record in records:
            self.processed_keys.add(record.key())
            self._pending.append(record)
        if len(self._pending) >= self.batch_size:
            await self._flush_successes()

    async def record_failures(self, results: Iterable[ProcessingResult]):
        """逐条立即追加失败记录。"""
        for result in results:
            await self._append_failure(result)

    async def flush_all(self):
        """强制写出所有排队中的成功记录。没有待写内容时什么也不做。"""
        await self._flush_successes()

    async def _flush_successes(self):
        async with self._write_lock:
            if not self._pending:
                return
            batch, self._pending = self._pending, []
            processed_at = utc_now()
            try:
                await self._ensure_dir_exists()
                try:
                    entries = await self._read_success_store()
                except ValueError as e:
                    entries = []
                    await self._quarantine_corrupt_store(e)
                entries.extend(success_entry(record, processed_at) for record in batch)
                await self._replace_success_store(entries)
            except OSError as e:
                # 放回队列头部，留待下一次刷盘重试。
                self._pending[:0] = batch
                logger.error(f"写入成功记录文件 '{self.success_file}' 失败: {e}", exc_info=True)
                return
        logger.debug(f"已写入 {len(batch)} 条成功记录到 '{self.success_file}'")

    async def _replace_success_store(self, entries: List[Dict[str, Any]]):
        tmp_path = f"{self.success_file}.tmp"
        async with aiofiles.open(tmp_path, 'w', encoding='utf-8') as f:
            await f.write(json.dumps(entries, ensure_ascii=False, indent=2))
        await aiofiles.os.replace(tmp_path, self.success_file)

    async def _quarantine_corrupt_store(self, error: Exception):
        stamp = utc_now().strftime("%Y%m%dT%H%M%S")
        backup = f"{self.success_file}.corrupt-{stamp}"
        await aiofiles.os.replace(self.success_file, backup)
        logger.error(f"成功记录文件 '{self.success_file}' 已损坏 ({error})，已另存为 '{backup}' 并重新开始。")

    async def _append_failure(self, result: ProcessingResult):
        line = json.dumps(failure_entry(result), ensure_ascii=False) + '\n'
        async with self._write_lock:
            try:
                await self._ensure_dir_exists()
                async with aiofiles.open(self.error_file, 'a', encoding='utf-8') as f:
                    await f.write(line)
            except OSError as e:
                logger.error(f"写入失败记录文件 '{self.error_file}' 失败: {e}", exc_info=True)
                return
        logger.debug(f"已写入失败记录: {result.record.key()}")
