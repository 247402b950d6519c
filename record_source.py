# record_source.py
"""
CSV 记录读取模块。

逐行读取输入文件，识别表头格式并把每一行转换为一条经过校验的记录。
单行的格式错误只会被计数并跳过；只有表头缺少必需列 (或文件无法打开) 才会中止整次读取。
"""
import re
from dataclasses import dataclass
from typing import Dict, List, Sequence

import aiofiles

from config import ProcessingMode
from logging_config import logger
from records import AnyRecord, DiscardRecord, HoldRecord
from utils import combine_date_time, split_csv_line

# 献血编号以 "G" 加数字开头，这样的单元格一定不是列名。
DONATION_PREFIX = re.compile(r"^G\d")
HEADER_TOKEN = re.compile(r"^[A-Za-z][A-Za-z _]*$")

LEGACY_FIELD_COUNT = 3

# 命名表头布局：必需列与无表头时的默认列顺序。
NAMED_COLUMNS = {
    ProcessingMode.HOLD: ("DNTNO", "HDATE", "HTIME", "PRDCD", "RSHLD"),
    ProcessingMode.DISCARD: ("DNTNO", "PRDCD", "LOCCD", "HDATE", "HTIME", "RSHLD"),
}
REQUIRED_COLUMNS = {
    ProcessingMode.HOLD: frozenset(NAMED_COLUMNS[ProcessingMode.HOLD]),
    ProcessingMode.DISCARD: frozenset(("DNTNO", "PRDCD", "LOCCD")),
}

LAYOUT_LEGACY = "legacy"
LAYOUT_NAMED = "named"


class SchemaError(ValueError):
    """显式表头缺少必需列，整个文件无法按约定解析。"""


@dataclass
class ParseStats:
    valid: int = 0
    invalid: int = 0
    header_detected: bool = False
    layout: str = LAYOUT_LEGACY


def looks_like_header(cells: Sequence[str]) -> bool:
    """所有单元格都是非数字的字母 token，且不以献血编号前缀开头时视为表头。"""
    cleaned = [cell.strip() for cell in cells]
    if not cleaned or not all(cleaned):
        return False
    return all(HEADER_TOKEN.match(cell) and not DONATION_PREFIX.match(cell) for cell in cleaned)


class RecordSource:
    """
    将分隔文本文件解析为 `HoldRecord` 或 `DiscardRecord` 列表。

    Args:
        mode: 处理模式，决定记录类型与列布局。
    """

    def __init__(self, mode: ProcessingMode | str = ProcessingMode.HOLD):
        self.mode = ProcessingMode(mode)
        self.stats = ParseStats()
        self._columns: Dict[str, int] = {}
        self._field_count = LEGACY_FIELD_COUNT

    async def parse(self, path: str) -> List[AnyRecord]:
        """
        异步读取并解析整个文件。

        Args:
            path: 输入文件路径。

        Returns:
            List[AnyRecord]: 按文件顺序排列的有效记录。

        Raises:
            OSError: 文件无法打开。
            SchemaError: 显式表头缺少必需列。
        """
        self.stats = ParseStats()
        records: List[AnyRecord] = []
        line_number = 0
        first_line_seen = False

        logger.info(f"正在读取CSV文件: '{path}' (模式: {self.mode.value})")
        async with aiofiles.open(path, 'r', encoding='utf-8-sig') as f:
            async for raw_line in f:
                line_number += 1
                line = raw_line.rstrip('\r\n')
                if not line.strip():
                    continue

                if not first_line_seen:
                    first_line_seen = True
                    cells = split_csv_line(line)
                    if looks_like_header(cells):
                        self._configure_from_header(cells)
                        logger.info(f"检测到表头 ({self.stats.layout} 布局)，跳过第一行。")
                        continue
                    self._configure_without_header(cells)

                record = self._parse_line(line, line_number)
                if record is None:
                    self.stats.invalid += 1
                else:
                    records.append(record)
                    self.stats.valid += 1

        if not first_line_seen:
            logger.warning(f"CSV文件为空: '{path}'")
        logger.info(f"CSV解析完成。有效记录: {self.stats.valid}，无效记录: {self.stats.invalid}")
        return records

    def _configure_from_header(self, cells: Sequence[str]):
        self.stats.header_detected = True
        names = [cell.strip().upper() for cell in cells]
        required = REQUIRED_COLUMNS[self.mode]

        if required.issubset(names):
            self.stats.layout = LAYOUT_NAMED
            self._columns = {}
            for index, name in enumerate(names):
                self._columns.setdefault(name, index)
            self._field_count = len(names)
        elif len(names) == LEGACY_FIELD_COUNT:
            self._use_legacy_layout()
        else:
            missing = ", ".join(sorted(required.difference(names)))
            raise SchemaError(f"表头缺少必需列: {missing}")

    def _configure_without_header(self, cells: Sequence[str]):
        if len(cells) == LEGACY_FIELD_COUNT:
            self._use_legacy_layout()
        else:
            self.stats.layout = LAYOUT_NAMED
            default_order = NAMED_COLUMNS[self.mode]
            self._columns = {name: index for index, name in enumerate(default_order)}
            self._field_count = len(default_order)

    def _use_legacy_layout(self):
        self.stats.layout = LAYOUT_LEGACY
        third = "RSHLD" if self.mode is ProcessingMode.HOLD else "LOCCD"
        self._columns = {"DNTNO": 0, "PRDCD": 1, third: 2}
        self._field_count = LEGACY_FIELD_COUNT

    def _cell(self, cells: Sequence[str], name: str) -> str | None:
        index = self._columns.get(name)
        if index is None:
            return None
        return cells[index].strip()

    def _parse_line(self, line: str, line_number: int) -> AnyRecord | None:
        cells = split_csv_line(line)
        if len(cells) != self._field_count:
            logger.warning(f"第 {line_number} 行: 期望 {self._field_count} 个字段，实际 {len(cells)} 个，已跳过。")
            return None

        placed_at = combine_date_time(self._cell(cells, "HDATE"), self._cell(cells, "HTIME"))
        record: AnyRecord
        if self.mode is ProcessingMode.HOLD:
            record = HoldRecord(
                donation_number=self._cell(cells, "DNTNO") or "",
                product_code=self._cell(cells, "PRDCD") or "",
                hold_code=self._cell(cells, "RSHLD") or "",
                placed_at=placed_at,
            )
        else:
            record = DiscardRecord(
                donation_number=self._cell(cells, "DNTNO") or "",
                product_code=self._cell(cells, "PRDCD") or "",
                location_code=self._cell(cells, "LOCCD") or "",
                placed_at=placed_at,
                hold_code=self._cell(cells, "RSHLD") or None,
            )

        if not record.is_valid():
            logger.warning(f"第 {line_number} 行: 记录格式无效，已跳过: {record.identity()}")
            return None
        return record
