# utils.py
"""
通用工具模块。

存放与具体业务逻辑无关、可在框架内复用的纯函数：CSV 行切分与日期时间的解析/格式化。
"""
from datetime import datetime
from typing import List

DATE_LENGTH = 8
MIN_TIME_LENGTH = 6
MAX_TIME_LENGTH = 9


def split_csv_line(line: str, delimiter: str = ",") -> List[str]:
    """
    按分隔符切分一行文本，双引号内的分隔符不参与切分。

    引号本身不会出现在结果中；每遇到一个引号就切换一次"引号内"状态。

    Example:
        >>> split_csv_line('a,"b,c",d')
        ['a', 'b,c', 'd']
    """
    parts: List[str] = []
    current: List[str] = []
    in_quotes = False
    for char in line:
        if char == '"':
            in_quotes = not in_quotes
        elif char == delimiter and not in_quotes:
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
    parts.append("".join(current))
    return parts


def combine_date_time(date_text: str | None, time_text: str | None) -> datetime | None:
    """
    将 YYYYMMDD 日期和 HHMMSS[fff] 时间合并为一个时间戳。

    时间字段为 6 到 9 位数字，第 7 位起为秒的小数部分 (只保留到毫秒)。
    任一字段缺失、长度不符、含非数字字符或数值越界时返回 None，不抛出异常。

    Example:
        >>> combine_date_time("20240813", "142724591")
        datetime.datetime(2024, 8, 13, 14, 27, 24, 591000)
    """
    if not date_text or not time_text:
        return None
    date_text, time_text = date_text.strip(), time_text.strip()
    if len(date_text) != DATE_LENGTH or not date_text.isdigit():
        return None
    if not MIN_TIME_LENGTH <= len(time_text) <= MAX_TIME_LENGTH or not time_text.isdigit():
        return None

    fraction = time_text[MIN_TIME_LENGTH:MIN_TIME_LENGTH + 3]
    milliseconds = int(fraction.ljust(3, "0")) if fraction else 0
    try:
        return datetime(
            int(date_text[0:4]), int(date_text[4:6]), int(date_text[6:8]),
            int(time_text[0:2]), int(time_text[2:4]), int(time_text[4:6]),
            milliseconds * 1000,
        )
    except ValueError:
        return None


def format_api_datetime(value: datetime) -> str:
    """按远端API约定格式化为 `yyyy-MM-ddTHH:mm:ss.fff`，与区域设置无关。"""
    return (
        f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
        f"T{value.hour:02d}:{value.minute:02d}:{value.second:02d}"
        f".{value.microsecond // 1000:03d}"
    )
