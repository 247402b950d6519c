# records.py
"""
记录与处理结果的数据模型。

两种输入记录 (`HoldRecord`, `DiscardRecord`) 都是不可变值对象，
共享同一组能力：`key()`、`is_valid()` 与 `identity()`，由 `Record` 协议描述。
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Protocol, Union, runtime_checkable

# 产品代码的通配值，表示对该献血编号下的所有产品生效。
ALL_PRODUCTS = "ALL"
PRODUCT_CODE_LENGTH = 4
KEY_SEPARATOR = "|"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@runtime_checkable
class Record(Protocol):
    """两种记录类型共享的能力集合。gateway、账本与处理器只依赖这个协议。"""

    @property
    def donation_number(self) -> str: ...

    @property
    def product_code(self) -> str: ...

    @property
    def placed_at(self) -> datetime | None: ...

    def key(self) -> str: ...

    def is_valid(self) -> bool: ...

    def identity(self) -> Dict[str, Any]: ...


@dataclass(frozen=True)
class HoldRecord:
    """一条待解除的 hold。"""
    donation_number: str
    product_code: str
    hold_code: str
    placed_at: datetime | None = None

    def key(self) -> str:
        return KEY_SEPARATOR.join((self.donation_number, self.product_code, self.hold_code))

    def is_valid(self) -> bool:
        if not self.donation_number or not self.product_code:
            return False
        if len(self.product_code) != PRODUCT_CODE_LENGTH and self.product_code.upper() != ALL_PRODUCTS:
            return False
        return len(self.hold_code) > 1

    def identity(self) -> Dict[str, Any]:
        return {
            "donationNumber": self.donation_number,
            "productCode": self.product_code,
            "holdCode": self.hold_code,
        }


@dataclass(frozen=True)
class DiscardRecord:
    """一条待解除的 discard fate。hold_code 仅透传给 API，不参与主键。"""
    donation_number: str
    product_code: str
    location_code: str
    placed_at: datetime | None = None
    hold_code: str | None = None

    def key(self) -> str:
        return KEY_SEPARATOR.join((self.donation_number, self.product_code, self.location_code))

    def is_valid(self) -> bool:
        return bool(self.donation_number and self.product_code and self.location_code)

    def identity(self) -> Dict[str, Any]:
        return {
            "donationNumber": self.donation_number,
            "productCode": self.product_code,
            "locationCode": self.location_code,
        }


AnyRecord = Union[HoldRecord, DiscardRecord]


class ProcessingStatus(str, Enum):
    SUCCESS = "Success"
    FAILED = "Failed"
    SKIPPED = "Skipped"


@dataclass(frozen=True)
class ProcessingResult:
    """
    单条记录的处理结果，创建后不可变。

    Attributes:
        record: 对应的输入记录。
        status: 处理状态。
        error_message: 失败原因；成功或跳过时为 None。
        processed_at: 结果产生的 UTC 时间。
    """
    record: Record
    status: ProcessingStatus
    error_message: str | None = None
    processed_at: datetime = field(default_factory=utc_now)

    @classmethod
    def success(cls, record: Record) -> "ProcessingResult":
        return cls(record, ProcessingStatus.SUCCESS)

    @classmethod
    def failure(cls, record: Record, error_message: str) -> "ProcessingResult":
        return cls(record, ProcessingStatus.FAILED, error_message)

    @classmethod
    def skipped(cls, record: Record) -> "ProcessingResult":
        return cls(record, ProcessingStatus.SKIPPED)

    @property
    def is_success(self) -> bool:
        return self.status is ProcessingStatus.SUCCESS

    @property
    def has_error(self) -> bool:
        return bool(self.error_message)
