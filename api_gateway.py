# api_gateway.py
"""
远端API网关。

每条记录发送一次 HTTP POST，并把传输层、HTTP 状态与反序列化的各种结果统一映射为
`ProcessingResult`。除任务取消外，`submit()` 从不抛出异常。
"""
import asyncio
import json
import random
from typing import Any, Dict, Iterable, Protocol

import aiohttp

from logging_config import logger
from records import DiscardRecord, HoldRecord, ProcessingResult, Record
from utils import format_api_datetime

DEFAULT_PROGRAM_ID = "PULS11"
UNKNOWN_API_ERROR = "Unknown API error"
REQUEST_CANCELLED = "Request cancelled"


class Gateway(Protocol):
    """worker 池所依赖的最小接口。"""

    async def submit(self, record: Record, clear_code: str) -> ProcessingResult: ...


def build_request_body(record: Record, clear_code: str, program_id: str = DEFAULT_PROGRAM_ID) -> Dict[str, Any]:
    """
    按远端服务约定构造请求体 (camelCase 字段)。

    Args:
        record: 待处理记录。
        clear_code: 调用方提供的 clear code，原样透传。
        program_id: 请求体中的 programId。

    Returns:
        Dict[str, Any]: 可直接 JSON 序列化的请求体。
    """
    placed_at = format_api_datetime(record.placed_at) if record.placed_at else None
    if isinstance(record, HoldRecord):
        return {
            "unitNumber": record.donation_number.upper().strip(),
            "productCode": record.product_code.upper().strip(),
            "holdCode": record.hold_code,
            "clearCode": clear_code,
            "programId": program_id,
            "dateTimePlaced": placed_at,
            "incidentNumber": "",
            "clearConstituents": True,
            "clearType": "Direct",
            "calledFromDT": False,
            "calledFromValidation": False,
        }
    if isinstance(record, DiscardRecord):
        return {
            "unitNumber": record.donation_number.upper().strip(),
            "productCode": record.product_code.upper().strip(),
            "locationCode": record.location_code,
            "holdCode": record.hold_code or "",
            "clearCode": clear_code,
            "programId": program_id,
            "dateTimePlaced": placed_at,
        }
    raise TypeError(f"不支持的记录类型: {type(record).__name__}")


def interpret_response(payload: Any, success_statuses: Iterable[str]) -> str | None:
    """
    解读一个已解码的 2xx 响应体。

    Returns:
        str | None: 成功时返回 None，否则返回错误描述。

    Raises:
        ValueError: 响应体不是 JSON 对象。
    """
    if not isinstance(payload, dict):
        raise ValueError(f"expected a JSON object, got {type(payload).__name__}")

    status = payload.get("status")
    wanted = {s.lower() for s in success_statuses}
    if isinstance(status, str) and status.lower() in wanted:
        return None
    if status is None and payload.get("success") is True:
        return None

    message = payload.get("errorMessage") or payload.get("message") or UNKNOWN_API_ERROR
    # errorNum / errorCode 可能是任意取值 (包括枚举范围外的自定义码)，只做原样回显。
    code = payload.get("errorNum", payload.get("errorCode"))
    if code not in (None, ""):
        message = f"{message} (code: {code})"
    if status is not None:
        message = f"{message} [status: {status}]"
    return str(message)


class ApiGateway:
    """
    基于 aiohttp 的API客户端。

    必须作为异步上下文管理器使用，以便共享并最终关闭同一个 `ClientSession`。
    """

    def __init__(self, config):
        self.config = config
        self.url = config.API_BASE_URL.rstrip('/') + '/' + config.endpoint.lstrip('/')
        self.headers = {
            "X-UserId": config.API_USER_ID,
            "X-AppName": config.API_APP_NAME,
            "X-Environment": config.API_ENVIRONMENT,
            "Accept": "application/json",
        }
        self.timeout = aiohttp.ClientTimeout(total=config.API_TIMEOUT)
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> "ApiGateway":
        self._session = aiohttp.ClientSession(headers=self.headers, timeout=self.timeout)
        return self

    async def __aexit__(self, *exc_info):
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def submit(self, record: Record, clear_code: str) -> ProcessingResult:
        """
        为一条记录调用远端API，所有失败都被转换为 Failed 结果。

        唯一的例外是任务取消：`asyncio.CancelledError` 记录日志后原样抛出，
        由调用方登记 "Request cancelled" 并停止继续取记录。
        """
        key = record.key()
        try:
            if self._session is None:
                raise RuntimeError("ApiGateway 未在 'async with' 中使用")
            body = build_request_body(record, clear_code, self.config.PROGRAM_ID)
            logger.debug(f"提交记录 '{key}' 到 {self.url}")

            async with self._session.post(self.url, json=body) as response:
                raw = await response.read()
                charset = response.charset or "utf-8"
                if not 200 <= response.status < 300:
                    reason = f" {response.reason}" if response.reason else ""
                    message = f"HTTP {response.status}{reason}: {raw.decode(charset, errors='replace')}"
                    logger.error(f"记录 '{key}' 的HTTP请求失败: {message}")
                    return ProcessingResult.failure(record, message)

            try:
                text = raw.decode(charset)
                if not text.strip():
                    logger.warning(f"记录 '{key}' 的API响应为空")
                    return ProcessingResult.failure(record, UNKNOWN_API_ERROR)
                error = interpret_response(json.loads(text), self.config.SUCCESS_STATUSES)
            except (ValueError, LookupError) as e:
                # UnicodeDecodeError 是 ValueError 的子类；LookupError 对应无法识别的 charset。
                logger.error(f"记录 '{key}' 的响应无法解析: {e}")
                return ProcessingResult.failure(record, f"Deserialization error: {e}")

            if error is None:
                logger.debug(f"记录 '{key}' 处理成功")
                return ProcessingResult.success(record)
            logger.warning(f"API对记录 '{key}' 返回失败: {error}")
            return ProcessingResult.failure(record, error)

        except asyncio.TimeoutError:
            logger.error(f"记录 '{key}' 的请求超时")
            return ProcessingResult.failure(record, "Request timeout")
        except asyncio.CancelledError:
            logger.warning(f"记录 '{key}' 的请求被取消")
            raise
        except aiohttp.ClientError as e:
            logger.error(f"记录 '{key}' 的HTTP传输失败: {e!r}")
            return ProcessingResult.failure(record, f"Transport error: {e}")
        except Exception as e:
            logger.error(f"处理记录 '{key}' 时发生意外错误", exc_info=True)
            return ProcessingResult.failure(record, f"Unexpected error: {e}")


class MockGateway:
    """
    不发出任何网络请求的演练网关 (`--dry-run`)。

    Args:
        success_rate: 返回成功结果的概率。
        min_delay: 最短模拟延迟 (秒)。
        max_delay: 最长模拟延迟 (秒)。
    """

    ERROR_MESSAGES = (
        "Hold not found",
        "Donation already processed",
        "Invalid product code",
        "Service temporarily unavailable",
    )

    def __init__(self, success_rate: float = 0.95, min_delay: float = 0.05, max_delay: float = 0.2,
                 rng: random.Random | None = None):
        self.success_rate = success_rate
        self.min_delay = min_delay
        self.max_delay = max_delay
        self._rng = rng or random.Random()

    async def __aenter__(self) -> "MockGateway":
        return self

    async def __aexit__(self, *exc_info):
        return None

    async def submit(self, record: Record, clear_code: str) -> ProcessingResult:
        await asyncio.sleep(self._rng.uniform(self.min_delay, self.max_delay))
        if self._rng.random() < self.success_rate:
            return ProcessingResult.success(record)
        message = self._rng.choice(self.ERROR_MESSAGES)
        logger.debug(f"[dry-run] 记录 '{record.key()}' 模拟失败: {message}")
        return ProcessingResult.failure(record, message)
