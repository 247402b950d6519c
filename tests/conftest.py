"""
Pytest configuration and shared fixtures for ClearBatch tests.
"""
import asyncio
import json
from pathlib import Path
from typing import Callable, Iterable, List

import pytest

from config import Settings
from records import HoldRecord, ProcessingResult


def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "unit: fast tests with no network access")
    config.addinivalue_line("markers", "integration: tests that start a local HTTP server")


@pytest.fixture
def make_settings(tmp_path: Path) -> Callable[..., Settings]:
    """Factory for a Settings instance whose output files live under tmp_path."""
    def factory(**overrides) -> Settings:
        defaults = dict(
            SUCCESS_FILE=str(tmp_path / "ok.json"),
            ERROR_FILE=str(tmp_path / "errors.json"),
            LOG_FILE=str(tmp_path / "logs" / "test.log"),
            CLEAR_CODE="CC",
            THREAD_COUNT=4,
            FLUSH_INTERVAL=0.05,
            SHOW_PROGRESS=False,
        )
        defaults.update(overrides)
        return Settings().with_overrides(**defaults)
    return factory


@pytest.fixture
def write_csv(tmp_path: Path) -> Callable[[str, Iterable[str]], str]:
    """Write lines to a CSV file under tmp_path and return its path."""
    def writer(name: str, lines: Iterable[str]) -> str:
        path = tmp_path / name
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return str(path)
    return writer


def hold_records(count: int, start: int = 1) -> List[HoldRecord]:
    return [HoldRecord(f"G095625{i:06d}A", "PROD", "H01") for i in range(start, start + count)]


def read_success_store(path: str) -> list:
    return json.loads(Path(path).read_text(encoding="utf-8"))


def read_failure_store(path: str) -> list:
    p = Path(path)
    if not p.exists():
        return []
    return [json.loads(line) for line in p.read_text(encoding="utf-8").splitlines() if line.strip()]


class FakeGateway:
    """
    In-memory gateway used by processor tests.

    Args:
        fail_keys: record keys that produce a Failed result
        raise_keys: record keys whose submit raises
        delay: seconds to sleep per call
        on_call: callback invoked with the running call count after each call
    """

    def __init__(self, fail_keys=(), raise_keys=(), delay: float = 0.0, on_call=None):
        self.fail_keys = set(fail_keys)
        self.raise_keys = set(raise_keys)
        self.delay = delay
        self.on_call = on_call
        self.calls: List[str] = []
        self.clear_codes: List[str] = []

    async def submit(self, record, clear_code):
        key = record.key()
        self.calls.append(key)
        self.clear_codes.append(clear_code)
        await asyncio.sleep(self.delay)
        if self.on_call is not None:
            self.on_call(len(self.calls))
        if key in self.raise_keys:
            raise RuntimeError("boom")
        if key in self.fail_keys:
            return ProcessingResult.failure(record, "Hold not found")
        return ProcessingResult.success(record)
