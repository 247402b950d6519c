# config.py
"""
ClearBatch 的中央配置文件 (类模式)。

所有默认值以 ClassVar 的形式声明在 `Settings` 上；命令行或测试通过
`Settings.with_overrides()` 得到一个带实例属性覆盖的新配置对象。
"""
from enum import Enum
from typing import Any, ClassVar, Tuple


class ProcessingMode(str, Enum):
    """一次运行只处理一种记录类型。"""
    HOLD = "hold"
    DISCARD = "discard"


# 每种模式对应的默认输出文件 (成功文件, 失败文件)。
DEFAULT_OUTPUT_FILES = {
    ProcessingMode.HOLD: ("Hold_Clear_Ok.json", "Hold_Clear_Errors.json"),
    ProcessingMode.DISCARD: ("Discard_Clear_Ok.json", "Discard_Clear_Errors.json"),
}

MIN_THREADS = 1
MAX_THREADS = 50


class Settings:
    """
    ClearBatch 的全部运行参数。
    """
    # --- 1. 运行模式与输入 ---
    # 处理模式: "hold" (解除 hold) 或 "discard" (解除 discard fate)。
    MODE: ClassVar[str] = ProcessingMode.HOLD.value

    # 输入的CSV文件路径。
    INPUT_FILE: ClassVar[str] = ""

    # 透传给远端API的 clear code (2-3 个字符，由命令行层校验)。
    CLEAR_CODE: ClassVar[str] = ""

    # 请求体中的 programId。
    PROGRAM_ID: ClassVar[str] = "PULS11"

    # --- 2. 文件路径配置 ---
    # 成功记录的 JSON 数组文件，用于断点续跑。为 None 时按模式取默认值。
    SUCCESS_FILE: ClassVar[str | None] = None

    # 失败记录的 JSONL 文件 (只追加)。为 None 时按模式取默认值。
    ERROR_FILE: ClassVar[str | None] = None

    # 日志文件的路径 (每行一个 JSON 对象)。
    LOG_FILE: ClassVar[str] = "logs/clearbatch.log"

    # --- 3. 性能配置 ---
    # 并发 worker 数量 (1-50)。
    THREAD_COUNT: ClassVar[int] = 1

    # 每累计多少条记录刷新一次进度行。
    PROGRESS_BATCH_SIZE: ClassVar[int] = 20

    # 成功记录累计到多少条时写盘。
    WRITE_BATCH_SIZE: ClassVar[int] = 100

    # 后台刷盘任务的间隔 (秒)。
    FLUSH_INTERVAL: ClassVar[float] = 5.0

    # --- 4. API 配置 ---
    API_BASE_URL: ClassVar[str] = ""
    API_HOLD_ENDPOINT: ClassVar[str] = "/api/holds/clear"
    API_DISCARD_ENDPOINT: ClassVar[str] = "/api/discards/clear"
    API_TIMEOUT: ClassVar[float] = 30

    # 三个固定的身份请求头: X-UserId, X-AppName, X-Environment。
    API_USER_ID: ClassVar[str] = ""
    API_APP_NAME: ClassVar[str] = "ClearBatch"
    API_ENVIRONMENT: ClassVar[str] = ""

    # 响应 status 字段中代表"已解除"的取值 (不区分大小写)。
    SUCCESS_STATUSES: ClassVar[Tuple[str, ...]] = ("Cleared",)

    # --- 5. 日志配置 ---
    # 日志级别，可选值: 'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'
    LOG_LEVEL: ClassVar[str] = "INFO"

    # 进度条输出。None 表示仅在终端 (TTY) 下显示。
    SHOW_PROGRESS: ClassVar[bool | None] = None

    def with_overrides(self, **overrides: Any) -> "Settings":
        """返回一个新的配置实例，`overrides` 中的键覆盖当前值。值为 None 的键被忽略。"""
        clone = Settings()
        clone.__dict__.update(self.__dict__)
        for key, value in overrides.items():
            if not hasattr(Settings, key):
                raise AttributeError(f"未知的配置项: {key}")
            if value is not None:
                setattr(clone, key, value)
        return clone

    @property
    def mode(self) -> ProcessingMode:
        return ProcessingMode(self.MODE)

    @property
    def success_file(self) -> str:
        return self.SUCCESS_FILE or DEFAULT_OUTPUT_FILES[self.mode][0]

    @property
    def error_file(self) -> str:
        return self.ERROR_FILE or DEFAULT_OUTPUT_FILES[self.mode][1]

    @property
    def endpoint(self) -> str:
        if self.mode is ProcessingMode.DISCARD:
            return self.API_DISCARD_ENDPOINT
        return self.API_HOLD_ENDPOINT

    def validate(self) -> None:
        """
        校验配置的取值范围。

        Raises:
            ValueError: 模式未知、线程数越界或批量大小非正数。
        """
        try:
            self.mode
        except ValueError:
            raise ValueError(f"未知的处理模式: {self.MODE!r}") from None
        if not MIN_THREADS <= self.THREAD_COUNT <= MAX_THREADS:
            raise ValueError(f"线程数必须在 {MIN_THREADS} 到 {MAX_THREADS} 之间，当前为 {self.THREAD_COUNT}")
        for name in ("PROGRESS_BATCH_SIZE", "WRITE_BATCH_SIZE"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} 必须为正整数")
        if self.FLUSH_INTERVAL <= 0:
            raise ValueError("FLUSH_INTERVAL 必须大于 0")
        if self.API_TIMEOUT <= 0:
            raise ValueError("API_TIMEOUT 必须大于 0")


# 创建一个全局唯一的配置实例，供其他模块导入。
settings = Settings()
