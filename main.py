# main.py
"""
ClearBatch 主程序入口。

负责解析命令行参数、组装配置/网关/处理器并启动任务。
按 Ctrl+C 会协作式地停止处理：已发出的请求会等待完成，结果写盘后输出最终统计。
"""
import argparse
import asyncio
import os
import signal
import sys
from typing import List

from api_gateway import ApiGateway, MockGateway
from config import MAX_THREADS, MIN_THREADS, ProcessingMode, Settings, settings
from logging_config import configure_logger, logger, shutdown_logger
from processor import BatchProcessor
from record_source import RecordSource, SchemaError

EXIT_OK = 0
EXIT_SETUP_ERROR = 1
EXIT_INTERRUPTED = 130

DESCRIPTION = """\
从CSV文件读取记录，对每条记录调用一次远端API以解除 hold 或 discard fate。
支持多 worker 并发处理，并可在中断后断点续跑：成功文件中已有的记录会被自动跳过。

hold 模式的命名表头 (不区分大小写): DNTNO, HDATE, HTIME, PRDCD, RSHLD
discard 模式的命名表头: DNTNO, PRDCD, LOCCD (可选 HDATE, HTIME, RSHLD)
也接受三列的旧格式: 献血编号, 产品代码, hold 代码 / 位置代码。
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="clearbatch", description=DESCRIPTION, formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument("--file", required=True, help="输入CSV文件路径。")
    parser.add_argument("--clearcode", required=True, help="透传给远端API的 clear code (2-3 个字符)。")
    parser.add_argument("--threads", type=int, default=settings.THREAD_COUNT,
                        help=f"并发 worker 数量 ({MIN_THREADS}-{MAX_THREADS})，默认 {settings.THREAD_COUNT}。")
    parser.add_argument("--mode", choices=[m.value for m in ProcessingMode], default=settings.MODE,
                        help="处理模式，默认 hold。")
    parser.add_argument("--success-file", help="成功记录文件 (JSON 数组)，默认按模式命名。")
    parser.add_argument("--error-file", help="失败记录文件 (JSONL)，默认按模式命名。")
    parser.add_argument("--log-level", help="日志级别，例如 DEBUG / INFO。")
    parser.add_argument("--dry-run", action="store_true", help="不发出真实请求，使用模拟网关演练整个流程。")
    return parser


def build_settings(args: argparse.Namespace) -> Settings:
    """
    校验命令行参数并生成本次运行的配置。

    Raises:
        ValueError: 参数不合法。
    """
    if not os.path.isfile(args.file):
        raise ValueError(f"文件 '{args.file}' 不存在。")
    if not 2 <= len(args.clearcode) <= 3:
        raise ValueError("clear code 必须为 2 到 3 个字符。")

    config = settings.with_overrides(
        INPUT_FILE=args.file,
        CLEAR_CODE=args.clearcode,
        THREAD_COUNT=args.threads,
        MODE=args.mode,
        SUCCESS_FILE=args.success_file,
        ERROR_FILE=args.error_file,
        LOG_LEVEL=args.log_level,
    )
    config.validate()
    return config


def install_signal_handlers(cancel_event: asyncio.Event):
    """把 SIGINT/SIGTERM 转换为协作式取消信号。"""
    loop = asyncio.get_running_loop()

    def request_stop(*_):
        if not cancel_event.is_set():
            print("\n收到停止请求，正在优雅退出...", file=sys.stderr)
        loop.call_soon_threadsafe(cancel_event.set)

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_stop)
        except (NotImplementedError, RuntimeError):
            # Windows 的事件循环不支持 add_signal_handler。
            signal.signal(sig, request_stop)


async def main(config: Settings, dry_run: bool = False) -> int:
    """异步主函数，负责编排整个处理流程。"""
    logger.info("=" * 50)
    logger.info(f"ClearBatch 启动 (模式: {config.MODE}, worker: {config.THREAD_COUNT}, 文件: {config.INPUT_FILE})")

    cancel_event = asyncio.Event()
    install_signal_handlers(cancel_event)
    try:
        source = RecordSource(config.mode)
        try:
            records = await source.parse(config.INPUT_FILE)
        except (OSError, SchemaError) as e:
            logger.critical(f"读取输入文件失败: {e}")
            return EXIT_SETUP_ERROR

        if not records:
            logger.warning("CSV文件中没有找到有效记录。")
            return EXIT_OK

        gateway = MockGateway() if dry_run else ApiGateway(config)
        async with gateway:
            processor = BatchProcessor(config=config, gateway=gateway)
            await processor.run(records, cancel_event)
        return EXIT_INTERRUPTED if cancel_event.is_set() else EXIT_OK

    except Exception:
        logger.critical("处理器在顶层发生未捕获的严重错误，程序终止。", exc_info=True)
        return EXIT_SETUP_ERROR
    finally:
        logger.info("ClearBatch 运行结束")
        # 无论如何退出都关闭 logger
        shutdown_logger()


def cli(argv: List[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = build_settings(args)
    except ValueError as e:
        print(f"错误: {e}", file=sys.stderr)
        return EXIT_SETUP_ERROR

    configure_logger(config)
    try:
        return asyncio.run(main(config, dry_run=args.dry_run))
    except KeyboardInterrupt:
        # 在顶层捕获 Ctrl+C，以提供更友好的退出信息
        print("\n程序被用户手动中断。", file=sys.stderr)
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(cli())
