# logging_config.py
"""
专用的日志系统配置文件。

此模块创建一个全局共享的 logger 实例。
其他所有模块都应从这里导入 `logger` 对象，以确保日志配置的全局统一。
控制台输出为可读文本，日志文件为每行一个 JSON 对象，便于后续检索。
文件写入由 `QueueListener` 的后台线程完成，worker 协程中的日志调用只是入队，不会阻塞事件循环。
在调用 `configure_logger()` 之前 logger 只挂一个 NullHandler，作为库或在测试中使用时保持安静。
"""
import sys
import os
import logging
import queue
from logging.handlers import QueueHandler, QueueListener

from pythonjsonlogger.json import JsonFormatter

LOGGER_NAME = 'ClearBatch'
CONSOLE_FORMAT = '%(asctime)s - %(name)-15s - %(levelname)-8s - %(message)s'
FILE_FORMAT = '%(asctime)s %(name)s %(levelname)s %(module)s %(funcName)s %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# 全局唯一的 logger 实例。
logger = logging.getLogger(LOGGER_NAME)
logger.addHandler(logging.NullHandler())

_listener: QueueListener | None = None


def configure_logger(config) -> logging.Logger:
    """
    为全局 logger 配置控制台和文件输出。

    Args:
        config: 提供 LOG_LEVEL 和 LOG_FILE 的配置对象。

    Returns:
        logging.Logger: 配置完成的全局 logger。
    """
    logger.setLevel(getattr(logging, str(config.LOG_LEVEL).upper(), logging.INFO))
    logger.propagate = False

    # 防止重复调用时叠加 handler。
    shutdown_logger()
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    # 控制台输出走 stderr，避免与 stdout 上的最终统计混在一起。
    console_handler = logging.StreamHandler(stream=sys.stderr)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(console_handler)

    try:
        log_dir = os.path.dirname(config.LOG_FILE)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        file_handler = logging.FileHandler(config.LOG_FILE, mode='a', encoding='utf-8')
        file_handler.setFormatter(JsonFormatter(FILE_FORMAT, datefmt=DATE_FORMAT, json_ensure_ascii=False))
    except OSError as e:
        # 在日志系统完全可用前，使用 print 输出到 stderr 以确保错误可见。
        print(f"CRITICAL: 无法配置日志文件处理器: {e}", file=sys.stderr)
        return logger

    global _listener
    log_queue: queue.SimpleQueue = queue.SimpleQueue()
    logger.addHandler(QueueHandler(log_queue))
    _listener = QueueListener(log_queue, file_handler, respect_handler_level=True)
    _listener.start()
    return logger


def shutdown_logger():
    """停止后台写文件线程 (先写完队列中的记录)，然后刷新并关闭所有 handler。"""
    global _listener
    if _listener is not None:
        _listener.stop()
        for handler in _listener.handlers:
            handler.close()
        _listener = None
    for handler in list(logger.handlers):
        handler.flush()
        handler.close()
