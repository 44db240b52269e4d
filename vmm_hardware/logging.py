"""
Loguru 配置模块 - 统一管理项目的日志记录

此模块提供了基于 Loguru 的日志配置，支持：
- 控制台和可选的文件日志输出
- 日志轮转
- 上下文绑定（编辑会话、设备索引）
- 文档编解码耗时记录
"""

import functools
import logging as std_logging
import sys
import time
from typing import Any, Callable, List

from loguru import logger

from .config import Config

# 默认日志格式
DEFAULT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS ZZ}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)

# 简化的生产环境格式
PRODUCTION_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS ZZ} | "
    "{level: <8} | "
    "{name}:{function}:{line} | "
    "{message}"
)

# 控制台格式（带颜色）
CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan> | "
    "<level>{message}</level>"
)


class LoggingManager:
    """日志系统管理器"""

    def __init__(self, config: Config):
        """
        初始化日志管理器

        Args:
            config: 配置对象
        """
        self.config = config
        self._handler_ids: List[int] = []

    def setup_logging(self) -> None:
        """设置 Loguru 日志配置"""
        # 移除默认处理器
        logger.remove()

        self._add_console_handler()
        self._add_file_handler()
        self._configure_third_party_loggers()
        self._setup_exception_handler()

    def _add_console_handler(self) -> None:
        """添加控制台日志处理器"""
        is_debug = self.config.logging.level in ("DEBUG", "TRACE")
        console_format = CONSOLE_FORMAT if is_debug else PRODUCTION_FORMAT

        handler_id = logger.add(
            sys.stderr,
            format=console_format,
            level=self.config.logging.level,
            colorize=True,
            backtrace=is_debug,
            diagnose=is_debug,
            catch=True,
        )
        self._handler_ids.append(handler_id)

    def _add_file_handler(self) -> None:
        """添加文件日志处理器（仅在配置了日志文件时）"""
        if not self.config.logging.file:
            return

        handler_id = logger.add(
            self.config.logging.file,
            format=DEFAULT_FORMAT if self.config.logging.level == "DEBUG" else PRODUCTION_FORMAT,
            level=self.config.logging.level,
            rotation=self.config.logging.rotation,
            retention=self.config.logging.retention,
            backtrace=False,
            diagnose=False,
            enqueue=True,
            catch=True,
        )
        self._handler_ids.append(handler_id)

    def _configure_third_party_loggers(self) -> None:
        """配置第三方库的日志级别"""
        is_debug = self.config.logging.level == "DEBUG"
        for logger_name in ("asyncio",):
            std_logging.getLogger(logger_name).setLevel(
                std_logging.INFO if is_debug else std_logging.WARNING
            )

    def _setup_exception_handler(self) -> None:
        """设置全局异常处理器"""
        def handle_exception(exc_type, exc_value, traceback):
            logger.opt(exception=(exc_type, exc_value, traceback)).error(
                "Uncaught exception: {}: {}",
                exc_type.__name__,
                exc_value,
            )

        sys.excepthook = handle_exception

    def cleanup(self) -> None:
        """清理日志处理器"""
        for handler_id in self._handler_ids:
            try:
                logger.remove(handler_id)
            except ValueError:
                # 处理器已被移除
                pass
        self._handler_ids.clear()
        sys.excepthook = sys.__excepthook__


def get_logger(name: str) -> Any:
    """
    获取带有模块名称绑定的 logger 实例

    Args:
        name: 模块名称，通常是 __name__
    """
    return logger.bind(name=name)


def configure_logging(config: Config) -> LoggingManager:
    """
    配置项目日志系统

    Returns:
        日志管理器实例
    """
    logging_manager = LoggingManager(config)
    logging_manager.setup_logging()
    return logging_manager


class LogContext:
    """日志上下文管理器，用于绑定结构化数据到日志记录"""

    def __init__(self, **context_data):
        self.context_data = context_data
        self.bound_logger = None

    def __enter__(self):
        self.bound_logger = logger.bind(**self.context_data)
        return self.bound_logger

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.bound_logger = None


def log_performance(threshold_ms: float = 1000.0, level: str = "DEBUG"):
    """
    性能监控装饰器，记录函数执行时间

    Args:
        threshold_ms: 执行时间阈值（毫秒），超过此值会记录警告
        level: 日志级别
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            func_logger = get_logger(func.__module__)
            start_time = time.perf_counter()

            try:
                result = func(*args, **kwargs)
            except Exception as e:
                duration_ms = (time.perf_counter() - start_time) * 1000
                func_logger.debug(
                    "{}() failed after {:.2f}ms with {}: {}",
                    func.__name__,
                    duration_ms,
                    type(e).__name__,
                    str(e),
                )
                raise

            duration_ms = (time.perf_counter() - start_time) * 1000
            if duration_ms > threshold_ms:
                func_logger.warning(
                    "{}() took {:.2f}ms (threshold: {:.2f}ms)",
                    func.__name__,
                    duration_ms,
                    threshold_ms,
                )
            else:
                func_logger.log(level, "{}() took {:.2f}ms", func.__name__, duration_ms)
            return result

        return wrapper
    return decorator
