"""structlog 配置模块

dev 模式：pretty print 可读输出
json 模式：结构化 JSON 输出，每行一条事件
日志经标准库 logging 写到 stderr，stdout 留给 ConsoleSink。
级别与格式来自 OrchestratorConfig（ITERLOOP_LOG_LEVEL / ITERLOOP_LOG_FORMAT 或命令行）。
"""

import logging
import sys
from typing import TextIO

import structlog

LOG_FORMATS = ("dev", "json")

# 第三方库只在 DEBUG 时输出自身的调试日志
_NOISY_LOGGERS = ("aiosqlite", "asyncio")


def resolve_level(log_level: str) -> int:
    """级别名转 logging 常量，未知名称回退 INFO"""
    return logging.getLevelNamesMapping().get(log_level.strip().upper(), logging.INFO)


def _shared_processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _renderer(log_format: str, stream: TextIO) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer(ensure_ascii=False)
    colors = hasattr(stream, "isatty") and stream.isatty()
    return structlog.dev.ConsoleRenderer(colors=colors)


def setup_logging(
    log_format: str = "dev",
    log_level: str = "INFO",
    stream: TextIO | None = None,
) -> None:
    """初始化 structlog 与标准库 logging

    Args:
        log_format: "dev" 或 "json"，其他值按 "dev" 处理
        log_level: 标准库级别名（DEBUG / INFO / WARNING ...）
        stream: 输出流，默认 stderr
    """
    stream = stream or sys.stderr
    level = resolve_level(log_level)
    shared_processors = _shared_processors()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=_renderer(log_format, stream),
        foreign_pre_chain=shared_processors,
    )
    handler = logging.StreamHandler(stream)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level if level <= logging.DEBUG else logging.WARNING)
