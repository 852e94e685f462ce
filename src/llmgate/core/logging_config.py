"""llmgate 日志配置

structlog 经标准库 logging 输出，只接管 "llmgate" 包 logger，
不改动宿主应用的根 logger。调用上下文（operation / provider /
configuration_id）通过 contextvars 绑定，同一次调用内的 adapter
与 HTTP 层日志自动携带。
"""

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog

PACKAGE_LOGGER = "llmgate"

_HANDLER_NAME = "llmgate"


def setup_logging(level: str | None = None, fmt: str | None = None) -> logging.Logger:
    """初始化 llmgate 包的 structlog 输出

    Args:
        level: 包 logger 级别；为空时读取 LLMGATE_LOG_LEVEL（默认 INFO）
        fmt: "json" 或 "dev"；为空时读取 LLMGATE_LOG_FORMAT（默认 dev）

    Returns:
        已配置的 "llmgate" 包 logger。重复调用只替换 handler，不会叠加。
    """
    log_format = fmt or os.environ.get("LLMGATE_LOG_FORMAT", "dev")
    log_level = level or os.environ.get("LLMGATE_LOG_LEVEL", "INFO")

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer(ensure_ascii=False)
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=shared_processors,
    )
    handler = logging.StreamHandler()
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(formatter)

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for existing in [h for h in package_logger.handlers if h.get_name() == _HANDLER_NAME]:
        package_logger.removeHandler(existing)
    package_logger.addHandler(handler)
    package_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    package_logger.propagate = False
    return package_logger


@contextmanager
def call_context(**context: Any) -> Iterator[None]:
    """在当前调用期间绑定日志上下文，退出时恢复

    值为 None 的键不绑定。
    """
    with structlog.contextvars.bound_contextvars(**{k: v for k, v in context.items() if v is not None}):
        yield
