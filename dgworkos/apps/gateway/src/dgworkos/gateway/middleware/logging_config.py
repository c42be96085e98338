"""日志配置 -- structlog + 标准库 logging 共用一套处理器链

DGWORKOS_LOG_FORMAT=json 输出单行 JSON（生产），否则使用控制台渲染。
pywebpush 底层的 urllib3、aiosqlite 等第三方 logger 默认压到 WARNING，
避免每次推送 / 每条 SQL 都刷屏。
"""

import logging
import os

import structlog
from fastapi import FastAPI

SERVICE_NAME = "dgworkos-gateway"

# 第三方 logger -> 最低级别
NOISY_LOGGERS: dict[str, int] = {
    "aiosqlite": logging.WARNING,
    "urllib3": logging.WARNING,
    "pywebpush": logging.WARNING,
    "uvicorn.access": logging.WARNING,
}


def _add_service(
    _logger: object, _method: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def resolve_log_level(value: str | None) -> int:
    """级别名 -> logging 常量；无法识别时为 INFO"""
    if not value:
        return logging.INFO
    level = logging.getLevelName(value.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging(
    log_format: str | None = None,
    log_level: str | None = None,
) -> None:
    """初始化 structlog 与标准库 logging

    Args:
        log_format: "json" 或 "dev"，默认取 DGWORKOS_LOG_FORMAT
        log_level: 级别名，默认取 DGWORKOS_LOG_LEVEL（INFO）
    """
    log_format = (log_format or os.environ.get("DGWORKOS_LOG_FORMAT", "dev")).lower()
    level = resolve_log_level(log_level or os.environ.get("DGWORKOS_LOG_LEVEL"))

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        _add_service,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    renderer: structlog.types.Processor
    if log_format == "json":
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer(ensure_ascii=False)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=renderer,
            foreign_pre_chain=shared_processors,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name, floor in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(max(floor, level))


def setup_logfire(app: FastAPI) -> bool:
    """LOGFIRE_SEND_TO_LOGFIRE=true 时接入 Logfire 并 instrument 当前 app

    Returns:
        是否启用成功；失败只记日志，服务照常启动
    """
    if os.environ.get("LOGFIRE_SEND_TO_LOGFIRE", "false").lower() != "true":
        return False
    try:
        import logfire

        logfire.configure(service_name=SERVICE_NAME)
        logfire.instrument_fastapi(app)
    except Exception as e:
        structlog.get_logger().warning("logfire_init_failed", error=str(e))
        return False
    return True
