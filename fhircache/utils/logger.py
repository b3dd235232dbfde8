"""fhircache 日志配置

CLI / Web 入口统一调用 setup_logging()，库代码只通过 logging.getLogger(__name__) 输出。
支持人类可读文本与结构化 JSON 两种格式。
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

TEXT_FORMAT = "%(asctime)s [%(levelname)-7s] %(name)s: %(message)s"

# 第三方库默认只输出 WARNING 以上，避免 urllib3 / werkzeug 刷屏
_NOISY_LOGGERS = ("urllib3", "werkzeug")


class JSONFormatter(logging.Formatter):
    """结构化 JSON 日志格式器，便于日志平台采集

    输出字段: timestamp, level, logger, message, module, function, line,
    以及可选的 exception 和通过 extra= 传入的 directive。
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        directive = getattr(record, "directive", None)
        if directive:
            log_entry["directive"] = directive
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, ensure_ascii=False)


def setup_logging(level: str = "INFO", json_output: bool = False) -> None:
    """配置根日志器，输出到 stderr

    参数:
        level: 日志级别字符串（DEBUG, INFO, WARNING, ERROR, CRITICAL），无法识别时按 INFO
        json_output: True 时使用 JSONFormatter，否则使用文本格式

    重复调用会先清理已有 handlers，不会产生重复输出。
    """
    reset_logging()
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stderr)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def reset_logging() -> None:
    """移除根日志器上的全部 handlers（测试或重新配置时使用）"""
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
