"""Gunicorn 生产配置

用法:
  gunicorn --config deploy/gunicorn.conf.py fhircache.web.app:app

索引锁只在进程内有效，多个 worker 共用同一缓存目录会互相覆盖 packages.ini，
因此默认单 worker 多线程。
"""

import os

# ---------- 网络 ----------
bind = os.getenv("GUNICORN_BIND", "0.0.0.0:8888")

# ---------- 并发 ----------
workers = 1
threads = int(os.getenv("GUNICORN_THREADS", "8"))
worker_class = "gthread"
# 大包（核心规范）下载可能超过一分钟
timeout = int(os.getenv("GUNICORN_TIMEOUT", "300"))

# ---------- 日志 ----------
accesslog = os.getenv("GUNICORN_ACCESS_LOG", "-")
errorlog = os.getenv("GUNICORN_ERROR_LOG", "-")
loglevel = os.getenv("GUNICORN_LOG_LEVEL", "info")

# ---------- 进程管理 ----------
graceful_timeout = 30
keepalive = 5


def post_worker_init(worker):  # noqa: ARG001
    """worker 启动后加载配置和日志，首次请求前完成索引同步"""
    from fhircache.core.config import DEFAULT_CONFIG_FILE, init_config
    from fhircache.services.container import get_container
    from fhircache.utils.logger import setup_logging

    cfg = init_config(os.getenv("FHIRCACHE_CONFIG", DEFAULT_CONFIG_FILE))
    setup_logging(
        level=os.getenv("FHIRCACHE_LOG_LEVEL", cfg.log_level),
        json_output=os.getenv("FHIRCACHE_LOG_JSON", "1" if cfg.log_json else "") == "1",
    )
    get_container().cache
