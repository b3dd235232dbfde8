"""包缓存 Web API（基于 Flask）

提供：已缓存包列表、包元数据 / 资源清单查询、解析下载、删除、索引同步。

启动方式: fhircache serve --port 8888
生产部署: gunicorn -c deploy/gunicorn.conf.py fhircache.web.app:app
"""

from __future__ import annotations

import logging

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from fhircache.core.exceptions import (
    DirectiveParseError,
    DownloadError,
    FhirCacheError,
    OperationCancelled,
    ResolutionError,
    ValidationError,
)
from fhircache.web.blueprints.packages_bp import packages_bp

logger = logging.getLogger(__name__)

# 业务异常 → HTTP 状态码，未列出的按 500 处理
_STATUS_BY_ERROR: tuple[tuple[type[FhirCacheError], int], ...] = (
    (DirectiveParseError, 400),
    (ValidationError, 400),
    (ResolutionError, 404),
    (OperationCancelled, 409),
    (DownloadError, 502),
)

app = Flask(__name__)
app.register_blueprint(packages_bp)


# =========================================================================
# 全局 JSON 错误处理
# =========================================================================


@app.errorhandler(HTTPException)
def handle_http_exception(exc):
    """将所有 HTTP 异常统一返回 JSON"""
    return jsonify(error=exc.description), exc.code


@app.errorhandler(FhirCacheError)
def handle_cache_error(exc: FhirCacheError):
    """业务异常带上错误码返回"""
    status = next((code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)), 500)
    if status >= 500:
        logger.warning("请求处理失败: [%s] %s", exc.code, exc)
    return jsonify(error=str(exc), code=exc.code), status


@app.errorhandler(Exception)
def handle_generic_exception(exc):  # noqa: ARG001
    """捕获未处理异常，返回 500 JSON"""
    logger.exception("未处理的异常")
    return jsonify(error="服务器内部错误"), 500


@app.route("/api/health")
def health():
    from fhircache import __version__
    return jsonify(status="ok", version=__version__)


def run_server(port: int = 8888, debug: bool = False, host: str = "127.0.0.1") -> None:
    logger.info("fhircache Web API 已启动: http://%s:%d", host, port)
    app.run(host=host, port=port, debug=debug)
