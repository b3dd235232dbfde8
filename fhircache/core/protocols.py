"""领域协议定义

解析器各层之间的接口契约（Protocol）。
HTTP 传输和远端描述文件读取都以协议注入，测试时用内存实现替换。
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from typing import TYPE_CHECKING, BinaryIO, Protocol

if TYPE_CHECKING:
    from fhircache.core.models import PackageDetails, VersionInfo
    from fhircache.utils.http import HttpResponse


# =========================================================================
# HTTP 传输协议
# =========================================================================

class HttpTransport(Protocol):
    """HTTP 传输协议

    get/head 不因 HTTP 状态码抛异常，由调用方判断 status；
    只有连接失败、超时等传输层错误抛 TransportError。
    open_stream 用于流式下载，404 抛 NotFoundError，其余失败抛 TransportError。
    """

    def get(self, url: str, *, accept: str = "application/json") -> HttpResponse:
        """GET 请求，返回完整响应体"""
        ...

    def head(self, url: str) -> int:
        """HEAD 请求，返回状态码"""
        ...

    def open_stream(self, url: str) -> AbstractContextManager[BinaryIO]:
        """打开响应体流，退出上下文时关闭连接"""
        ...


# =========================================================================
# 远端描述文件协议
# =========================================================================

class DescriptorSource(Protocol):
    """远端包描述文件读取协议

    URL 分类逻辑只依赖这两个方法，本身不做任何 I/O。
    读取失败（404、格式错误、网络异常）一律返回 None。
    """

    def fetch_manifest(self, url: str) -> PackageDetails | None:
        """读取 package.manifest.json / package.json"""
        ...

    def fetch_version_info(self, url: str) -> VersionInfo | None:
        """读取 version.info"""
        ...
