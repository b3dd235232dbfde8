"""基于 urllib 的 HTTP 传输实现

注册中心、CI 构建站和发布站点的所有请求都经过 UrllibTransport。
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, BinaryIO

from fhircache import __version__
from fhircache.core.exceptions import NotFoundError, TransportError
from fhircache.utils.net import validate_url_scheme

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
USER_AGENT = f"fhircache/{__version__}"


@dataclass
class HttpResponse:
    """一次 HTTP 请求的结果"""

    url: str
    status: int
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def text(self) -> str:
        # 部分注册中心返回带 BOM 的 UTF-8
        return self.body.decode("utf-8-sig", errors="replace")

    def json(self) -> Any:
        return json.loads(self.text())


class UrllibTransport:
    """HttpTransport 的 urllib 实现"""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, user_agent: str = USER_AGENT) -> None:
        self.timeout = timeout
        self.user_agent = user_agent

    def _request(self, url: str, method: str = "GET", accept: str = "") -> urllib.request.Request:
        validate_url_scheme(url, context="HTTP 请求")
        headers = {"User-Agent": self.user_agent}
        if accept:
            headers["Accept"] = accept
        return urllib.request.Request(url, headers=headers, method=method)

    def get(self, url: str, *, accept: str = "application/json") -> HttpResponse:
        req = self._request(url, accept=accept)
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:  # nosec B310
                return HttpResponse(
                    url=url, status=resp.status, body=resp.read(),
                    headers=dict(resp.headers.items()),
                )
        except urllib.error.HTTPError as e:
            return HttpResponse(url=url, status=e.code, headers=dict(e.headers.items()))
        except (urllib.error.URLError, OSError) as e:
            raise TransportError(f"请求失败: {url} - {e}", url=url) from e

    def head(self, url: str) -> int:
        req = self._request(url, method="HEAD")
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:  # nosec B310
                return int(resp.status)
        except urllib.error.HTTPError as e:
            return e.code
        except (urllib.error.URLError, OSError) as e:
            raise TransportError(f"请求失败: {url} - {e}", url=url) from e

    @contextmanager
    def open_stream(self, url: str) -> Iterator[BinaryIO]:
        req = self._request(url, accept="application/gzip, application/octet-stream")
        try:
            resp = urllib.request.urlopen(req, timeout=self.timeout)  # nosec B310
        except urllib.error.HTTPError as e:
            if e.code == 404:
                raise NotFoundError(f"资源不存在: {url}", url=url, status=404) from e
            raise TransportError(f"下载失败: {url} - HTTP {e.code}", url=url, status=e.code) from e
        except (urllib.error.URLError, OSError) as e:
            raise TransportError(f"下载失败: {url} - {e}", url=url) from e
        try:
            yield resp
        finally:
            resp.close()
