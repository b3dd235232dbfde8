"""测试公共夹具：内存 HTTP 传输 + FHIR 包 tarball 构造"""

from __future__ import annotations

import io
import json
import tarfile
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import pytest

from fhircache.core.config import Config
from fhircache.core.exceptions import NotFoundError, TransportError
from fhircache.utils.http import HttpResponse


def make_tgz(
    name: str,
    version: str,
    *,
    fhir_versions: list[str] | None = None,
    date: str = "",
    extra: dict[str, bytes] | None = None,
    index: dict[str, Any] | None = None,
) -> bytes:
    """构造一个最小 FHIR 包：package/package.json + package/.index.json"""
    manifest: dict[str, Any] = {"name": name, "version": version}
    if fhir_versions is not None:
        manifest["fhirVersions"] = fhir_versions
    if date:
        manifest["date"] = date
    files: dict[str, bytes] = {
        "package/package.json": json.dumps(manifest).encode("utf-8"),
        "package/.index.json": json.dumps(
            index or {"index-version": 1, "files": []},
        ).encode("utf-8"),
    }
    files.update(extra or {})

    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tf:
        for path, data in files.items():
            info = tarfile.TarInfo(path)
            info.size = len(data)
            tf.addfile(info, io.BytesIO(data))
    return buf.getvalue()


class FakeTransport:
    """HttpTransport 的内存实现

    routes: URL → HttpResponse / bytes / dict / list / 状态码 / TransportError
    未登记的 URL 一律 404。calls 记录 (方法, URL)。
    """

    def __init__(self) -> None:
        self.routes: dict[str, Any] = {}
        self.calls: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def add(self, url: str, value: Any) -> None:
        self.routes[url] = value

    def add_json(self, url: str, data: Any) -> None:
        self.routes[url] = json.dumps(data).encode("utf-8")

    def _record(self, method: str, url: str) -> Any:
        with self._lock:
            self.calls.append((method, url))
        value = self.routes.get(url, 404)
        if isinstance(value, TransportError):
            raise value
        return value

    def urls(self, method: str = "") -> list[str]:
        return [u for m, u in self.calls if not method or m == method]

    def get(self, url: str, *, accept: str = "application/json") -> HttpResponse:
        value = self._record("GET", url)
        if isinstance(value, HttpResponse):
            return value
        if isinstance(value, int):
            return HttpResponse(url=url, status=value)
        if isinstance(value, (dict, list)):
            return HttpResponse(url=url, status=200, body=json.dumps(value).encode("utf-8"))
        if isinstance(value, str):
            return HttpResponse(url=url, status=200, body=value.encode("utf-8"))
        return HttpResponse(url=url, status=200, body=value)

    def head(self, url: str) -> int:
        value = self._record("HEAD", url)
        if isinstance(value, int):
            return value
        if isinstance(value, HttpResponse):
            return value.status
        return 200

    @contextmanager
    def open_stream(self, url: str) -> Iterator[io.BytesIO]:
        value = self._record("STREAM", url)
        if isinstance(value, int):
            if value == 404:
                raise NotFoundError(f"资源不存在: {url}", url=url, status=404)
            raise TransportError(f"下载失败: {url}", url=url, status=value)
        body = value.body if isinstance(value, HttpResponse) else value
        yield io.BytesIO(body)


@pytest.fixture()
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture()
def config(tmp_path: Path) -> Config:
    """只使用一个假注册中心的配置"""
    return Config(
        cache_dir=str(tmp_path / "fhir"),
        registries=["http://reg.test/"],
        use_default_registries=False,
    )


@pytest.fixture()
def tgz_factory(tmp_path: Path) -> Callable[..., Path]:
    """把 make_tgz 的结果写到 tmp_path 下，返回文件路径"""

    def _factory(name: str, version: str, filename: str = "", **kwargs: Any) -> Path:
        path = tmp_path / (filename or f"{name}-{version}.tgz")
        path.write_bytes(make_tgz(name, version, **kwargs))
        return path

    return _factory


def registry_manifest(
    name: str, versions: list[str], latest: str = "", registry: str = "http://reg.test/",
) -> dict[str, Any]:
    """注册中心清单 JSON，tarball 指向 {registry}{name}/{version}"""
    return {
        "_id": name,
        "name": name,
        "dist-tags": {"latest": latest} if latest else {},
        "versions": {
            v: {
                "name": name,
                "version": v,
                "fhirVersion": "4.0.1",
                "dist": {
                    "tarball": f"{registry}{name}/{v}",
                    "shasum": f"sha-{v}",
                },
            }
            for v in versions
        },
    }
