"""包下载与解压

HTTP 响应流 → gzip → tar 直接解压，不落地中间 tarball。
先解压到缓存根目录下的临时目录，成功后整体移入 packages/<directive>，
失败时删除临时目录，不会留下半解压的包目录。
"""

from __future__ import annotations

import logging
import os
import shutil
import tarfile
import tempfile
import threading
import zlib
from pathlib import Path
from typing import BinaryIO

from fhircache.core.exceptions import (
    DownloadError,
    NotFoundError,
    OperationCancelled,
    TransportError,
)
from fhircache.core.models import PackageDetails
from fhircache.core.protocols import HttpTransport

logger = logging.getLogger(__name__)

_EXTRACT_ERRORS = (tarfile.TarError, OSError, EOFError, zlib.error)


class PackageFetcher:
    """按候选地址顺序下载并解压包"""

    def __init__(self, transport: HttpTransport, cache_root: Path) -> None:
        self.transport = transport
        self.cache_root = Path(cache_root)

    def _staging_dir(self) -> Path:
        self.cache_root.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix=".staging-", dir=str(self.cache_root)))

    @staticmethod
    def _install(staging: Path, directory: Path) -> None:
        """临时目录整体替换目标目录"""
        directory.parent.mkdir(parents=True, exist_ok=True)
        if directory.exists():
            shutil.rmtree(directory)
        os.replace(staging, directory)

    @staticmethod
    def _extract_stream(stream: BinaryIO, target: Path) -> None:
        with tarfile.open(fileobj=stream, mode="r|gz") as tf:
            tf.extractall(path=str(target), filter="data")  # noqa: S202

    def download(
        self,
        urls: list[str],
        directory: Path,
        *,
        cancel: threading.Event | None = None,
    ) -> str:
        """依次尝试 urls，返回成功的地址

        Raises:
            OperationCancelled: 调用方已取消
            DownloadError: 全部地址失败
        """
        for url in urls:
            if cancel is not None and cancel.is_set():
                raise OperationCancelled(f"下载已取消: {directory.name}")
            if self.download_one(url, directory):
                return url
        raise DownloadError(f"所有下载地址均失败: {directory.name}", urls=list(urls))

    def download_one(self, url: str, directory: Path) -> bool:
        staging = self._staging_dir()
        try:
            logger.info("下载: %s -> %s", url, directory.name)
            with self.transport.open_stream(url) as stream:
                self._extract_stream(stream, staging)
            self._install(staging, directory)
            return True
        except NotFoundError:
            logger.debug("下载地址不存在: %s", url)
            return False
        except TransportError as e:
            logger.warning("下载失败: %s - %s", url, e)
            return False
        except _EXTRACT_ERRORS as e:
            logger.warning("解压失败: %s - %s", url, e)
            return False
        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)

    # ---- 本地 tarball ----

    @staticmethod
    def read_archive_details(tgz_path: Path) -> PackageDetails | None:
        """不解压整个包，只读取 package/package.json"""
        try:
            with tarfile.open(str(tgz_path), mode="r:gz") as tf:
                for member in tf:
                    if member.isfile() and member.name.lstrip("./") == "package/package.json":
                        handle = tf.extractfile(member)
                        if handle is None:
                            return None
                        return PackageDetails.loads(handle.read().decode("utf-8-sig"))
        except _EXTRACT_ERRORS as e:
            logger.warning("无法读取本地包: %s - %s", tgz_path, e)
        return None

    def extract_local(self, tgz_path: Path, directory: Path) -> None:
        staging = self._staging_dir()
        try:
            with open(tgz_path, "rb") as f:
                self._extract_stream(f, staging)
            self._install(staging, directory)
        except _EXTRACT_ERRORS as e:
            raise DownloadError(f"本地包解压失败: {tgz_path} - {e}", urls=[str(tgz_path)]) from e
        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)
