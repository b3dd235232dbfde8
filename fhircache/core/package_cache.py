"""FHIR 包缓存客户端

对外的统一入口。解析顺序:

  1. 指令分类（纯函数，无 I/O）
  2. 精确版本先查本地索引
  3. 无后缀指南 + 指定 FHIR 版本 → 目录搜索确定真实包名
  4. 按版本形态解析: 精确 / 范围 / latest → 注册中心；current / dev → CI 构建站
  5. 再查一次本地索引（解析出的精确版本可能已缓存）
  6. 依次尝试 tarball 地址和发布站点兜底地址，流式解压
  7. 更新索引，通知订阅者

用法:
    from fhircache.core.package_cache import PackageCache

    cache = PackageCache()
    entry = cache.resolve("hl7.fhir.r4.core#4.0.1")
    entry.directory          # ~/.fhir/packages/hl7.fhir.r4.core#4.0.1

    cache.resolve("hl7.fhir.uv.ig#current")
    cache.resolve_url("http://hl7.org/fhir/uv/subscriptions-backport/")
"""

from __future__ import annotations

import json
import logging
import re
import shutil
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any

from fhircache.core import releases, versions
from fhircache.core.classifier import classify_url, parse_directive
from fhircache.core.config import Config
from fhircache.core.directive import Directive, NameType, VersionType
from fhircache.core.exceptions import (
    DirectiveParseError,
    DownloadError,
    FhirCacheError,
    OperationCancelled,
    ResolutionError,
    ValidationError,
)
from fhircache.core.models import CacheRecord, PackageCacheEntry, PackageDetails
from fhircache.core.pkg import (
    CacheIndex,
    CiResolver,
    DescriptorFetcher,
    PackageFetcher,
    RegistryClient,
)
from fhircache.core.pkg.index import is_directive_name
from fhircache.core.protocols import HttpTransport
from fhircache.utils.http import UrllibTransport

logger = logging.getLogger(__name__)

ChangeListener = Callable[[], None]

_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")


class _OfflineDescriptors:
    """离线模式下的描述文件源，永远没有答案"""

    def fetch_manifest(self, url: str) -> None:
        return None

    def fetch_version_info(self, url: str) -> None:
        return None


class PackageCache:
    """FHIR 包解析、下载与本地缓存"""

    def __init__(
        self,
        config: Config | None = None,
        transport: HttpTransport | None = None,
        *,
        synchronize: bool = True,
    ) -> None:
        self.config = config or Config()
        self.transport = transport or UrllibTransport(timeout=self.config.http_timeout)
        self.index = CacheIndex(self.config.cache_path)
        self.descriptors = DescriptorFetcher(self.transport)
        self.registry = RegistryClient(
            self.transport,
            self.config.registry_urls(),
            max_workers=self.config.max_workers,
            publication_base=self.config.publication_url,
        )
        self.ci = CiResolver(
            self.transport,
            self.descriptors,
            ci_url=self.config.ci_url,
            qas_url=self.config.qas_url,
            release_tarball=self.config.ci_release_tarball,
            publication_base=self.config.publication_url,
        )
        self.fetcher = PackageFetcher(self.transport, self.config.cache_path)

        self._listeners: list[ChangeListener] = []
        self._package_locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

        if synchronize:
            self.index.synchronize()

    @property
    def registries(self) -> list[str]:
        return list(self.registry.registries)

    @property
    def packages_dir(self) -> Path:
        return self.index.packages_dir

    # ---- 变更通知 ----

    def subscribe(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("缓存变更回调执行失败")

    def _lock_for(self, directive: Directive) -> threading.Lock:
        key = directive.to_core_full().package_id.lower()
        with self._locks_guard:
            return self._package_locks.setdefault(key, threading.Lock())

    # ---- 解析 ----

    def parse(self, text: str) -> Directive:
        return parse_directive(text, publication_base=self.config.publication_url)

    def resolve(
        self,
        directive: str | Directive,
        *,
        fhir_release: str = "",
        cancel: threading.Event | None = None,
    ) -> PackageCacheEntry:
        """解析并确保包已在本地缓存

        参数:
            directive: 'name#version' 字符串或已分类的 Directive
            fhir_release: 只对无版本后缀的指南有效，如 'R4'，用于选择面向该版本的包
            cancel: 置位后在下一次网络请求前中止

        Raises:
            DirectiveParseError: 指令无法识别
            ResolutionError: 找不到精确版本或下载地址
            DownloadError: 所有下载地址均失败
            OperationCancelled: 调用方已取消
        """
        d = self.parse(directive) if isinstance(directive, str) else directive
        if fhir_release and d.name_type == NameType.GUIDE_WITHOUT_SUFFIX:
            d = d.with_facts(fhir_release=releases.to_literal(fhir_release) or fhir_release)

        with self._lock_for(d):
            return self._resolve_locked(d, cancel)

    def find_or_download(
        self,
        directive: str | Directive,
        *,
        fhir_release: str = "",
        cancel: threading.Event | None = None,
    ) -> PackageCacheEntry | None:
        """同 resolve()，失败时记录日志并返回 None"""
        try:
            return self.resolve(directive, fhir_release=fhir_release, cancel=cancel)
        except OperationCancelled:
            raise
        except FhirCacheError as e:
            logger.error("包解析失败: %s - %s", directive, e)
            return None

    def resolve_url(
        self, url: str, *, cancel: threading.Event | None = None,
    ) -> PackageCacheEntry:
        """按发布站点 / CI 构建站 URL 或 'HL7/<repo>' 仓库片段解析"""
        descriptors = _OfflineDescriptors() if self.config.offline else self.descriptors
        try:
            d = classify_url(
                url, descriptors,
                publication_base=self.config.publication_url,
                ci_base=self.config.ci_url,
            )
        except DirectiveParseError:
            d = None if self.config.offline else self.ci.resolve_url(url)
            if d is None:
                raise
        logger.info("URL 解析为指令: %s -> %s", url, d.directive)
        return self.resolve(d, cancel=cancel)

    def _hit(self, record: CacheRecord, requested: Directive) -> PackageCacheEntry:
        logger.info("缓存命中: %s -> %s", requested.directive, record.directive)
        return PackageCacheEntry.from_record(record)

    @staticmethod
    def _is_fresh(record: CacheRecord, d: Directive) -> bool:
        """缓存不早于 CI 构建时间；时间戳都是 yyyyMMddHHmmss，可直接按字符串比较"""
        return record.download_date_time >= d.build_date

    def _resolve_locked(
        self, d: Directive, cancel: threading.Event | None,
    ) -> PackageCacheEntry:
        # ---- 1. 精确版本先查缓存 ----
        if d.version_type in (VersionType.EXACT, VersionType.NON_SEMVER):
            record = self.index.find(d.equivalent_directives())
            if record:
                return self._hit(record, d)

        if self.config.offline:
            return self._resolve_offline(d)

        # ---- 2. 目录搜索确定真实包名 ----
        if d.name_type == NameType.GUIDE_WITHOUT_SUFFIX and d.fhir_release:
            d = self.registry.resolve_name_from_catalog(d, d.fhir_release)
            if d.version_type in (VersionType.EXACT, VersionType.NON_SEMVER):
                record = self.index.find(d.equivalent_directives())
                if record:
                    return self._hit(record, d)

        # ---- 3. 按版本形态解析 ----
        vt = d.version_type
        if vt in (VersionType.EXACT, VersionType.NON_SEMVER):
            resolved = self.registry.resolve_exact(d)
            if resolved is not None:
                d = resolved
                record = self.index.find(d.equivalent_directives())
                if record:
                    return self._hit(record, d)
            else:
                logger.info("注册中心中没有 %s，尝试发布站点", d.directive)

        elif vt in (VersionType.PARTIAL, VersionType.LATEST):
            resolver = (
                self.registry.resolve_range if vt == VersionType.PARTIAL
                else self.registry.resolve_latest
            )
            resolved = resolver(d)
            if resolved is None:
                raise ResolutionError(f"注册中心无法解析版本: {d.directive}", directive=d.directive)
            d = resolved
            record = self.index.find(d.equivalent_directives())
            if record:
                return self._hit(record, d)

        elif vt == VersionType.LOCAL:
            record = self.index.find(d.equivalent_directives())
            if record:
                return self._hit(record, d)
            d = d.evolve(package_version="current", version_type=VersionType.CI)
            resolved = self.ci.resolve(d)
            if resolved is None:
                raise ResolutionError(f"本地没有且 CI 构建站也没有: {d.package_id}", directive=d.directive)
            d = resolved
            record = self.index.find(d.equivalent_directives())
            if record and self._is_fresh(record, d):
                return self._hit(record, d)

        elif vt == VersionType.CI:
            resolved = self.ci.resolve(d)
            if resolved is not None:
                d = resolved
            record = self.index.find(d.equivalent_directives())
            if record and self._is_fresh(record, d):
                return self._hit(record, d)
            if resolved is None and not d.resolved_tarball_url:
                raise ResolutionError(f"CI 构建站没有该包: {d.directive}", directive=d.directive)

        else:
            raise ResolutionError(f"无法识别的版本形态: {d.directive}", directive=d.directive)

        # ---- 4. 下载 ----
        if not d.has_download_url:
            raise ResolutionError(f"找不到下载地址: {d.directive}", directive=d.directive)
        return self._materialize(d, cancel)

    def _resolve_offline(self, d: Directive) -> PackageCacheEntry:
        keys = d.equivalent_directives()
        record: CacheRecord | None = None
        if d.version_type in (VersionType.PARTIAL, VersionType.LATEST):
            ids = {key.split("#", 1)[0].lower() for key in keys}
            best = ""
            for candidate in self.index.snapshot():
                package_id, _, version = candidate.directive.partition("#")
                if package_id.lower() not in ids or version.lower().startswith(("current", "dev")):
                    continue
                if d.version_type == VersionType.PARTIAL and not versions.matches_range(
                    version, d.package_version,
                ):
                    continue
                if versions.is_first_higher_version(version, best):
                    best, record = version, candidate
            if record is not None and not record.directory.is_dir():
                record = None
        elif d.version_type == VersionType.LOCAL:
            current = d.evolve(package_version="current")
            record = self.index.find(keys + current.equivalent_directives())
        else:
            record = self.index.find(keys)

        if record is None:
            raise ResolutionError(f"离线模式下缓存中没有: {d.directive}", directive=d.directive)
        return self._hit(record, d)

    def _materialize(
        self, d: Directive, cancel: threading.Event | None,
    ) -> PackageCacheEntry:
        if cancel is not None and cancel.is_set():
            raise OperationCancelled(f"解析已取消: {d.directive}")

        directory = self.index.packages_dir / d.directive
        url = self.fetcher.download(d.download_urls(), directory, cancel=cancel)
        record = self.index.update(
            d.directive, directory, source_url=url, min_date=d.build_date,
        )
        if record is None:
            raise DownloadError(f"下载后目录不存在: {directory}", urls=[url])
        logger.info("已缓存: %s (%d 字节)", d.directive, record.size)
        self._notify()
        return PackageCacheEntry.from_record(record)

    # ---- 本地管理 ----

    def add_local_package(self, tgz_path: str | Path, alias: str = "") -> PackageCacheEntry:
        """把本地 tarball 加入缓存，目录名为 name#version（或 name#alias）"""
        path = Path(tgz_path)
        if not path.is_file():
            raise ValidationError(f"本地包不存在: {path}")
        details = self.fetcher.read_archive_details(path)
        if details is None or not details.name:
            raise ValidationError(f"不是有效的 FHIR 包（缺少 package/package.json）: {path}")
        version = alias or details.version
        if not version:
            raise ValidationError(f"包没有声明版本，需要指定别名: {path}")

        directive = f"{details.name}#{version}"
        if not is_directive_name(directive) or "/" in directive or "\\" in directive:
            raise ValidationError(f"非法的包目录名: {directive}")

        with self._lock_for(Directive(package_id=details.name)):
            directory = self.index.packages_dir / directive
            self.fetcher.extract_local(path, directory)
            record = self.index.update(directive, directory, local_source=str(path.resolve()))
        if record is None:
            raise DownloadError(f"本地包解压后目录不存在: {directory}", urls=[str(path)])
        logger.info("已加入本地包: %s <- %s", directive, path)
        self._notify()
        return PackageCacheEntry.from_record(record)

    def delete_package(self, directive: str) -> bool:
        """删除缓存目录和索引条目，不存在返回 False"""
        if not is_directive_name(directive) or "/" in directive or "\\" in directive:
            raise ValidationError(f"非法的包指令: {directive}")

        directory = self.index.packages_dir / directive
        known = self.index.get(directive) is not None
        existed = directory.exists()
        if existed:
            shutil.rmtree(directory)
        self.index.update(directive, directory)
        if existed or known:
            logger.info("已删除缓存包: %s", directive)
            self._notify()
            return True
        return False

    def synchronize(self) -> bool:
        modified = self.index.synchronize()
        if modified:
            self._notify()
        return modified

    def local_packages(self, name: str = "", exact: bool = False) -> list[PackageCacheEntry]:
        return [
            PackageCacheEntry.from_record(r) for r in self.index.list_records(name, exact)
        ]

    def _directory_of(self, entry: PackageCacheEntry | str) -> Path | None:
        if isinstance(entry, PackageCacheEntry):
            return entry.directory
        record = self.index.get(entry)
        return record.directory if record else None

    def get_manifest(self, entry: PackageCacheEntry | str) -> PackageDetails | None:
        """已缓存包的 package.json"""
        directory = self._directory_of(entry)
        if directory is None:
            return None
        return PackageDetails.load(directory)

    def get_indexed_contents(self, entry: PackageCacheEntry | str) -> dict[str, Any] | None:
        """已缓存包的 .index.json（资源清单），不存在返回 None"""
        directory = self._directory_of(entry)
        if directory is None:
            return None
        for path in (directory / "package" / ".index.json", directory / ".index.json"):
            if not path.is_file():
                continue
            text = path.read_text(encoding="utf-8-sig")
            try:
                data = json.loads(_TRAILING_COMMA_RE.sub(r"\1", text))
            except json.JSONDecodeError as e:
                logger.warning(".index.json 解析失败: %s - %s", path, e)
                return None
            return data if isinstance(data, dict) else None
        return None
