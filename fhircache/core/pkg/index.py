"""本地缓存索引

<cache-root>/packages/ 下每个 `<name>#<version>` 目录对应一条 CacheRecord，
索引持久化到 packages/packages.ini：

    [cache]          version = 3
    [urls]           directive = 下载来源 URL
    [local]          directive = 本地导入的 tarball 路径
    [packages]       directive = 下载时间 (yyyyMMddHHmmss)
    [package-sizes]  directive = 目录字节数

所有持久化修改都在同一把进程级锁内完成“整读-修改-整写”，写入为原子替换。
"""

from __future__ import annotations

import configparser
import io
import logging
import os
import threading
from collections.abc import Iterable
from pathlib import Path

from fhircache.core import releases
from fhircache.core.classifier import classify_name
from fhircache.core.models import (
    CacheRecord,
    PackageDetails,
    normalize_build_date,
    utc_timestamp,
)
from fhircache.utils.yaml_io import atomic_write

logger = logging.getLogger(__name__)

INI_FILE = "packages.ini"
INDEX_VERSION = "3"
SECTIONS = ("cache", "urls", "local", "packages", "package-sizes")

# 同一进程内所有 CacheIndex 实例共享，多个客户端可能指向同一缓存目录
_INI_LOCK = threading.RLock()


def directory_size(path: Path) -> int:
    """目录下所有文件的字节数之和"""
    total = 0
    for root, _dirs, files in os.walk(path):
        for name in files:
            try:
                total += os.path.getsize(os.path.join(root, name))
            except OSError:
                continue
    return total


def is_directive_name(name: str) -> bool:
    """目录名是否形如 name#version"""
    parts = name.split("#")
    return len(parts) == 2 and all(parts)


class CacheIndex:
    """packages.ini 与内存记录的维护者"""

    def __init__(self, cache_root: Path) -> None:
        self.cache_root = Path(cache_root)
        self.packages_dir = self.cache_root / "packages"
        self.ini_path = self.packages_dir / INI_FILE
        self.records: dict[str, CacheRecord] = {}
        self.versions_by_name: dict[str, list[str]] = {}
        self.ensure()

    # ---- INI 读写 ----

    @staticmethod
    def _new_parser() -> configparser.ConfigParser:
        parser = configparser.ConfigParser(interpolation=None, delimiters=("=",))
        parser.optionxform = str  # type: ignore[assignment,method-assign]
        return parser

    def _empty_parser(self) -> configparser.ConfigParser:
        parser = self._new_parser()
        for section in SECTIONS:
            parser.add_section(section)
        parser.set("cache", "version", INDEX_VERSION)
        return parser

    def _read(self) -> configparser.ConfigParser:
        parser = self._new_parser()
        if self.ini_path.exists():
            try:
                parser.read(self.ini_path, encoding="utf-8")
            except configparser.Error as e:
                logger.warning("缓存索引损坏，按空索引重建: %s - %s", self.ini_path, e)
                parser = self._new_parser()
        for section in SECTIONS:
            if not parser.has_section(section):
                parser.add_section(section)
        if not parser.has_option("cache", "version"):
            parser.set("cache", "version", INDEX_VERSION)
        return parser

    def _write(self, parser: configparser.ConfigParser) -> None:
        buf = io.StringIO()
        parser.write(buf)
        atomic_write(self.ini_path, buf.getvalue())

    def ensure(self) -> None:
        """创建 packages/ 目录和空索引文件（已存在则不动）"""
        with _INI_LOCK:
            self.packages_dir.mkdir(parents=True, exist_ok=True)
            if not self.ini_path.exists():
                self._write(self._empty_parser())
                logger.info("已创建缓存索引: %s", self.ini_path)

    # ---- 内存记录 ----

    def _remember(self, record: CacheRecord) -> None:
        self.records[record.directive] = record
        versions = self.versions_by_name.setdefault(record.name, [])
        if record.version not in versions:
            versions.append(record.version)

    def _forget(self, directive: str) -> None:
        record = self.records.pop(directive, None)
        if record is None:
            return
        versions = self.versions_by_name.get(record.name, [])
        if record.version in versions:
            versions.remove(record.version)
        if not versions:
            self.versions_by_name.pop(record.name, None)

    def _build_record(
        self, directive: str, directory: Path, download_date: str = "", size: int = -1,
    ) -> CacheRecord:
        """按目录内容构造记录；没有 package.json 时名字和版本取自目录名"""
        details = PackageDetails.load(directory)
        dir_name, _, dir_version = directive.partition("#")
        name = (details.name if details else "") or dir_name
        version = (details.version if details else "") or dir_version
        fhir_sequence = releases.to_literal(details.fhir_version) if details else ""
        if not fhir_sequence:
            _, fhir_sequence = classify_name(name)
        return CacheRecord(
            directive=directive,
            directory=directory,
            name=name,
            version=version,
            fhir_sequence=fhir_sequence,
            download_date_time=(
                download_date
                or normalize_build_date(details.date if details else "")
                or utc_timestamp()
            ),
            size=size if size >= 0 else directory_size(directory),
            details=details,
        )

    @staticmethod
    def _remove_entry(parser: configparser.ConfigParser, directive: str) -> bool:
        removed = False
        for section in ("packages", "package-sizes", "urls", "local"):
            removed = parser.remove_option(section, directive) or removed
        return removed

    # ---- 同步 / 更新 ----

    def synchronize(self) -> bool:
        """对齐索引与目录树，返回是否修改了索引文件

        - 索引中有、目录不存在（或键名不是 name#version）的条目删除
        - 目录存在但索引中没有的包补录
        - 未索引且缺少 package.json 的目录不补录；已索引的照常载入内存
        """
        with _INI_LOCK:
            parser = self._read()
            modified = False

            for directive in list(parser.options("packages")):
                directory = self.packages_dir / directive
                if not is_directive_name(directive) or not directory.is_dir():
                    self._remove_entry(parser, directive)
                    self._forget(directive)
                    modified = True
                    logger.info("索引条目已失效，移除: %s", directive)
                    continue
                size = parser.getint("package-sizes", directive, fallback=-1)
                record = self._build_record(
                    directive, directory,
                    download_date=parser.get("packages", directive, fallback=""),
                    size=size,
                )
                self._remember(record)

            for child in sorted(self.packages_dir.iterdir()):
                if not child.is_dir() or not is_directive_name(child.name):
                    continue
                if parser.has_option("packages", child.name):
                    continue
                record = self._build_record(child.name, child)
                if record.details is None:
                    logger.warning("目录缺少 package.json，未加入索引: %s", child)
                    continue
                parser.set("packages", record.directive, record.download_date_time)
                parser.set("package-sizes", record.directive, str(record.size))
                self._remember(record)
                modified = True
                logger.info("发现未索引的包目录，已补录: %s", child.name)

            if modified:
                self._write(parser)
            return modified

    def update(
        self,
        directive: str,
        directory: Path | None = None,
        *,
        source_url: str = "",
        local_source: str = "",
        min_date: str = "",
    ) -> CacheRecord | None:
        """按目录当前状态更新一条索引；目录不存在即删除该条目

        min_date: 下载时间的下限（CI 构建时间），保证刚下载的包不会被判定为过期
        """
        directory = directory or self.packages_dir / directive
        with _INI_LOCK:
            parser = self._read()
            if not directory.is_dir():
                if self._remove_entry(parser, directive):
                    self._write(parser)
                self._forget(directive)
                return None

            record = self._build_record(directive, directory, download_date=utc_timestamp())
            if min_date and record.download_date_time < min_date:
                record.download_date_time = min_date
            parser.set("packages", directive, record.download_date_time)
            parser.set("package-sizes", directive, str(record.size))
            if source_url:
                parser.set("urls", directive, source_url)
            if local_source:
                parser.set("local", directive, local_source)
            self._write(parser)
            self._forget(directive)
            self._remember(record)
            return record

    # ---- 查询 ----

    def get(self, directive: str) -> CacheRecord | None:
        return self.records.get(directive)

    def find(self, directives: Iterable[str]) -> CacheRecord | None:
        """按顺序返回第一条目录仍然存在的记录；目录已被外部删除的顺手清理"""
        for directive in directives:
            record = self.records.get(directive)
            if record is None:
                continue
            if record.directory.is_dir():
                return record
            logger.info("缓存目录已被删除，清理索引: %s", directive)
            self.update(directive)
        return None

    def snapshot(self) -> list[CacheRecord]:
        """当前全部记录的副本，可在其他线程更新索引时安全遍历"""
        with _INI_LOCK:
            return list(self.records.values())

    def list_records(self, name: str = "", exact: bool = False) -> list[CacheRecord]:
        wanted = name.lower()
        result = []
        for record in self.snapshot():
            candidate = record.name.lower()
            if wanted and (candidate != wanted if exact else wanted not in candidate):
                continue
            result.append(record)
        return sorted(result, key=lambda r: r.directive)

    def versions_of(self, name: str) -> list[str]:
        with _INI_LOCK:
            return list(self.versions_by_name.get(name, []))

    def source_of(self, directive: str) -> str:
        """下载来源 URL 或本地 tarball 路径"""
        parser = self._read()
        return parser.get("urls", directive, fallback="") or parser.get("local", directive, fallback="")
