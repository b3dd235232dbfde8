"""数据模型

所有远端文档和本地缓存记录的数据类集中定义在此，
各解析器 / 索引 / CLI / Web 层共享，避免循环依赖。

- 注册中心: PackageVersionInfo, RegistryManifest, CatalogEntry
- CI 构建站: QasRecord, VersionInfo
- 本地缓存: PackageDetails, CacheRecord, PackageCacheEntry
"""

from __future__ import annotations

import configparser
import email.utils
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from fhircache.core import versions

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"
_TIMESTAMP_RE = re.compile(r"^\d{14}$")


def utc_timestamp() -> str:
    """当前 UTC 时间，yyyyMMddHHmmss"""
    return datetime.now(timezone.utc).strftime(TIMESTAMP_FORMAT)


def normalize_build_date(value: str) -> str:
    """把各处出现的日期写法统一为 yyyyMMddHHmmss（UTC），无法解析返回空串

    支持: 已是 14 位时间戳、ISO 8601、RFC 2822（CI 构建站的 date 字段多一个逗号）。
    """
    value = (value or "").strip()
    if not value:
        return ""
    if _TIMESTAMP_RE.match(value):
        return value

    parsed: datetime | None = None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = email.utils.parsedate_to_datetime(value.replace(",", " "))
        except (TypeError, ValueError, IndexError):
            parsed = None
    if parsed is None:
        logger.debug("无法识别的日期格式: %s", value)
        return ""
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.strftime(TIMESTAMP_FORMAT)


def _ci_get(data: dict[str, Any], key: str, default: Any = "") -> Any:
    """大小写不敏感地取 JSON 字段（目录服务可能返回 PascalCase）"""
    if key in data:
        return data[key]
    lowered = key.lower()
    for k, v in data.items():
        if k.lower() == lowered:
            return v
    return default


# =========================================================================
# 注册中心
# =========================================================================


@dataclass
class PackageVersionInfo:
    """注册中心清单中的单个版本"""

    name: str
    version: str
    date: str = ""
    description: str = ""
    url: str = ""
    fhir_version: str = ""
    kind: str = ""
    tarball: str = ""
    shasum: str = ""

    @classmethod
    def from_dict(cls, version: str, data: dict[str, Any]) -> PackageVersionInfo:
        dist = data.get("dist") or {}
        return cls(
            name=str(data.get("name", "")),
            version=str(data.get("version", version)),
            date=str(data.get("date", "") or ""),
            description=str(data.get("description", "") or ""),
            url=str(data.get("url", "") or ""),
            fhir_version=str(data.get("fhirVersion", "") or ""),
            kind=str(data.get("kind", "") or ""),
            tarball=str(dist.get("tarball", "") or ""),
            shasum=str(dist.get("shasum", "") or ""),
        )


@dataclass
class RegistryManifest:
    """某个注册中心对某个包的清单（版本列表 + dist-tags）"""

    registry: str
    name: str
    description: str = ""
    dist_tags: dict[str, str] = field(default_factory=dict)
    versions: dict[str, PackageVersionInfo] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any], registry: str = "") -> RegistryManifest:
        raw_versions = data.get("versions") or {}
        return cls(
            registry=registry,
            name=str(data.get("name") or data.get("_id") or ""),
            description=str(data.get("description", "") or ""),
            dist_tags={
                str(k): str(v) for k, v in (data.get("dist-tags") or {}).items()
            },
            versions={
                str(v): PackageVersionInfo.from_dict(str(v), info or {})
                for v, info in raw_versions.items()
            },
        )

    @property
    def latest(self) -> str:
        return self.dist_tags.get("latest", "")

    def has_version(self, version: str) -> bool:
        return version in self.versions

    def highest_version(self, version_range: str = "") -> str:
        """已知版本中最高的一个；传入 '3.1.x' 时只在 3.1 范围内比较"""
        return versions.highest_version(self.versions.keys(), version_range)


@dataclass
class CatalogEntry:
    """目录搜索结果中的一个包"""

    name: str
    description: str = ""
    fhir_version: str = ""
    canonical: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CatalogEntry:
        return cls(
            name=str(_ci_get(data, "name") or ""),
            description=str(_ci_get(data, "description") or ""),
            fhir_version=str(_ci_get(data, "fhirVersion") or ""),
            canonical=str(_ci_get(data, "canonical") or ""),
        )


# =========================================================================
# CI 构建站
# =========================================================================


@dataclass
class QasRecord:
    """CI 构建站 qas.json 中的一条构建记录"""

    package_id: str
    url: str = ""
    name: str = ""
    title: str = ""
    description: str = ""
    status: str = ""
    guide_version: str = ""
    date: str = ""
    date_iso: str = ""
    errs: int = 0
    warnings: int = 0
    hints: int = 0
    fhir_version: str = ""
    tool: str = ""
    repository_url: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QasRecord:
        def _int(key: str) -> int:
            try:
                return int(data.get(key) or 0)
            except (TypeError, ValueError):
                return 0

        return cls(
            package_id=str(data.get("package-id", "") or ""),
            url=str(data.get("url", "") or ""),
            name=str(data.get("name", "") or ""),
            title=str(data.get("title", "") or ""),
            description=str(data.get("description", "") or ""),
            status=str(data.get("status", "") or ""),
            guide_version=str(data.get("ig-ver", "") or ""),
            date=str(data.get("date", "") or ""),
            date_iso=str(data.get("dateISO8601", "") or ""),
            errs=_int("errs"),
            warnings=_int("warnings"),
            hints=_int("hints"),
            fhir_version=str(data.get("version", "") or ""),
            tool=str(data.get("tool", "") or ""),
            repository_url=str(data.get("repo", "") or ""),
        )

    @property
    def build_date(self) -> str:
        return normalize_build_date(self.date_iso) or normalize_build_date(self.date)

    @property
    def repo_parts(self) -> list[str]:
        """'HL7/fhir-ig/branches/master/qa.json' → ['HL7', 'fhir-ig', 'branches', 'master', 'qa.json']"""
        return [p for p in self.repository_url.split("/") if p]

    @property
    def branch(self) -> str:
        parts = self.repo_parts
        return parts[-2] if len(parts) >= 2 else ""

    @property
    def org(self) -> str:
        parts = self.repo_parts
        return parts[0] if parts else ""


@dataclass
class VersionInfo:
    """version.info 描述文件（INI，[FHIR] 段）"""

    fhir_version: str
    version: str = ""
    build_id: str = ""
    date: str = ""

    @property
    def build_date(self) -> str:
        return normalize_build_date(self.date)

    @classmethod
    def parse(cls, text: str) -> VersionInfo | None:
        """解析 version.info 文本，缺少 [FHIR] 段或 FhirVersion 时返回 None"""
        parser = configparser.ConfigParser(interpolation=None)
        try:
            parser.read_string(text.lstrip("\ufeff"))
        except configparser.Error as e:
            logger.debug("version.info 解析失败: %s", e)
            return None
        if not parser.has_section("FHIR"):
            return None
        section = parser["FHIR"]
        fhir_version = section.get("FhirVersion", "").strip()
        if not fhir_version:
            return None
        return cls(
            fhir_version=fhir_version,
            version=section.get("version", "").strip(),
            build_id=section.get("buildId", "").strip(),
            date=section.get("date", "").strip(),
        )


# =========================================================================
# 本地缓存
# =========================================================================


@dataclass
class PackageDetails:
    """包内 package.json 声明的元数据"""

    name: str
    version: str = ""
    date: str = ""
    fhir_versions: list[str] = field(default_factory=list)
    type: str = ""
    tools_version: str = ""
    canonical: str = ""
    homepage: str = ""
    url: str = ""
    title: str = ""
    description: str = ""
    dependencies: dict[str, str] = field(default_factory=dict)
    keywords: list[str] = field(default_factory=list)
    author: str = ""
    license: str = ""
    jurisdiction: str = ""
    original_version: str = ""

    @property
    def fhir_version(self) -> str:
        return self.fhir_versions[0] if self.fhir_versions else ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PackageDetails:
        fhir_versions: list[str] = []
        for key in ("fhirVersions", "fhir-version-list"):
            value = data.get(key)
            if isinstance(value, list) and value:
                fhir_versions = [str(v) for v in value]
                break
        if not fhir_versions:
            single = data.get("fhirVersion") or ""
            if isinstance(single, list):
                fhir_versions = [str(v) for v in single]
            elif single:
                # 少数旧包写成 "[4.0.1]" 字符串
                text = str(single).strip()
                if text.startswith("[") and text.endswith("]"):
                    text = text[1:-1].split(",")[0].strip().strip("'\"")
                fhir_versions = [text] if text else []

        author = data.get("author") or ""
        if isinstance(author, dict):
            author = author.get("name", "")
        keywords = data.get("keywords") or []
        deps = data.get("dependencies") or {}
        return cls(
            name=str(data.get("name", "") or ""),
            version=str(data.get("version", "") or ""),
            date=str(data.get("date", "") or ""),
            fhir_versions=fhir_versions,
            type=str(data.get("type", "") or ""),
            tools_version=str(data.get("tools-version", "") or ""),
            canonical=str(data.get("canonical", "") or ""),
            homepage=str(data.get("homepage", "") or ""),
            url=str(data.get("url", "") or ""),
            title=str(data.get("title", "") or ""),
            description=str(data.get("description", "") or ""),
            dependencies={str(k): str(v) for k, v in deps.items()} if isinstance(deps, dict) else {},
            keywords=[str(k) for k in keywords] if isinstance(keywords, list) else [],
            author=str(author),
            license=str(data.get("license", "") or ""),
            jurisdiction=str(data.get("jurisdiction", "") or ""),
            original_version=str(data.get("original-version", "") or ""),
        )

    @classmethod
    def loads(cls, text: str) -> PackageDetails | None:
        try:
            data = json.loads(text.lstrip("\ufeff"))
        except json.JSONDecodeError as e:
            logger.debug("package.json 解析失败: %s", e)
            return None
        if not isinstance(data, dict):
            return None
        return cls.from_dict(data)

    @classmethod
    def load(cls, location: str | Path) -> PackageDetails | None:
        """读取声明元数据

        依次尝试: location 本身 (.json)、location/package.json、location/package/package.json。
        都不存在或无法解析时返回 None。
        """
        base = Path(location)
        candidates = []
        if base.suffix.lower() == ".json":
            candidates.append(base)
        candidates += [base / "package.json", base / "package" / "package.json"]
        for path in candidates:
            if path.is_file():
                try:
                    return cls.loads(path.read_text(encoding="utf-8"))
                except OSError as e:
                    logger.warning("读取 %s 失败: %s", path, e)
                    return None
        return None


@dataclass
class CacheRecord:
    """索引中的一条已缓存包记录，对应 packages/ 下一个目录"""

    directive: str
    directory: Path
    name: str = ""
    version: str = ""
    fhir_sequence: str = ""
    download_date_time: str = ""
    size: int = 0
    details: PackageDetails | None = None


@dataclass
class PackageCacheEntry:
    """解析成功后返回给调用方的结果"""

    directive: str
    name: str
    version: str
    fhir_release: str
    directory: Path
    download_date_time: str = ""
    size: int = 0

    @classmethod
    def from_record(cls, record: CacheRecord) -> PackageCacheEntry:
        return cls(
            directive=record.directive,
            name=record.name,
            version=record.version,
            fhir_release=record.fhir_sequence,
            directory=record.directory,
            download_date_time=record.download_date_time,
            size=record.size,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "directive": self.directive,
            "name": self.name,
            "version": self.version,
            "fhir_release": self.fhir_release,
            "directory": str(self.directory),
            "download_date_time": self.download_date_time,
            "size": self.size,
        }
