"""包指令模型

一个指令 `<package-id>#<version>` 在解析过程中逐步补充已发现的事实
（FHIR 版本、CI 地址、tarball、校验和……）。Directive 不可变，每一步都返回新实例。
"""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from fhircache.core import releases
from fhircache.core.models import CatalogEntry, RegistryManifest


class NameType(str, Enum):
    """包名形态"""

    CORE_FULL = "CoreFull"                          # hl7.fhir.r4.core
    CORE_PARTIAL = "CorePartial"                    # hl7.fhir.r4
    GUIDE_WITH_SUFFIX = "GuideWithSuffix"           # hl7.fhir.uv.ig.r4
    GUIDE_WITHOUT_SUFFIX = "GuideWithoutSuffix"     # hl7.fhir.uv.ig
    UNKNOWN = "Unknown"


class VersionType(str, Enum):
    """版本形态"""

    EXACT = "Exact"
    PARTIAL = "Partial"
    LATEST = "Latest"
    LOCAL = "Local"
    CI = "ContinuousIntegration"
    NON_SEMVER = "NonSemVer"
    UNKNOWN = "Unknown"


# 只增不减的事实字段，with_facts() 忽略空值
FACT_FIELDS = frozenset((
    "fhir_release", "ci_url", "ci_org", "ci_branch", "ci_guide_version",
    "build_date", "resolved_tarball_url", "resolved_sha", "publication_url",
    "manifests", "catalog",
))


@dataclass(frozen=True)
class Directive:
    package_id: str
    package_version: str = "latest"
    name_type: NameType = NameType.UNKNOWN
    version_type: VersionType = VersionType.UNKNOWN

    fhir_release: str = ""
    ci_url: str = ""
    ci_org: str = ""
    ci_branch: str = ""
    ci_guide_version: str = ""
    build_date: str = ""
    resolved_tarball_url: str = ""
    resolved_sha: str = ""
    publication_url: str = ""

    # 注册中心 URL → 清单 / 目录搜索结果
    manifests: Mapping[str, RegistryManifest] = field(
        default_factory=dict, compare=False, repr=False,
    )
    catalog: Mapping[str, Mapping[str, CatalogEntry]] = field(
        default_factory=dict, compare=False, repr=False,
    )

    @property
    def directive(self) -> str:
        return f"{self.package_id}#{self.package_version}"

    def __str__(self) -> str:
        return self.directive

    def evolve(self, **changes: Any) -> Directive:
        """改写身份字段（包名、版本、类型），事实字段也可显式覆盖"""
        return dataclasses.replace(self, **changes)

    def with_facts(self, **facts: Any) -> Directive:
        """追加事实，空值不会覆盖已有事实"""
        unknown = set(facts) - FACT_FIELDS
        if unknown:
            raise TypeError(f"不是事实字段: {sorted(unknown)}")
        changes = {k: v for k, v in facts.items() if v}
        if not changes:
            return self
        return dataclasses.replace(self, **changes)

    @property
    def has_download_url(self) -> bool:
        return bool(self.resolved_tarball_url or self.publication_url)

    def download_urls(self) -> list[str]:
        """按优先级排列的下载地址：解析出的 tarball 在前，发布站点兜底"""
        urls = []
        for url in (self.resolved_tarball_url, self.publication_url):
            if url and url not in urls:
                urls.append(url)
        return urls

    def equivalent_directives(self) -> list[str]:
        """能满足本指令的全部缓存键，自身排第一"""
        keys = [self.directive]
        if self.name_type == NameType.CORE_PARTIAL:
            keys.append(f"{self.package_id}.core#{self.package_version}")
        elif self.name_type == NameType.GUIDE_WITHOUT_SUFFIX and self.fhir_release:
            rlit = releases.to_r_literal(self.fhir_release).lower()
            if rlit:
                keys.append(f"{self.package_id}.{rlit}#{self.package_version}")
        return keys

    def to_core_full(self) -> Directive:
        """hl7.fhir.r4 → hl7.fhir.r4.core，其他形态原样返回"""
        if self.name_type != NameType.CORE_PARTIAL:
            return self
        return self.evolve(
            package_id=f"{self.package_id}.core", name_type=NameType.CORE_FULL,
        )

    def to_dict(self) -> dict[str, Any]:
        """可 JSON 序列化的摘要（不含清单和目录原文）"""
        data: dict[str, Any] = {
            "directive": self.directive,
            "package_id": self.package_id,
            "package_version": self.package_version,
            "name_type": self.name_type.value,
            "version_type": self.version_type.value,
        }
        for name in sorted(FACT_FIELDS - {"manifests", "catalog"}):
            value = getattr(self, name)
            if value:
                data[name] = value
        if self.manifests:
            data["registries"] = list(self.manifests)
        return data
