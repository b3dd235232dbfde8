"""注册中心解析

按优先级并发查询所有注册中心的包清单 / 目录搜索，
在各注册中心答案不一致时按固定规则挑出 latest、范围内最高版本或精确版本。
注册中心的列表顺序决定所有平局的取舍。
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import TypeVar
from urllib.parse import quote

from fhircache.core import releases, versions
from fhircache.core.classifier import classify_name, publication_url_for
from fhircache.core.directive import Directive, NameType, VersionType
from fhircache.core.exceptions import TransportError
from fhircache.core.models import CatalogEntry, RegistryManifest
from fhircache.core.protocols import HttpTransport

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RegistryClient:
    """多注册中心查询与版本挑选"""

    def __init__(
        self,
        transport: HttpTransport,
        registries: list[str],
        *,
        max_workers: int = 8,
        publication_base: str = "http://hl7.org/fhir/",
    ) -> None:
        self.transport = transport
        self.registries = list(registries)
        self.max_workers = max_workers
        self.publication_base = publication_base

    def _fan_out(self, fn: Callable[[str], T | None]) -> dict[str, T]:
        """每个注册中心一个并发调用，全部完成后按注册中心顺序返回非空结果"""
        if not self.registries:
            return {}
        workers = max(1, min(self.max_workers, len(self.registries)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {reg: executor.submit(fn, reg) for reg in self.registries}
            results = {reg: futures[reg].result() for reg in self.registries}
        return {reg: value for reg, value in results.items() if value is not None}

    # ---- 清单 ----

    def _fetch_manifest(self, registry: str, package_id: str) -> RegistryManifest | None:
        url = f"{registry}{package_id}"
        try:
            resp = self.transport.get(url)
        except TransportError as e:
            logger.info("注册中心不可用，跳过: %s - %s", registry, e)
            return None
        if not resp.ok:
            logger.info("注册中心 %s 没有包 %s (HTTP %d)", registry, package_id, resp.status)
            return None
        try:
            data = resp.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.info("注册中心返回的清单无法解析: %s - %s", url, e)
            return None
        if not isinstance(data, dict):
            logger.info("注册中心返回的清单格式错误: %s", url)
            return None

        manifest = RegistryManifest.from_dict(data, registry=registry)
        if manifest.name.lower() != package_id.lower():
            logger.info("清单包名不匹配，跳过: %s != %s (%s)", manifest.name, package_id, registry)
            return None
        if not manifest.versions:
            logger.info("注册中心 %s 上 %s 没有任何版本", registry, package_id)
            return None
        return manifest

    def fetch_manifests(self, directive: Directive) -> Directive:
        """并发获取各注册中心的清单，挂到指令上（hl7.fhir.r4 查询 hl7.fhir.r4.core）"""
        package_id = directive.package_id
        if directive.name_type == NameType.CORE_PARTIAL:
            package_id += ".core"
        manifests = self._fan_out(lambda reg: self._fetch_manifest(reg, package_id))
        logger.debug("获取到 %d 个注册中心的清单: %s", len(manifests), package_id)
        return directive.with_facts(manifests=manifests)

    def _ensure_manifests(self, directive: Directive) -> Directive:
        if directive.manifests:
            return directive
        return self.fetch_manifests(directive)

    def _to_exact(self, directive: Directive, version: str) -> Directive | None:
        """选定版本后，从优先级最高的有此版本的清单取 tarball 和校验和"""
        for manifest in directive.manifests.values():
            info = manifest.versions.get(version)
            if info is None:
                continue
            resolved = directive.to_core_full().evolve(
                package_version=version, version_type=VersionType.EXACT,
            )
            return resolved.with_facts(
                resolved_tarball_url=info.tarball,
                resolved_sha=info.shasum,
                publication_url=publication_url_for(resolved, self.publication_base),
            )
        return None

    # ---- 版本挑选 ----

    def resolve_latest(self, directive: Directive) -> Directive | None:
        directive = self._ensure_manifests(directive)
        manifests = list(directive.manifests.values())
        if not manifests:
            return None

        tags = [m.latest for m in manifests if m.latest]
        chosen = ""
        if tags and len(set(tags)) == 1:
            chosen = tags[0]
        else:
            # 其他注册中心还不知道的 latest，说明那边落后了
            for m in manifests:
                if m.latest and any(
                    not other.has_version(m.latest) for other in manifests if other is not m
                ):
                    chosen = m.latest
                    break
        if not chosen and tags:
            chosen = tags[0]
        if not chosen:
            chosen = next((m.highest_version() for m in manifests if m.versions), "")
        if not chosen:
            return None

        logger.info("%s 的 latest 解析为 %s", directive.package_id, chosen)
        return self._to_exact(directive, chosen)

    def resolve_range(self, directive: Directive) -> Directive | None:
        directive = self._ensure_manifests(directive)
        version_range = directive.package_version
        candidates = [
            (m, m.highest_version(version_range)) for m in directive.manifests.values()
        ]
        candidates = [(m, highest) for m, highest in candidates if highest]
        if not candidates:
            return None

        chosen = next(
            (m.latest for m, _ in candidates if m.latest and versions.matches_range(m.latest, version_range)),
            candidates[0][1],
        )
        logger.info("%s 的 %s 解析为 %s", directive.package_id, version_range, chosen)
        return self._to_exact(directive, chosen)

    def resolve_exact(self, directive: Directive) -> Directive | None:
        directive = self._ensure_manifests(directive)
        return self._to_exact(directive, directive.package_version)

    # ---- 目录搜索 ----

    def _search_catalog(self, registry: str, package_id: str) -> dict[str, CatalogEntry] | None:
        url = (
            f"{registry}catalog?op=find&name={quote(package_id)}"
            "&pkgcanonical=&canonical=&fhirversion="
        )
        try:
            resp = self.transport.get(url)
        except TransportError as e:
            logger.info("目录搜索失败，跳过: %s - %s", registry, e)
            return None
        if not resp.ok:
            logger.info("目录搜索返回 %d: %s", resp.status, url)
            return None
        try:
            data = resp.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.info("目录搜索结果无法解析: %s - %s", url, e)
            return None
        if not isinstance(data, list):
            return None

        entries: dict[str, CatalogEntry] = {}
        for item in data:
            if isinstance(item, dict):
                entry = CatalogEntry.from_dict(item)
                if entry.name:
                    entries.setdefault(entry.name, entry)
        return entries or None

    def catalog_search(self, directive: Directive) -> Directive:
        package_id = directive.package_id
        catalog = self._fan_out(lambda reg: self._search_catalog(reg, package_id))
        return directive.with_facts(catalog=catalog)

    def resolve_name_from_catalog(self, directive: Directive, release: str = "") -> Directive:
        """无版本后缀的指南 + 指定 FHIR 版本 → 目录中对应版本的真实包名

        只处理 GuideWithoutSuffix；找不到匹配时只记下请求的版本，包名不变。
        """
        if directive.name_type != NameType.GUIDE_WITHOUT_SUFFIX:
            return directive
        if not directive.catalog:
            directive = self.catalog_search(directive)

        wanted = releases.to_sequence(release)
        prefix = directive.package_id.lower()
        for entries in directive.catalog.values():
            for entry in entries.values():
                name = entry.name.lower()
                if name != prefix and not name.startswith(prefix + "."):
                    continue
                if wanted != releases.FhirSequence.UNKNOWN and (
                    releases.to_sequence(entry.fhir_version) != wanted
                ):
                    continue
                name_type, _ = classify_name(entry.name)
                logger.info("目录搜索: %s → %s (%s)", directive.package_id, entry.name, entry.fhir_version)
                renamed = directive.evolve(
                    package_id=entry.name,
                    name_type=name_type,
                    fhir_release=releases.to_literal(entry.fhir_version) or release,
                    manifests={},
                )
                return renamed.evolve(
                    publication_url=publication_url_for(renamed, self.publication_base),
                )
        return directive.with_facts(fhir_release=releases.to_literal(release) or release)
