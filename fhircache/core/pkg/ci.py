"""CI 构建解析

- 核心包: build.fhir.org 根目录（或 branches/<b>/）下的 version.info
- 实施指南: build.fhir.org/ig/qas.json 构建记录
- 直接给出 CI URL / 仓库片段时的兜底路径
"""

from __future__ import annotations

import json
import logging
import re

from fhircache.core import releases
from fhircache.core.classifier import DEFAULT_BRANCHES, classify_name
from fhircache.core.directive import Directive, NameType, VersionType
from fhircache.core.exceptions import TransportError
from fhircache.core.models import QasRecord, normalize_build_date
from fhircache.core.protocols import DescriptorSource, HttpTransport
from fhircache.utils.net import url_folder

logger = logging.getLogger(__name__)

_PACKAGE_FILE_RE = re.compile(r"^package(?:\.(?P<release>r[0-9a-z]+))?\.tgz$", re.IGNORECASE)
_QA_SUFFIX = "/qa.json"


def _ci_version(branch: str) -> str:
    return f"current${branch}" if branch else "current"


class CiResolver:
    """把 current / current$<branch> 指令解析为 CI 构建产物"""

    def __init__(
        self,
        transport: HttpTransport,
        descriptors: DescriptorSource,
        *,
        ci_url: str = "http://build.fhir.org/",
        qas_url: str = "https://build.fhir.org/ig/qas.json",
        release_tarball: str = "package.{release}.tgz",
        publication_base: str = "http://hl7.org/fhir/",
    ) -> None:
        self.transport = transport
        self.descriptors = descriptors
        self.ci_url = ci_url
        self.qas_url = qas_url
        self.release_tarball = release_tarball
        self.publication_base = publication_base

    def resolve(self, directive: Directive) -> Directive | None:
        if directive.name_type in (NameType.CORE_FULL, NameType.CORE_PARTIAL):
            return self.resolve_core(directive)
        return self.resolve_guide(directive)

    # ---- 核心包 ----

    def resolve_core(self, directive: Directive) -> Directive | None:
        directive = directive.to_core_full()
        branch = directive.ci_branch
        folder = f"{self.ci_url}branches/{branch}/" if branch else self.ci_url

        info = self.descriptors.fetch_version_info(f"{folder}version.info")
        if info is None:
            logger.warning("CI 构建站没有核心包构建: %s", folder)
            return None

        short = releases.to_short_version(directive.fhir_release)
        if short and not info.fhir_version.startswith(short):
            logger.info(
                "CI 核心包版本不符: 需要 %s, 构建为 %s (%s)",
                short, info.fhir_version, folder,
            )
            return None

        return directive.evolve(
            package_version=_ci_version(branch), version_type=VersionType.CI,
        ).with_facts(
            ci_url=folder,
            ci_guide_version=info.version,
            build_date=info.build_date,
            resolved_tarball_url=f"{folder}{directive.package_id}.tgz",
        )

    # ---- 实施指南 ----

    def load_feed(self) -> list[QasRecord] | None:
        """读取 qas.json，失败返回 None"""
        try:
            resp = self.transport.get(self.qas_url)
        except TransportError as e:
            logger.warning("CI 构建记录获取失败: %s", e)
            return None
        if not resp.ok:
            logger.warning("CI 构建记录获取失败: %s (HTTP %d)", self.qas_url, resp.status)
            return None
        try:
            data = resp.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning("CI 构建记录无法解析: %s", e)
            return None
        if not isinstance(data, list):
            return None
        return [QasRecord.from_dict(item) for item in data if isinstance(item, dict)]

    @staticmethod
    def _match(records: list[QasRecord], package_id: str, branch: str) -> list[QasRecord]:
        wanted = package_id.lower()
        if branch:
            suffixes: tuple[str, ...] = (f"/{branch}{_QA_SUFFIX}",)
        else:
            suffixes = ("/main" + _QA_SUFFIX, "/master" + _QA_SUFFIX)
        return [
            r for r in records
            if r.package_id.lower() == wanted and r.repository_url.endswith(suffixes)
        ]

    def _folder(self, record: QasRecord) -> str:
        repo = record.repository_url
        if repo.endswith(_QA_SUFFIX):
            repo = repo[: -len(_QA_SUFFIX)]
        return f"{self.ci_url}ig/{repo}"

    def _release_tarball(self, folder: str, fhir_release: str) -> str:
        rlit = releases.to_r_literal(fhir_release).lower() or fhir_release.lower()
        return f"{folder}/{self.release_tarball.format(release=rlit)}"

    def _head_ok(self, url: str) -> bool:
        try:
            status = self.transport.head(url)
        except TransportError as e:
            logger.debug("探测失败: %s - %s", url, e)
            return False
        return 200 <= status < 300

    def _guide_directive(
        self, directive: Directive, record: QasRecord, tarball: str = "",
    ) -> Directive:
        folder = self._folder(record)
        if not tarball:
            if directive.name_type == NameType.GUIDE_WITH_SUFFIX:
                tarball = self._release_tarball(folder, directive.fhir_release)
            else:
                tarball = f"{folder}/package.tgz"
        fhir_release = directive.fhir_release or releases.to_literal(record.fhir_version)
        return directive.evolve(
            package_version=_ci_version(directive.ci_branch),
            version_type=VersionType.CI,
        ).with_facts(
            fhir_release=fhir_release,
            ci_url=folder,
            ci_org=record.org,
            ci_guide_version=record.guide_version,
            build_date=record.build_date,
            resolved_tarball_url=tarball,
        )

    def resolve_guide(self, directive: Directive) -> Directive | None:
        records = self.load_feed()
        if records is None:
            return None

        branch = directive.ci_branch
        matches = self._match(records, directive.package_id, branch)
        if not matches:
            alternate = ""
            if directive.name_type == NameType.GUIDE_WITH_SUFFIX:
                alternate = directive.package_id.rsplit(".", 1)[0]
            elif directive.fhir_release:
                rlit = releases.to_r_literal(directive.fhir_release).lower()
                if rlit:
                    alternate = f"{directive.package_id}.{rlit}"
            if alternate:
                matches = self._match(records, alternate, branch)
        if not matches:
            logger.info("CI 构建站没有 %s 的构建 (branch=%s)", directive.package_id, branch or "main/master")
            return None

        newest_first = sorted(matches, key=lambda r: r.build_date, reverse=True)
        if directive.fhir_release:
            wanted = releases.to_sequence(directive.fhir_release)
            same_release = [r for r in newest_first if releases.to_sequence(r.fhir_version) == wanted]
            if not same_release:
                # 构建主版本不同，但可能同时发布了按版本区分的 tarball
                for record in newest_first:
                    candidate = self._release_tarball(self._folder(record), directive.fhir_release)
                    if self._head_ok(candidate):
                        return self._guide_directive(directive, record, tarball=candidate)
                logger.info(
                    "CI 构建站没有 %s 面向 %s 的构建", directive.package_id, directive.fhir_release,
                )
                return None
            newest_first = same_release

        if len(newest_first) > 1:
            logger.warning(
                "CI 构建站中 %s 有 %d 条匹配记录，使用最新构建: %s",
                directive.package_id, len(newest_first), newest_first[0].repository_url,
            )
        return self._guide_directive(directive, newest_first[0])

    # ---- URL / 仓库片段 ----

    def _from_record(self, record: QasRecord) -> Directive:
        branch = "" if record.branch in DEFAULT_BRANCHES else record.branch
        name_type, release = classify_name(record.package_id)
        folder = self._folder(record)
        return Directive(
            package_id=record.package_id,
            package_version=_ci_version(branch),
            name_type=name_type,
            version_type=VersionType.CI,
        ).with_facts(
            fhir_release=release,
            ci_url=folder,
            ci_org=record.org,
            ci_branch=branch,
            ci_guide_version=record.guide_version,
            build_date=record.build_date,
            resolved_tarball_url=f"{folder}/package.tgz",
        )

    def _newest(self, matches: list[QasRecord]) -> Directive | None:
        if not matches:
            return None
        return self._from_record(max(matches, key=lambda r: r.build_date))

    def resolve_url(self, url_or_fragment: str) -> Directive | None:
        """'HL7/<repo>/branches/<b>' 片段、发布站点 URL 或任意构建目录 URL → CI 指令"""
        text = url_or_fragment.strip()
        lowered = text.lower()

        if lowered.startswith("hl7/"):
            fragment = text if lowered.endswith("qa.json") else text.rstrip("/") + _QA_SUFFIX
            records = self.load_feed() or []
            return self._newest([
                r for r in records if r.repository_url.lower() == fragment.lower()
            ])

        publication = self.publication_base.split("://", 1)[-1]
        if lowered.split("://", 1)[-1].startswith(publication):
            records = self.load_feed() or []
            wanted = text.rstrip("/").split("://", 1)[-1]
            return self._newest([
                r for r in records if r.url.rstrip("/").split("://", 1)[-1] == wanted
            ])

        if lowered.startswith(("http://", "https://")):
            return self._from_build_folder(text)
        return None

    def _from_build_folder(self, url: str) -> Directive | None:
        root = url_folder(url)
        match = _PACKAGE_FILE_RE.match(url[len(root):])
        release = match.group("release") if match and match.group("release") else ""
        stem = f"package.{release}" if release else "package"

        details = self.descriptors.fetch_manifest(f"{root}{stem}.manifest.json")
        if details is None:
            logger.info("构建目录下没有包清单: %s", root)
            return None

        tarball = url if url.lower().endswith(".tgz") else f"{root}package.tgz"
        name_type, name_release = classify_name(details.name)
        fhir_release = name_release or releases.to_literal(release)
        return Directive(
            package_id=details.name,
            package_version="current",
            name_type=name_type,
            version_type=VersionType.CI,
        ).with_facts(
            fhir_release=fhir_release,
            ci_url=root,
            ci_guide_version=details.version,
            build_date=normalize_build_date(details.date),
            resolved_tarball_url=tarball,
        )
