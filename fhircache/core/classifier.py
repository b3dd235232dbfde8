"""指令与 URL 分类

把 `<package-id>[#<version>]` 或者发布站点 / CI 构建站的 URL 归一化为 Directive。

- parse_directive(): 纯函数，无 I/O
- classify_url(): 需要的远端描述文件通过 DescriptorSource 注入，本身不发请求
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from fhircache.core import releases
from fhircache.core.directive import Directive, NameType, VersionType
from fhircache.core.exceptions import DirectiveParseError
from fhircache.core.models import normalize_build_date

if TYPE_CHECKING:
    from fhircache.core.models import PackageDetails
    from fhircache.core.protocols import DescriptorSource

PUBLICATION_URL = "http://hl7.org/fhir/"
CI_URL = "http://build.fhir.org/"

SEMVER_RE = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-((?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)"
    r"(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+([0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)

_CORE_FULL_RE = re.compile(
    r"^hl7\.fhir\.r\d+[a-z]?\.(core|expansions|examples|search|elements|corexml)$",
    re.IGNORECASE,
)
_CORE_PARTIAL_RE = re.compile(r"^hl7\.fhir\.r\d+[A-Za-z]?$")
_RELEASE_SUFFIX_RE = re.compile(r"\.r\d+[A-Za-z]?$")

_FILE_SUFFIX_RE = re.compile(r"\.(html|htm|json|xml|tgz|zip|txt)$", re.IGNORECASE)
_PACKAGE_FILE_RE = re.compile(r"^package(\.r.+)?\.tgz$", re.IGNORECASE)
_FHIR_LITERAL_RE = re.compile(r"^(DSTU2|STU3|R[0-9]+[A-Z]*)$")
_BALLOT_RE = re.compile(r"^[0-9]{4}[A-Z][a-z]{2}$")
_REALM_RE = re.compile(r"^[a-z]{2}$")

_PUBLICATION_HOST_RE = re.compile(r"^(http|https)://(hl7\.org|www\.hl7\.org)/fhir/.+$")
_CI_CORE_CURRENT_RE = re.compile(r"^(http|https)://build\.fhir\.org/[^/]*$")
_CI_CORE_BRANCH_RE = re.compile(
    r"^(http|https)://build\.fhir\.org/branches/(?P<branch>[^/\s]+)(/.*)*$"
)
_CI_IG_BRANCH_RE = re.compile(
    r"^(http|https)://build\.fhir\.org/ig/(?P<org>[^/\s]+)/(?P<repo>[^/\s]+)"
    r"/branches/(?P<branch>[^/\s]+)(/.*)*$"
)
_CI_IG_RE = re.compile(
    r"^(http|https)://build\.fhir\.org/ig/(?P<org>[^/\s]+)/(?P<repo>[^/\s]+)(/.*)*$"
)

DEFAULT_BRANCHES = ("", "main", "master")


# =========================================================================
# 指令
# =========================================================================


def is_semver(version: str) -> bool:
    return bool(SEMVER_RE.match(version))


def _release_literal(segment: str) -> str:
    return releases.to_literal(segment) or segment.upper()


def classify_name(package_id: str) -> tuple[NameType, str]:
    """包名 → (形态, FHIR 版本字面量)；无版本信息时字面量为空"""
    segments = package_id.split(".")
    if _CORE_FULL_RE.match(package_id):
        return NameType.CORE_FULL, _release_literal(segments[2])
    if _CORE_PARTIAL_RE.match(package_id):
        return NameType.CORE_PARTIAL, _release_literal(segments[2])
    if _RELEASE_SUFFIX_RE.search(package_id):
        return NameType.GUIDE_WITH_SUFFIX, _release_literal(segments[-1])
    return NameType.GUIDE_WITHOUT_SUFFIX, ""


def classify_version(package_id: str, version: str) -> tuple[VersionType, str]:
    """版本写法 → (形态, CI 分支)

    hl7 开头的包只接受 semver（或两段式的范围写法），否则抛 DirectiveParseError。
    """
    lowered = version.lower()
    if lowered == "latest":
        return VersionType.LATEST, ""
    if lowered == "dev":
        return VersionType.LOCAL, ""
    if lowered == "current":
        return VersionType.CI, ""
    if lowered.startswith("current$"):
        return VersionType.CI, version[len("current$"):]
    if lowered.endswith(".x"):
        return VersionType.PARTIAL, ""

    if package_id.lower().startswith("hl7"):
        if is_semver(version):
            return VersionType.EXACT, ""
        if len(version.split(".")) == 2 and is_semver(version + ".0"):
            return VersionType.PARTIAL, ""
        raise DirectiveParseError(
            f"hl7 包的版本必须是 semver: {package_id}#{version}",
            directive=f"{package_id}#{version}",
        )

    if is_semver(version):
        return VersionType.EXACT, ""
    return VersionType.NON_SEMVER, ""


def publication_url_for(directive: Directive, base: str = PUBLICATION_URL) -> str:
    """官方发布站点上的兜底下载地址，只对 hl7. 开头的精确版本有意义"""
    package_id = directive.package_id
    if not package_id.lower().startswith("hl7.") or directive.version_type != VersionType.EXACT:
        return ""

    version = directive.package_version
    segments = package_id.split(".")
    if directive.name_type in (NameType.CORE_FULL, NameType.CORE_PARTIAL):
        file_id = package_id
        if directive.name_type == NameType.CORE_PARTIAL:
            file_id += ".core"
        release = releases.published_release(version)
        if release is None:
            return ""
        if release.ballot_prefix:
            return f"{base}{release.ballot_prefix}/{file_id}.tgz"
        if version == releases.to_long_version(release.sequence.value):
            return f"{base}{releases.sequence_r_literal(release.sequence)}/{file_id}.tgz"
        return f"{base}{version}/{file_id}.tgz"

    if directive.name_type == NameType.GUIDE_WITH_SUFFIX and len(segments) >= 5:
        return f"{base}{segments[2]}/{segments[3]}/package.{segments[4]}.tgz"
    if directive.name_type == NameType.GUIDE_WITHOUT_SUFFIX and len(segments) >= 4:
        return f"{base}{segments[2]}/{segments[3]}/package.tgz"
    return ""


def parse_directive(text: str, *, publication_base: str = PUBLICATION_URL) -> Directive:
    """'hl7.fhir.r4.core#4.0.1' → Directive

    只有包名时版本视为 latest；多于一个 '#' 或版本不合法时抛 DirectiveParseError。
    """
    if not text or not text.strip():
        raise DirectiveParseError("指令为空")

    parts = [p.strip() for p in text.strip().split("#")]
    if len(parts) > 2:
        raise DirectiveParseError(f"指令包含多个 '#': {text}", directive=text)
    package_id = parts[0]
    version = parts[1] if len(parts) == 2 else "latest"
    if not package_id or not version:
        raise DirectiveParseError(f"指令缺少包名或版本: {text}", directive=text)

    name_type, release = classify_name(package_id)
    version_type, branch = classify_version(package_id, version)
    directive = Directive(
        package_id=package_id,
        package_version=version,
        name_type=name_type,
        version_type=version_type,
        fhir_release=release,
        ci_branch=branch,
    )
    return directive.with_facts(
        publication_url=publication_url_for(directive, publication_base),
    )


def try_parse_directive(text: str) -> Directive | None:
    try:
        return parse_directive(text)
    except DirectiveParseError:
        return None


# =========================================================================
# URL
# =========================================================================


def split_url(url: str) -> list[str]:
    """按 / 和 ? 切分并去掉空段: 'http://hl7.org/fhir/R4/' → ['http:', 'hl7.org', 'fhir', 'R4']"""
    return [s for s in re.split(r"[/?]", url) if s]


def _package_stem(segments: list[str]) -> tuple[str, str]:
    """在路径段中找 package[.rN].tgz，返回 ('package.r4', 'r4')；没有则 ('package', '')"""
    for seg in segments:
        if _PACKAGE_FILE_RE.match(seg):
            stem = seg[: -len(".tgz")]
            suffix = stem[len("package."):] if "." in stem else ""
            return stem, suffix.lower()
    return "package", ""


def _explicit_core_file(segments: list[str]) -> str:
    """'hl7.fhir.r4.core.tgz' → 'hl7.fhir.r4.core'；package.tgz 这类通用文件名不算"""
    for seg in segments:
        if seg.lower().endswith(".tgz") and not _PACKAGE_FILE_RE.match(seg):
            return seg[: -len(".tgz")]
    return ""


def _core_id_for(release_hint: str) -> str:
    rlit = releases.to_r_literal(release_hint)
    return f"hl7.fhir.{rlit.lower()}.core" if rlit else ""


def _exact_from_details(details: PackageDetails, **facts: str) -> Directive:
    name_type, fhir_release = classify_name(details.name)
    return Directive(
        package_id=details.name,
        package_version=details.version,
        name_type=name_type,
        version_type=VersionType.EXACT,
    ).with_facts(fhir_release=fhir_release, **facts)


def _publication_core(
    url: str, segments: list[str], descriptors: DescriptorSource, base: str,
) -> Directive:
    release_segment = segments[3]
    explicit = _explicit_core_file(segments[4:])

    if is_semver(release_segment):
        package_id = explicit or _core_id_for(release_segment)
        if not package_id:
            raise DirectiveParseError(f"无法识别的 FHIR 版本: {url}", directive=url)
        name_type, release = classify_name(package_id)
        return Directive(
            package_id=package_id, package_version=release_segment,
            name_type=name_type, version_type=VersionType.EXACT,
        ).with_facts(
            fhir_release=release,
            publication_url=f"{base}{release_segment}/{package_id}.tgz",
        )

    ballot = releases.release_for_ballot(release_segment) if _BALLOT_RE.match(release_segment) else None
    info = descriptors.fetch_version_info(f"{base}{release_segment}/version.info")

    if ballot is not None:
        hint = ballot.version
    elif _FHIR_LITERAL_RE.match(release_segment):
        hint = release_segment
    else:
        hint = info.fhir_version if info else ""
    package_id = explicit or _core_id_for(hint)
    if not package_id:
        raise DirectiveParseError(f"无法识别的发布目录: {url}", directive=url)

    name_type, release = classify_name(package_id)
    publication_url = f"{base}{release_segment}/{package_id}.tgz"
    if info is not None:
        version, build_date = info.fhir_version, info.build_date
    elif ballot is not None:
        version, build_date = ballot.version, ""
    else:
        version, build_date = "latest", ""

    version_type = VersionType.LATEST if version == "latest" else VersionType.EXACT
    return Directive(
        package_id=package_id, package_version=version,
        name_type=name_type, version_type=version_type,
    ).with_facts(
        fhir_release=release, publication_url=publication_url, build_date=build_date,
    )


def _publication_guide(
    url: str, realm: str, name: str, rest: list[str],
    descriptors: DescriptorSource, base: str,
) -> Directive:
    if _FILE_SUFFIX_RE.search(name):
        raise DirectiveParseError(f"无法从 URL 识别指南名称: {url}", directive=url)

    folder = next((seg for seg in rest if not _FILE_SUFFIX_RE.search(seg)), "")
    stem, suffix = _package_stem(rest)
    guide_root = f"{base}{realm}/{name}/" + (f"{folder}/" if folder else "")
    publication_url = f"{guide_root}{stem}.tgz"

    details = descriptors.fetch_manifest(f"{guide_root}{stem}.manifest.json")
    if details is not None and details.name and details.version:
        return _exact_from_details(details, publication_url=publication_url)

    package_id = f"hl7.fhir.{realm}.{name}" + (f".{suffix}" if suffix else "")
    name_type, release = classify_name(package_id)
    return Directive(
        package_id=package_id, package_version="latest",
        name_type=name_type, version_type=VersionType.LATEST,
    ).with_facts(fhir_release=release, publication_url=publication_url)


def _ci_core(segments: list[str], branch: str, ci_base: str) -> Directive:
    package_id = _explicit_core_file(segments) or _core_id_for(
        releases.highest_sequence().value,
    )
    name_type, release = classify_name(package_id)
    version = f"current${branch}" if branch else "current"
    folder = f"{ci_base}branches/{branch}/" if branch else ci_base
    return Directive(
        package_id=package_id, package_version=version,
        name_type=name_type, version_type=VersionType.CI,
    ).with_facts(fhir_release=release, ci_branch=branch, ci_url=folder)


def _ci_guide(
    url: str, org: str, repo: str, branch: str, rest: list[str],
    descriptors: DescriptorSource, ci_base: str,
) -> Directive:
    folder = f"{ci_base}ig/{org}/{repo}/" + (f"branches/{branch}/" if branch else "")
    stem, _ = _package_stem(rest)
    details = descriptors.fetch_manifest(f"{folder}{stem}.manifest.json")
    if details is None or not details.name:
        raise DirectiveParseError(f"CI 构建目录下没有包清单: {url}", directive=url)

    if branch in DEFAULT_BRANCHES:
        branch = ""
    name_type, release = classify_name(details.name)
    return Directive(
        package_id=details.name,
        package_version=f"current${branch}" if branch else "current",
        name_type=name_type,
        version_type=VersionType.CI,
    ).with_facts(
        fhir_release=release,
        ci_url=folder.rstrip("/"),
        ci_org=org,
        ci_branch=branch,
        ci_guide_version=details.version,
        resolved_tarball_url=f"{folder}{stem}.tgz",
        build_date=normalize_build_date(details.date),
    )


def classify_url(
    url: str,
    descriptors: DescriptorSource,
    *,
    publication_base: str = PUBLICATION_URL,
    ci_base: str = CI_URL,
) -> Directive:
    """发布站点 / CI 构建站 URL → Directive

    其他主机一律抛 DirectiveParseError。
    """
    url = url.strip()
    segments = split_url(url)

    if _PUBLICATION_HOST_RE.match(url) and len(segments) >= 4:
        release_segment = segments[3]
        if (
            _FHIR_LITERAL_RE.match(release_segment)
            or _BALLOT_RE.match(release_segment)
            or is_semver(release_segment)
        ):
            return _publication_core(url, segments, descriptors, publication_base)
        if _REALM_RE.match(release_segment) and len(segments) >= 5:
            return _publication_guide(
                url, release_segment, segments[4], segments[5:], descriptors, publication_base,
            )
        return _publication_guide(
            url, "uv", release_segment, segments[4:], descriptors, publication_base,
        )

    if _CI_CORE_CURRENT_RE.match(url):
        return _ci_core(segments[2:], "", ci_base)

    match = _CI_CORE_BRANCH_RE.match(url)
    if match:
        return _ci_core(segments[4:], match.group("branch"), ci_base)

    match = _CI_IG_BRANCH_RE.match(url)
    if match:
        return _ci_guide(
            url, match.group("org"), match.group("repo"), match.group("branch"),
            segments[7:], descriptors, ci_base,
        )

    match = _CI_IG_RE.match(url)
    if match:
        return _ci_guide(
            url, match.group("org"), match.group("repo"), "",
            segments[5:], descriptors, ci_base,
        )

    raise DirectiveParseError(f"无法识别的包 URL: {url}", directive=url)
