"""FHIR 版本序列与已发布版本表

提供序列字面量 (R4)、R 字面量 (R4)、短版本 (4.0)、长版本 (4.0.1) 之间的互相转换，
以及官方发布站点上各版本的日期、投票前缀等信息。
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class FhirSequence(str, Enum):
    """FHIR 主版本序列，定义顺序即新旧顺序"""

    UNKNOWN = "Unknown"
    DSTU2 = "DSTU2"
    STU3 = "STU3"
    R4 = "R4"
    R4B = "R4B"
    R5 = "R5"
    R6 = "R6"


@dataclass(frozen=True)
class PublishedRelease:
    """发布站点上的一个 FHIR 版本"""

    version: str
    sequence: FhirSequence
    date: str
    is_release: bool = False
    description: str = ""
    ballot_prefix: str = ""


def _release(
    version: str, sequence: FhirSequence, date: str, is_release: bool = False,
    description: str = "", ballot_prefix: str = "",
) -> tuple[str, PublishedRelease]:
    return version, PublishedRelease(
        version, sequence, date, is_release, description, ballot_prefix,
    )


PUBLISHED_RELEASES: dict[str, PublishedRelease] = dict([
    _release("1.0.2", FhirSequence.DSTU2, "2015-10-24", True, "DSTU2 Release with 1 technical errata"),
    _release("3.0.2", FhirSequence.STU3, "2019-10-24", True, "STU3 Release with 2 technical errata"),
    _release("3.2.0", FhirSequence.R4, "2018-04-02", False,
             "R4 Draft for comment / First Candidate Normative Content", "2018Jan"),
    _release("3.3.0", FhirSequence.R4, "2018-05-02", False, "R4 Ballot #1", "2018May"),
    _release("3.5.0", FhirSequence.R4, "2018-08-21", False, "R4 Ballot #2", "2018Sep"),
    _release("3.5a.0", FhirSequence.R4, "2018-11-09", False, "Special R4 Ballot #3", "2018Dec"),
    _release("4.0.1", FhirSequence.R4, "2019-10-30", True, "R4 Release with 1 technical errata"),
    _release("4.1.0", FhirSequence.R4B, "2021-03-11", False, "R4B Ballot #1", "2021Mar"),
    _release("4.3.0-snapshot1", FhirSequence.R4B, "2021-12-20"),
    _release("4.3.0", FhirSequence.R4B, "2022-05-28", True, "R4B Release"),
    _release("4.2.0", FhirSequence.R5, "2019-12-31", False, "R5 Preview #1", "2020Feb"),
    _release("4.4.0", FhirSequence.R5, "2020-05-04", False, "R5 Preview #2", "2020May"),
    _release("4.5.0", FhirSequence.R5, "2020-08-20", False, "R5 Preview #3", "2020Sep"),
    _release("4.6.0", FhirSequence.R5, "2021-04-15", False, "R5 Draft Ballot", "2021May"),
    _release("5.0.0-snapshot1", FhirSequence.R5, "2021-12-19"),
    _release("5.0.0-ballot", FhirSequence.R5, "2022-09-10"),
    _release("5.0.0-snapshot3", FhirSequence.R5, "2022-12-14"),
    _release("5.0.0-draft-final", FhirSequence.R5, "2023-03-01"),
    _release("5.0.0", FhirSequence.R5, "2023-03-26", True, "R5 Release"),
])

_BALLOT_INDEX: dict[str, PublishedRelease] = {
    r.ballot_prefix: r for r in PUBLISHED_RELEASES.values() if r.ballot_prefix
}

# 各序列可识别的别名：字面量、数字、短/长版本、历史预发布版本、核心包根名
_SEQUENCE_ALIASES: dict[FhirSequence, tuple[str, ...]] = {
    FhirSequence.DSTU2: (
        "DSTU2", "R2", "2", "0.4", "0.4.0", "0.5", "0.5.0",
        "1.0", "1.0.0", "1.0.1", "1.0.2",
        "hl7.fhir.r2", "hl7.fhir.r2.core",
    ),
    FhirSequence.STU3: (
        "STU3", "R3", "3", "1.1", "1.1.0", "1.2", "1.2.0", "1.4", "1.4.0",
        "1.6", "1.6.0", "1.8", "1.8.0", "3.0", "3.0.0", "3.0.1", "3.0.2",
        "hl7.fhir.r3", "hl7.fhir.r3.core",
    ),
    FhirSequence.R4: (
        "R4", "4", "3.2", "3.2.0", "3.3", "3.3.0", "3.5", "3.5.0",
        "3.5a", "3.5a.0", "4.0", "4.0.1",
        "hl7.fhir.r4", "hl7.fhir.r4.core",
    ),
    FhirSequence.R4B: (
        "R4B", "4B", "4.1", "4.1.0", "4.3", "4.3.0", "4.3.0-snapshot1",
        "hl7.fhir.r4b", "hl7.fhir.r4b.core",
    ),
    FhirSequence.R5: (
        "R5", "5", "4.2", "4.2.0", "4.4", "4.4.0", "4.5", "4.5.0",
        "4.6", "4.6.0", "5.0", "5.0.0", "5.0.0-cibuild", "5.0.0-snapshot1",
        "5.0.0-ballot", "5.0.0-snapshot3", "5.0.0-draft-final",
        "hl7.fhir.r5", "hl7.fhir.r5.core",
    ),
    FhirSequence.R6: (
        "R6", "6", "6.0", "6.0.0", "6.0.0-cibuild",
        "hl7.fhir.r6", "hl7.fhir.r6.core",
    ),
}

_SEQUENCE_LOOKUP: dict[str, FhirSequence] = {
    alias.lower(): seq
    for seq, aliases in _SEQUENCE_ALIASES.items()
    for alias in aliases
}

_LITERALS: dict[FhirSequence, tuple[str, str, str, str]] = {
    # (字面量, R 字面量, 短版本, 长版本)
    FhirSequence.DSTU2: ("DSTU2", "R2", "1.0", "1.0.2"),
    FhirSequence.STU3: ("STU3", "R3", "3.0", "3.0.2"),
    FhirSequence.R4: ("R4", "R4", "4.0", "4.0.1"),
    FhirSequence.R4B: ("R4B", "R4B", "4.3", "4.3.0"),
    FhirSequence.R5: ("R5", "R5", "5.0", "5.0.0"),
    FhirSequence.R6: ("R6", "R6", "6.0", "6.0.0"),
}


def to_sequence(value: str) -> FhirSequence:
    """任意版本写法 → 序列，无法识别返回 UNKNOWN

    先整体匹配，失败后去掉 '-' 之后的标签再匹配一次（如 4.0.1-cibuild）。
    """
    if not value:
        return FhirSequence.UNKNOWN
    key = value.strip().lower()
    if key in _SEQUENCE_LOOKUP:
        return _SEQUENCE_LOOKUP[key]
    if "-" in key:
        return _SEQUENCE_LOOKUP.get(key.split("-", 1)[0], FhirSequence.UNKNOWN)
    return FhirSequence.UNKNOWN


def highest_sequence() -> FhirSequence:
    return list(FhirSequence)[-1]


def sequence_literal(sequence: FhirSequence) -> str:
    return _LITERALS[sequence][0] if sequence in _LITERALS else ""


def sequence_r_literal(sequence: FhirSequence) -> str:
    return _LITERALS[sequence][1] if sequence in _LITERALS else ""


def to_literal(value: str) -> str:
    """'4.0.1' / 'r4' / 'hl7.fhir.r4.core' → 'R4'；'1.0.2' → 'DSTU2'"""
    return sequence_literal(to_sequence(value))


def to_r_literal(value: str) -> str:
    """同 to_literal，但 DSTU2/STU3 输出 R2/R3"""
    return sequence_r_literal(to_sequence(value))


def _r_number(value: str) -> str:
    v = value.strip()
    if len(v) > 1 and v[0] in "Rr" and v[1:].isdigit():
        return v[1:]
    return ""


def to_short_version(value: str) -> str:
    """'R4' → '4.0'；未知的 R<n> 按 'n.0' 处理"""
    seq = to_sequence(value)
    if seq in _LITERALS:
        return _LITERALS[seq][2]
    n = _r_number(value)
    return f"{n}.0" if n else ""


def to_long_version(value: str) -> str:
    """'R4' → '4.0.1'；未知的 R<n> 按 'n.0.0' 处理"""
    seq = to_sequence(value)
    if seq in _LITERALS:
        return _LITERALS[seq][3]
    n = _r_number(value)
    return f"{n}.0.0" if n else ""


def published_release(version: str) -> PublishedRelease | None:
    return PUBLISHED_RELEASES.get(version)


def release_for_ballot(ballot_prefix: str) -> PublishedRelease | None:
    """'2018Sep' → 3.5.0 对应的发布信息"""
    return _BALLOT_INDEX.get(ballot_prefix)
