"""版本号比较

FHIR 包版本大多是 semver，但也有 3.5a.0、5.0.0-draft-final、5.0.0-cibuild 这类写法，
这里按包生态的惯例排序，不依赖严格 semver。
"""

from __future__ import annotations

from collections.abc import Iterable


def _compare_part(a: str, b: str) -> int:
    if a.isdigit() and b.isdigit():
        return (int(a) > int(b)) - (int(a) < int(b))
    return (a > b) - (a < b)


def _tag_rank(tag: str) -> int:
    """预发布标签权重：d(raft) < s(napshot) < b(allot) < draft-final"""
    if not tag:
        return 0
    lowered = tag.lower()
    rank = 0
    if lowered.startswith("s"):
        rank = 200
    elif lowered.startswith("b"):
        rank = 300
    elif lowered.startswith("d"):
        rank = 400 if "final" in lowered else 100
    if lowered[-1].isdigit():
        rank += int(lowered[-1])
    return rank


def is_first_higher_version(first: str, second: str) -> bool:
    """first 是否严格高于 second；任一为空时非空的一方更高"""
    if not second:
        return bool(first)
    if not first:
        return False

    first_core, _, first_tag = first.partition("-")
    second_core, _, second_tag = second.partition("-")
    first_parts = first_core.split(".")
    second_parts = second_core.split(".")

    for a, b in zip(first_parts, second_parts):
        cmp = _compare_part(a, b)
        if cmp:
            return cmp > 0

    if len(first_parts) != len(second_parts):
        return len(first_parts) > len(second_parts)

    # 主体相同，比较标签
    if not first_tag or not second_tag:
        return not first_tag and bool(second_tag)
    if first_tag.lower().endswith("final") != second_tag.lower().endswith("final"):
        return first_tag.lower().endswith("final")
    if "cibuild" in (first_tag.lower(), second_tag.lower()):
        return second_tag.lower() == "cibuild" and first_tag.lower() != "cibuild"
    return _tag_rank(first_tag) > _tag_rank(second_tag)


def range_root(version_range: str) -> str:
    """'3.1.x' → '3.1'"""
    if version_range.lower().endswith(".x"):
        return version_range[:-2]
    return version_range


def matches_range(version: str, version_range: str) -> bool:
    """按段对齐的前缀匹配：3.1 匹配 3.1 / 3.1.5 / 3.1-ballot，不匹配 3.10.0"""
    root = range_root(version_range)
    if not root:
        return True
    return version == root or version.startswith(root + ".") or version.startswith(root + "-")


def highest_version(candidates: Iterable[str], version_range: str = "") -> str:
    """候选版本中最高的一个，可选限定范围；没有候选返回空串"""
    best = ""
    for v in candidates:
        if version_range and not matches_range(v, version_range):
            continue
        if is_first_higher_version(v, best):
            best = v
    return best
