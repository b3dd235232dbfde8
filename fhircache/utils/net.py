"""网络工具 - URL 校验与拼接"""

from __future__ import annotations

from urllib.parse import urlparse

from fhircache.core.exceptions import ValidationError

_ALLOWED_SCHEMES = frozenset(("http", "https"))


def validate_url_scheme(url: str, *, context: str = "") -> None:
    """校验 URL 仅使用 http/https，拒绝 file:// 等协议

    Raises:
        ValidationError: URL scheme 不在白名单内
    """
    parsed = urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        label = f" ({context})" if context else ""
        raise ValidationError(
            f"不允许的 URL 协议 '{parsed.scheme}'{label}，"
            f"仅支持 http/https: {url}"
        )


def ensure_trailing_slash(url: str) -> str:
    """基础地址统一以 / 结尾，后续直接拼接相对路径"""
    return url if url.endswith("/") else url + "/"


def url_folder(url: str) -> str:
    """去掉 URL 最后一段文件名，返回以 / 结尾的目录地址"""
    if url.endswith("/"):
        return url
    return url[: url.rfind("/") + 1]
