"""统一异常体系

所有业务异常继承 FhirCacheError，每个子类带稳定的 code。
Web 层据此映射 HTTP 状态码，CLI 层据此输出友好提示。
"""

from __future__ import annotations


class FhirCacheError(Exception):
    """包缓存客户端基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(FhirCacheError):
    """配置文件缺失或内容无效"""

    code = "CONFIG_ERROR"


class DirectiveParseError(FhirCacheError):
    """指令或 URL 不符合任何可识别的形式，不会重试"""

    code = "DIRECTIVE_PARSE_ERROR"

    def __init__(self, message: str, directive: str = "") -> None:
        super().__init__(message)
        self.directive = directive


class ResolutionError(FhirCacheError):
    """所有解析策略均未得到精确版本或下载地址"""

    code = "RESOLUTION_ERROR"

    def __init__(self, message: str, directive: str = "") -> None:
        super().__init__(message)
        self.directive = directive


class DownloadError(FhirCacheError):
    """所有候选下载地址均失败"""

    code = "DOWNLOAD_ERROR"

    def __init__(self, message: str, urls: list[str] | None = None) -> None:
        super().__init__(message)
        self.urls = urls or []


class TransportError(FhirCacheError):
    """HTTP 传输层失败（连接、超时、非预期状态码）"""

    code = "TRANSPORT_ERROR"

    def __init__(self, message: str, url: str = "", status: int = 0) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


class NotFoundError(TransportError):
    """远端返回 404"""

    code = "NOT_FOUND"


class OperationCancelled(FhirCacheError):
    """调用方取消了解析"""

    code = "CANCELLED"


class ValidationError(FhirCacheError, ValueError):
    """输入数据校验失败"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []
