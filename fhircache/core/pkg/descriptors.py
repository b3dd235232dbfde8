"""远端描述文件读取

package.manifest.json 与 version.info 都是小文件，读取失败只代表“没有答案”，统一返回 None。
"""

from __future__ import annotations

import logging

from fhircache.core.exceptions import TransportError
from fhircache.core.models import PackageDetails, VersionInfo
from fhircache.core.protocols import HttpTransport

logger = logging.getLogger(__name__)


class DescriptorFetcher:
    """DescriptorSource 的 HTTP 实现"""

    def __init__(self, transport: HttpTransport) -> None:
        self.transport = transport

    def _get_text(self, url: str, accept: str) -> str | None:
        try:
            resp = self.transport.get(url, accept=accept)
        except TransportError as e:
            logger.info("描述文件请求失败: %s - %s", url, e)
            return None
        if resp.status == 404:
            logger.debug("描述文件不存在: %s", url)
            return None
        if not resp.ok:
            logger.info("描述文件请求返回 %d: %s", resp.status, url)
            return None
        return resp.text()

    def fetch_manifest(self, url: str) -> PackageDetails | None:
        text = self._get_text(url, "application/json")
        if text is None:
            return None
        details = PackageDetails.loads(text)
        if details is None or not details.name:
            logger.info("包清单内容无效: %s", url)
            return None
        return details

    def fetch_version_info(self, url: str) -> VersionInfo | None:
        text = self._get_text(url, "text/plain")
        if text is None:
            return None
        info = VersionInfo.parse(text)
        if info is None:
            logger.info("version.info 缺少 [FHIR] 段: %s", url)
        return info
