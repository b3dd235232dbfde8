"""服务容器 - CLI / Web 共享的懒加载依赖

库代码直接构造 PackageCache(config)；
CLI 和 Web 入口通过 get_container() 获取同一组实例，配置只加载一次。

用法:
    container = ServiceContainer(config=Config(cache_dir="/tmp/fhir"))
    entry = container.cache.resolve("hl7.fhir.r4.core#4.0.1")

    from fhircache.services.container import get_container
    get_container().cache.local_packages()
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fhircache.core.config import Config
    from fhircache.core.package_cache import PackageCache
    from fhircache.core.protocols import HttpTransport

logger = logging.getLogger(__name__)


class ServiceContainer:
    """懒加载服务容器，同一容器内共享传输层和缓存客户端"""

    def __init__(
        self,
        config: Config | None = None,
        transport: HttpTransport | None = None,
    ) -> None:
        self._instances: dict[str, object] = {}
        self._lock = threading.Lock()
        if config is None:
            from fhircache.core.config import get_config
            config = get_config()
        self._config = config
        if transport is not None:
            self._instances["transport"] = transport

    @property
    def config(self) -> Config:
        return self._config

    @property
    def transport(self) -> HttpTransport:
        with self._lock:
            if "transport" not in self._instances:
                from fhircache.utils.http import UrllibTransport
                self._instances["transport"] = UrllibTransport(
                    timeout=self._config.http_timeout,
                )
            return self._instances["transport"]  # type: ignore[return-value]

    @property
    def cache(self) -> PackageCache:
        transport = self.transport
        with self._lock:
            if "cache" not in self._instances:
                from fhircache.core.package_cache import PackageCache
                logger.debug("初始化包缓存: %s", self._config.cache_path)
                self._instances["cache"] = PackageCache(self._config, transport)
            return self._instances["cache"]  # type: ignore[return-value]


# ---- 全局单例 ----

_global: ServiceContainer | None = None
_global_lock = threading.Lock()


def get_container() -> ServiceContainer:
    """获取全局 ServiceContainer 单例（线程安全）"""
    global _global  # noqa: PLW0603
    if _global is not None:
        return _global
    with _global_lock:
        if _global is None:
            _global = ServiceContainer()
        return _global


def set_container(container: ServiceContainer) -> None:
    """替换全局容器（CLI 按命令行参数构造后注入）"""
    global _global  # noqa: PLW0603
    with _global_lock:
        _global = container


def reset_container() -> None:
    """重置全局容器（仅用于测试）"""
    global _global  # noqa: PLW0603
    with _global_lock:
        _global = None
