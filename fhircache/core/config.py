"""集中配置管理

每个 PackageCache 持有自己的 Config 实例，互不共享；
全局 get_config()/init_config() 只供 CLI / Web 入口使用。
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path

from fhircache.core.exceptions import ConfigError
from fhircache.utils.net import ensure_trailing_slash
from fhircache.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

DEFAULT_REGISTRIES = (
    "http://packages.fhir.org/",
    "http://packages2.fhir.org/packages/",
)
DEFAULT_CONFIG_FILE = "~/.fhir/fhircache.yml"


@dataclass
class Config:
    """缓存客户端配置"""

    # 目录
    cache_dir: str = "~/.fhir"

    # 远端
    registries: list[str] = field(default_factory=list)
    use_default_registries: bool = True
    publication_url: str = "http://hl7.org/fhir/"
    ci_url: str = "http://build.fhir.org/"
    qas_url: str = "https://build.fhir.org/ig/qas.json"
    ci_release_tarball: str = "package.{release}.tgz"

    # 网络
    http_timeout: float = 30.0
    max_workers: int = 8
    offline: bool = False

    # 日志
    log_level: str = "INFO"
    log_json: bool = False

    # 自定义扩展 (放不到字段里的配置项)
    extra: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        if isinstance(self.registries, str):
            self.registries = [self.registries]
        if self.http_timeout <= 0:
            raise ConfigError(f"http_timeout 必须为正数: {self.http_timeout}")
        if self.max_workers < 1:
            raise ConfigError(f"max_workers 至少为 1: {self.max_workers}")
        if "{release}" not in self.ci_release_tarball:
            raise ConfigError(
                f"ci_release_tarball 缺少 {{release}} 占位符: {self.ci_release_tarball}"
            )

    @classmethod
    def from_file(cls, path: str = DEFAULT_CONFIG_FILE) -> Config:
        """从 YAML 文件加载配置，不存在则返回默认"""
        data = load_yaml(Path(path).expanduser())
        if not data:
            return cls()
        known = {f.name for f in cls.__dataclass_fields__.values()}
        matched = {k: v for k, v in data.items() if k in known and k != "extra"}
        extra = {k: v for k, v in data.items() if k not in known}
        try:
            cfg = cls(**matched)
        except TypeError as e:
            raise ConfigError(f"配置文件内容无效: {path} - {e}") from e
        cfg.extra = extra
        return cfg

    def to_dict(self) -> dict:
        return asdict(self)

    @property
    def cache_path(self) -> Path:
        return Path(self.cache_dir).expanduser()

    def registry_urls(self) -> list[str]:
        """按优先级排列的注册中心列表：自定义在前，默认在后，去重"""
        urls: list[str] = []
        candidates = list(self.registries)
        if self.use_default_registries:
            candidates.extend(DEFAULT_REGISTRIES)
        for url in candidates:
            normalized = ensure_trailing_slash(url.strip())
            if normalized != "/" and normalized not in urls:
                urls.append(normalized)
        return urls


# 全局单例，首次 import 时不加载文件；由 CLI / Web 入口显式初始化
_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化则返回默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config()
    return _current


def init_config(path: str = DEFAULT_CONFIG_FILE) -> Config:
    """从文件初始化全局配置"""
    global _current  # noqa: PLW0603
    _current = Config.from_file(path)
    logger.info("配置已加载: %s", path)
    return _current
