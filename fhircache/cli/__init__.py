"""fhircache 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
全局选项在 main 中合并到 Config，并注入全局服务容器。
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import click

from fhircache import __version__
from fhircache.core.config import DEFAULT_CONFIG_FILE, Config
from fhircache.core.exceptions import FhirCacheError
from fhircache.services.container import ServiceContainer, get_container, set_container
from fhircache.utils.logger import setup_logging


def _svc() -> ServiceContainer:
    """获取全局服务容器的快捷方式"""
    return get_container()


@contextmanager
def handle_errors() -> Iterator[None]:
    """把业务异常转换为带错误码的 CLI 提示，退出码 1"""
    try:
        yield
    except FhirCacheError as e:
        raise click.ClickException(f"[{e.code}] {e}") from e


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config", "config_path",
    default=lambda: os.getenv("FHIRCACHE_CONFIG", DEFAULT_CONFIG_FILE),
    help="配置文件路径（YAML）",
)
@click.option("--cache-dir", default=None, help="缓存根目录，覆盖配置文件")
@click.option("--registry", "registries", multiple=True, help="额外的注册中心，可重复，优先于默认注册中心")
@click.option("--offline", is_flag=True, default=False, help="离线模式，只使用本地缓存")
@click.pass_context
def main(
    ctx: click.Context, config_path: str, cache_dir: str | None,
    registries: tuple[str, ...], offline: bool,
) -> None:
    """fhircache - FHIR 包解析与本地缓存"""
    with handle_errors():
        cfg = Config.from_file(config_path)
    if cache_dir:
        cfg.cache_dir = cache_dir
    if registries:
        cfg.registries = list(registries) + list(cfg.registries)
    if offline:
        cfg.offline = True

    setup_logging(
        level=os.getenv("FHIRCACHE_LOG_LEVEL", cfg.log_level),
        json_output=os.getenv("FHIRCACHE_LOG_JSON", "1" if cfg.log_json else "") == "1",
    )

    obj: dict[str, Any] = ctx.obj if isinstance(ctx.obj, dict) else {}
    set_container(ServiceContainer(config=cfg, transport=obj.get("transport")))


# 注册各领域子命令
from fhircache.cli.cmd_packages import register as _reg_packages  # noqa: E402
from fhircache.cli.cmd_inspect import register as _reg_inspect  # noqa: E402
from fhircache.cli.cmd_misc import register as _reg_misc  # noqa: E402

_reg_packages(main)
_reg_inspect(main)
_reg_misc(main)
