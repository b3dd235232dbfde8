"""CLI - 包解析与缓存管理命令"""

from __future__ import annotations

import json

import click

from fhircache.cli import _svc, handle_errors
from fhircache.core.models import PackageCacheEntry


def register(group: click.Group) -> None:
    group.add_command(resolve)
    group.add_command(resolve_url)
    group.add_command(list_packages)
    group.add_command(delete)
    group.add_command(sync)
    group.add_command(add_local)
    group.add_command(manifest)


def _echo_entry(entry: PackageCacheEntry, as_json: bool) -> None:
    if as_json:
        click.echo(json.dumps(entry.to_dict(), ensure_ascii=False, indent=2))
        return
    click.echo(f"就绪: {entry.directive} -> {entry.directory}")
    click.echo(f"  名称: {entry.name}  版本: {entry.version}  FHIR: {entry.fhir_release or '-'}")


@click.command()
@click.argument("directive")
@click.option("--release", default="", help="目标 FHIR 版本（如 R4），只对无后缀的指南生效")
@click.option("--json", "as_json", is_flag=True, help="以 JSON 输出")
def resolve(directive: str, release: str, as_json: bool) -> None:
    """解析并下载包（已缓存则直接返回），如 hl7.fhir.r4.core#4.0.1"""
    with handle_errors():
        entry = _svc().cache.resolve(directive, fhir_release=release)
    _echo_entry(entry, as_json)


@click.command(name="resolve-url")
@click.argument("url")
@click.option("--json", "as_json", is_flag=True, help="以 JSON 输出")
def resolve_url(url: str, as_json: bool) -> None:
    """按发布站点 / CI 构建站 URL 解析并下载包"""
    with handle_errors():
        entry = _svc().cache.resolve_url(url)
    _echo_entry(entry, as_json)


@click.command(name="list")
@click.argument("name", default="")
@click.option("--exact", is_flag=True, help="包名完全匹配（默认子串匹配）")
def list_packages(name: str, exact: bool) -> None:
    """列出本地已缓存的包"""
    entries = _svc().cache.local_packages(name, exact=exact)
    if not entries:
        click.echo("没有已缓存的包。")
        return
    for e in entries:
        click.echo(
            f"  {e.directive:50s} {e.fhir_release or '-':6s} "
            f"{e.download_date_time:14s} {e.size:>12d}"
        )


@click.command()
@click.argument("directive")
def delete(directive: str) -> None:
    """删除已缓存的包（name#version）"""
    with handle_errors():
        removed = _svc().cache.delete_package(directive)
    if removed:
        click.echo(f"已删除: {directive}")
    else:
        click.echo(f"缓存中不存在: {directive}")


@click.command()
def sync() -> None:
    """对齐索引与缓存目录"""
    modified = _svc().cache.synchronize()
    click.echo("索引已更新。" if modified else "索引与目录一致，无需修改。")


@click.command(name="add-local")
@click.argument("tgz_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--alias", default="", help="以别名代替包内声明的版本作为目录名")
def add_local(tgz_path: str, alias: str) -> None:
    """把本地 tarball 加入缓存"""
    with handle_errors():
        entry = _svc().cache.add_local_package(tgz_path, alias=alias)
    click.echo(f"已加入: {entry.directive} -> {entry.directory}")


@click.command()
@click.argument("directive")
def manifest(directive: str) -> None:
    """显示已缓存包的 package.json 摘要"""
    details = _svc().cache.get_manifest(directive)
    if details is None:
        raise click.ClickException(f"缓存中不存在或缺少 package.json: {directive}")
    click.echo(f"名称: {details.name}")
    click.echo(f"版本: {details.version}")
    click.echo(f"FHIR: {', '.join(details.fhir_versions) or '-'}")
    if details.canonical:
        click.echo(f"Canonical: {details.canonical}")
    if details.title:
        click.echo(f"标题: {details.title}")
    for dep, ver in details.dependencies.items():
        click.echo(f"  依赖 {dep}#{ver}")
