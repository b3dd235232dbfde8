"""CLI - 指令分类与注册中心查询（不下载）"""

from __future__ import annotations

import json

import click

from fhircache.cli import _svc, handle_errors
from fhircache.core.classifier import parse_directive


def register(group: click.Group) -> None:
    group.add_command(parse)
    group.add_command(versions)


@click.command()
@click.argument("directive")
def parse(directive: str) -> None:
    """显示指令的分类结果（纯本地计算）"""
    with handle_errors():
        d = parse_directive(directive, publication_base=_svc().config.publication_url)
    click.echo(json.dumps(d.to_dict(), ensure_ascii=False, indent=2))


@click.command()
@click.argument("package_id")
def versions(package_id: str) -> None:
    """列出各注册中心已知的版本和 dist-tags"""
    with handle_errors():
        cache = _svc().cache
        d = cache.registry.fetch_manifests(cache.parse(package_id))
    if not d.manifests:
        click.echo(f"没有注册中心收录: {package_id}")
        return
    for registry, m in d.manifests.items():
        tags = ", ".join(f"{k}={v}" for k, v in m.dist_tags.items()) or "-"
        click.echo(f"{registry}  [{tags}]")
        for v in m.versions:
            click.echo(f"  {v}")
