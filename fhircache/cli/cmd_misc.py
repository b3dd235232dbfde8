"""CLI - 其他命令"""

from __future__ import annotations

import click


def register(group: click.Group) -> None:
    group.add_command(serve)


@click.command()
@click.option("--port", default=8888, help="端口号")
@click.option("--host", default="127.0.0.1", help="监听地址")
def serve(port: int, host: str) -> None:
    """启动包缓存 Web API"""
    from fhircache.web.app import run_server
    run_server(port=port, host=host)
