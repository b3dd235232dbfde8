"""文件读写工具

- atomic_write: 同目录临时文件 + os.replace，缓存索引和配置都依赖它避免半写文件
- load_yaml: 读取 YAML 配置，带大小上限和空值保护
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# 配置文件最大 1MB，超过视为误指向了其他文件
MAX_YAML_SIZE = 1024 * 1024


def atomic_write(path: Path, content: str) -> None:
    """原子写入文本文件

    先在目标目录创建临时文件写入内容，再 os.replace 覆盖目标。
    任何一步失败都会删除临时文件并重新抛出原异常，目标文件保持原样。
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp, str(path))
    except Exception:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


def load_yaml(path: str | Path) -> dict[str, Any]:
    """读取 YAML 文件为字典

    文件不存在、为空或顶层不是字典时返回空字典。

    异常:
        ValueError: 文件超过 MAX_YAML_SIZE
        yaml.YAMLError: YAML 语法错误
        OSError: 读取失败
    """
    p = Path(path)
    if not p.exists():
        return {}

    file_size = p.stat().st_size
    if file_size > MAX_YAML_SIZE:
        raise ValueError(
            f"YAML 文件过大: {p} ({file_size} 字节), "
            f"超过限制 {MAX_YAML_SIZE} 字节"
        )

    try:
        with open(p, encoding="utf-8") as f:
            result = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.error("解析 YAML 文件失败: %s, 错误: %s", p, e)
        raise
    except OSError as e:
        logger.error("读取文件失败: %s, 错误: %s", p, e)
        raise

    if result is None:
        return {}
    if not isinstance(result, dict):
        logger.warning(
            "%s 内容不是字典类型 (实际类型: %s)，按空配置处理",
            p, type(result).__name__,
        )
        return {}
    return result
