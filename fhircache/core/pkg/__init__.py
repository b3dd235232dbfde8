"""包解析与缓存的组成部分

- descriptors.py: package.manifest.json / version.info 读取
- registry.py: 多注册中心清单、目录搜索与版本挑选
- ci.py: CI 构建站解析
- index.py: packages.ini 索引与目录同步
- fetcher.py: 流式下载与解压
"""

from fhircache.core.pkg.ci import CiResolver
from fhircache.core.pkg.descriptors import DescriptorFetcher
from fhircache.core.pkg.fetcher import PackageFetcher
from fhircache.core.pkg.index import CacheIndex
from fhircache.core.pkg.registry import RegistryClient

__all__ = [
    "CacheIndex",
    "CiResolver",
    "DescriptorFetcher",
    "PackageFetcher",
    "RegistryClient",
]
