"""fhircache - FHIR 包解析与本地缓存客户端

将 `<package-id>#<version>` 形式的指令解析为精确版本，
从注册中心 / CI 构建站 / 官方发布站点下载 tarball，并维护本地包缓存。
"""

__version__ = "0.1.0"
