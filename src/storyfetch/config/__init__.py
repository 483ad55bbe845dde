from .config import CacheConfig, ClientConfig, MonitoringConfig, find_config_file, region_host

__all__ = ["CacheConfig", "ClientConfig", "MonitoringConfig", "find_config_file", "region_host"]
