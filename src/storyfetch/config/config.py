"""
Configuration management for storyfetch using Pydantic.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Dict, Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Setup Logging ---
log = logging.getLogger(__name__)

AGENT_NAME = "SB-PY-STORYFETCH"

REGION_HOSTS: Dict[str, str] = {
    "eu": "api.storyblok.com",
    "us": "api-us.storyblok.com",
    "ap": "api-ap.storyblok.com",
    "ca": "api-ca.storyblok.com",
    "cn": "app.storyblokchina.cn",
}


def region_host(region: str) -> str:
    """Host name serving ``region``. Unknown regions fall back to eu."""
    return REGION_HOSTS.get(region, REGION_HOSTS["eu"])


# --- Nested Configuration Models ---


class CacheConfig(BaseModel):
    """Response cache settings."""

    model_config = ConfigDict(extra="forbid")

    clear: Literal["manual", "auto", "onpreview"] = Field(
        default="manual", description="When a newer content version flushes the cache."
    )
    type: Literal["memory", "none"] = Field(default="memory", description="Built-in provider to use.")


class MonitoringConfig(BaseModel):
    """Configuration for logging and metrics."""

    model_config = ConfigDict(extra="forbid")

    log_level: str = Field(default="INFO", description="Logging level (e.g., DEBUG, INFO, WARNING).")
    log_file: Optional[str] = Field(default=None, description="Path to log file. If None, logs to stderr.")
    json_logs: bool = Field(default=False, description="Render console logs as JSON.")
    prometheus_port: Optional[int] = Field(
        default=None, description="Port for the Prometheus metrics exporter. None to disable."
    )

    @field_validator("log_file", mode="before")
    @classmethod
    def create_parent_dir(cls, v: str | Path | None) -> str | None:
        if v is None:
            return None
        path = Path(v)
        path.parent.mkdir(parents=True, exist_ok=True)
        return str(path)

    @field_validator("log_level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        level = v.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {v}")
        return level


# --- Main Configuration Class ---


class ClientConfig(BaseSettings):
    access_token: Optional[str] = Field(default=None, description="Delivery API token, sent as the token param.")
    oauth_token: Optional[str] = Field(default=None, description="Management API token, sent as Authorization.")
    region: Literal["eu", "us", "ap", "ca", "cn"] = "eu"
    https: bool = True
    endpoint: Optional[str] = Field(default=None, description="Explicit base URL. Overrides region and https.")
    version: Literal["draft", "published"] = "published"
    cache: CacheConfig = Field(default_factory=CacheConfig)
    max_retries: int = Field(default=10, ge=0, description="Retries for rate-limited (429) reads.")
    retries_delay: float = Field(default=0.3, ge=0, description="Seconds to wait between retries.")
    rate_limit: Optional[int] = Field(default=None, ge=1, description="User ceiling, capped at 1000.")
    timeout: float = Field(default=0, ge=0, description="Per-request deadline in seconds. 0 disables it.")
    resolve_nested_relations: bool = True
    response_interceptor: Optional[Callable[..., Any]] = Field(default=None, exclude=True)
    headers: Dict[str, str] = Field(default_factory=dict)
    inline_assets: bool = False
    throttle_interval: float = Field(default=1.0, gt=0, description="Length of a throttle window in seconds.")
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    model_config = SettingsConfigDict(
        env_prefix="STORYFETCH_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="forbid",
    )

    @property
    def is_management_api(self) -> bool:
        return bool(self.oauth_token)

    @property
    def base_url(self) -> str:
        if self.endpoint:
            return self.endpoint
        protocol = "https" if self.https else "http"
        api_version = "v1" if self.oauth_token else "v2"
        return f"{protocol}://{region_host(self.region)}/{api_version}"

    def default_headers(self, agent_version: str) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "SB-Agent": AGENT_NAME,
            "SB-Agent-Version": agent_version,
        }
        headers.update(self.headers)
        if self.oauth_token:
            headers["Authorization"] = self.oauth_token
        return headers

    @classmethod
    def from_yaml(cls, path: Path) -> ClientConfig:
        log.debug("Loading configuration from YAML file: %s", path)
        if not path.is_file():
            raise FileNotFoundError(f"Configuration file not found or is not a file: {path}")
        with open(path, "r", encoding="utf-8") as f:
            yaml_data = yaml.safe_load(f)
        if not yaml_data:
            log.warning("Configuration file is empty: %s. Using default settings.", path)
            return cls.model_validate({})
        return cls.model_validate(yaml_data)


def find_config_file() -> Path | None:
    current_dir = Path.cwd()
    for name in ("storyfetch.yaml", "storyfetch.yml"):
        path = current_dir / name
        if path.exists():
            return path
    return None
