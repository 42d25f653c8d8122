"""Configuration management for vmimage."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from vmimage.domain.entities.image import PullPolicy
from vmimage.exceptions import ConfigError

DOCKER_BACKEND = "docker"
HUB_BACKEND = "vmihub"
MOCK_BACKEND = "mock"
BACKEND_TYPES = (DOCKER_BACKEND, HUB_BACKEND, MOCK_BACKEND)


class DockerConfig(BaseModel):
    """Docker backend configuration."""

    endpoint: str = Field(default="unix:///var/run/docker.sock", description="Docker daemon URL")
    api_version: str = Field(default="auto", description="Docker API version")
    prefix: str = Field(default="", description="Registry namespace prefix")
    username: str = Field(default="", description="Registry username")
    password: str = Field(default="", description="Registry password")
    timeout: int = Field(default=600, ge=1, description="Daemon request timeout seconds")

    def auth_config(self) -> Optional[dict[str, str]]:
        """Registry credentials in docker SDK form, None when unset."""
        if not self.username:
            return None
        return {"username": self.username, "password": self.password}


class HubConfig(BaseModel):
    """Image hub backend configuration."""

    addr: str = Field(default="", description="Image hub URL")
    base_dir: Path = Field(default=Path("/var/lib/vmimage/hub"), description="Local image cache")
    username: str = Field(default="", description="Hub username")
    password: str = Field(default="", description="Hub password")
    timeout: float = Field(default=600.0, gt=0, description="Hub request timeout seconds")


class PackagingConfig(BaseModel):
    """Packaging pipeline configuration."""

    image_suffix: str = Field(default=".img", description="Suffix of remote image URLs")
    checksum_suffix: str = Field(default=".sha256sum", description="Suffix of sidecar checksums")
    sidecar_timeout: float = Field(default=30.0, gt=0, description="Sidecar fetch timeout")


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8090, ge=1, le=65535, description="HTTP API port")
    metrics_port: int = Field(default=8091, ge=1, le=65535, description="Prometheus metrics port")


class ObservabilityConfig(BaseModel):
    """Observability configuration."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="json")
    otel_endpoint: str | None = Field(default=None)
    otel_service_name: str = Field(default="vmimage")


class Config(BaseSettings):
    """Main configuration for vmimage."""

    model_config = SettingsConfigDict(
        env_prefix="VMIMAGE_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    backend: str = Field(default=DOCKER_BACKEND, description="Default backend type")
    default_pull_policy: PullPolicy = Field(default=PullPolicy.IF_NOT_PRESENT)
    docker: DockerConfig = Field(default_factory=DockerConfig)
    hub: HubConfig = Field(default_factory=HubConfig)
    packaging: PackagingConfig = Field(default_factory=PackagingConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    def check_backend(self, backend_type: str | None = None) -> None:
        """Validate the settings a backend needs.

        Args:
            backend_type: Backend to check; the default backend when omitted.

        Raises:
            ConfigError: If the type is unknown or credentials are missing.
        """
        backend_type = backend_type or self.backend
        if backend_type == DOCKER_BACKEND:
            if not self.docker.username or not self.docker.password:
                raise ConfigError("docker's username or password should not be empty")
        elif backend_type == HUB_BACKEND:
            if not self.hub.username or not self.hub.password:
                raise ConfigError("image hub's username or password should not be empty")
            if not self.hub.addr:
                raise ConfigError("image hub's address should not be empty")
        elif backend_type != MOCK_BACKEND:
            raise ConfigError(f"unknown image backend type: {backend_type}")

    def ensure_directories(self) -> None:
        """Ensure required directories exist."""
        if self.backend == HUB_BACKEND:
            self.hub.base_dir.mkdir(parents=True, exist_ok=True)


@lru_cache
def get_config() -> Config:
    """Get the configuration loaded from the environment."""
    config = Config()
    config.ensure_directories()
    return config
