"""Manager registry.

Resolves one image manager per backend type. The configured default
backend is built when the registry is created; other backends are built
on first request. A failed construction is not remembered, so the next
request for that backend tries again.
"""

from __future__ import annotations

import threading
from typing import Callable, Mapping, Optional

from vmimage.adapters.outbound.docker_manager import DockerImageManager
from vmimage.adapters.outbound.hub_client import HttpImageHubClient
from vmimage.adapters.outbound.hub_manager import HubImageManager
from vmimage.adapters.outbound.mock_manager import MockImageManager
from vmimage.adapters.outbound.size_probe import QemuImgSizeProbe
from vmimage.exceptions import ConfigError
from vmimage.infrastructure.config import (
    DOCKER_BACKEND,
    HUB_BACKEND,
    MOCK_BACKEND,
    Config,
)
from vmimage.infrastructure.logging import get_logger
from vmimage.infrastructure.metrics import MetricsRegistry
from vmimage.ports.inbound import ImageManagerPort

logger = get_logger(__name__)

ManagerFactory = Callable[[Config], ImageManagerPort]


def create_docker_manager(config: Config) -> ImageManagerPort:
    """Build a Docker-backed manager."""
    config.check_backend(DOCKER_BACKEND)
    return DockerImageManager(config.docker, QemuImgSizeProbe(), packaging=config.packaging)


def create_hub_manager(config: Config) -> ImageManagerPort:
    """Build an image-hub-backed manager."""
    config.check_backend(HUB_BACKEND)
    hub = config.hub
    client = HttpImageHubClient(
        hub.addr,
        hub.base_dir,
        username=hub.username,
        password=hub.password,
        timeout=hub.timeout,
    )
    return HubImageManager(client, default_policy=config.default_pull_policy)


def create_mock_manager(config: Config) -> ImageManagerPort:
    """Build an in-memory mock manager."""
    return MockImageManager()


DEFAULT_FACTORIES: Mapping[str, ManagerFactory] = {
    DOCKER_BACKEND: create_docker_manager,
    HUB_BACKEND: create_hub_manager,
    MOCK_BACKEND: create_mock_manager,
}


class ManagerRegistry:
    """Holds at most one manager per backend type.

    Example:
        registry = ManagerRegistry(config)
        docker = registry.get_manager()          # default backend
        mock = registry.get_manager("mock")
    """

    def __init__(
        self,
        config: Config,
        factories: Optional[Mapping[str, ManagerFactory]] = None,
        metrics: Optional[MetricsRegistry] = None,
    ) -> None:
        """Create the registry and build the default backend.

        Args:
            config: Configuration; ``config.backend`` is the default type.
            factories: Backend type to factory mapping.
            metrics: Metrics registry for construction counters.

        Raises:
            ConfigError: If the default type is unknown or misconfigured.
            BackendError: If the default backend cannot be reached.
        """
        self._config = config
        self._factories = dict(factories if factories is not None else DEFAULT_FACTORIES)
        self._metrics = metrics
        self._managers: dict[str, ImageManagerPort] = {}
        self._lock = threading.Lock()
        self.get_manager(config.backend)

    @property
    def default_type(self) -> str:
        """Return the default backend type."""
        return self._config.backend

    @property
    def backend_types(self) -> list[str]:
        """Return the backend types this registry can build."""
        return sorted(self._factories)

    def get_manager(self, backend_type: str = "") -> ImageManagerPort:
        """Get the manager for a backend type, building it on first use.

        Args:
            backend_type: Backend type; the default when empty.

        Returns:
            The memoized manager.

        Raises:
            ConfigError: If the type is unknown or misconfigured.
            BackendError: If the backend cannot be reached.
        """
        backend_type = backend_type or self._config.backend
        manager = self._managers.get(backend_type)
        if manager is not None:
            return manager

        factory = self._factories.get(backend_type)
        if factory is None:
            raise ConfigError(f"invalid image manager type: {backend_type}")

        with self._lock:
            manager = self._managers.get(backend_type)
            if manager is not None:
                return manager
            try:
                manager = factory(self._config)
            except Exception:
                self._record_construction(backend_type, "failed")
                logger.warning("Failed to build image manager", backend=backend_type)
                raise
            self._managers[backend_type] = manager
            self._record_construction(backend_type, "success")
            logger.info("Built image manager", backend=backend_type)
            return manager

    def loaded_types(self) -> list[str]:
        """Return the backend types built so far."""
        return sorted(self._managers)

    def _record_construction(self, backend_type: str, status: str) -> None:
        if self._metrics is not None:
            self._metrics.image_managers_total.labels(backend=backend_type, status=status).inc()
