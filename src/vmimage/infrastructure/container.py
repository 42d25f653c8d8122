"""Dependency injection container."""

from __future__ import annotations

from typing import Any, Callable, Optional, TypeVar

from vmimage.application.registry import ManagerRegistry
from vmimage.application.service import ImageService
from vmimage.infrastructure.config import Config
from vmimage.infrastructure.metrics import MetricsRegistry

T = TypeVar("T")


class Container:
    """Type-keyed registry of singletons and lazily built factories."""

    def __init__(self) -> None:
        self._instances: dict[type, Any] = {}
        self._factories: dict[type, Callable[[Container], Any]] = {}

    def register_singleton(self, interface: type[T], instance: T) -> None:
        """Register a ready-made instance."""
        self._instances[interface] = instance

    def register_factory(self, interface: type[T], factory: Callable[[Container], T]) -> None:
        """Register a factory; it runs once, on first resolve."""
        self._factories[interface] = factory
        self._instances.pop(interface, None)

    def resolve(self, interface: type[T]) -> T:
        """Resolve a dependency."""
        if interface in self._instances:
            return self._instances[interface]
        if interface in self._factories:
            instance = self._factories[interface](self)
            self._instances[interface] = instance
            return instance
        raise KeyError(f"No registration found for {interface.__name__}")

    def has(self, interface: type) -> bool:
        """Check if an interface is registered."""
        return interface in self._instances or interface in self._factories

    def clear(self) -> None:
        """Clear all registrations."""
        self._instances.clear()
        self._factories.clear()


def build_container(
    config: Config,
    metrics: Optional[MetricsRegistry] = None,
) -> Container:
    """Wire configuration, metrics, the manager registry and the service.

    The manager registry, and with it the default backend, is built on the
    first resolve of ManagerRegistry or ImageService. Metrics go to the
    default Prometheus registry unless a MetricsRegistry is given.
    """
    container = Container()
    container.register_singleton(Config, config)
    container.register_singleton(MetricsRegistry, metrics or MetricsRegistry())
    container.register_factory(
        ManagerRegistry,
        lambda c: ManagerRegistry(c.resolve(Config), metrics=c.resolve(MetricsRegistry)),
    )
    container.register_factory(
        ImageService,
        lambda c: ImageService(
            c.resolve(ManagerRegistry),
            metrics=c.resolve(MetricsRegistry),
            default_policy=c.resolve(Config).default_pull_policy,
        ),
    )
    return container
