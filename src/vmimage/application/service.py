"""Image service.

Entry point for callers that do not care which backend they talk to. Each
operation resolves a manager from the registry (the default backend unless
one is named), runs to completion and records metrics and a trace span.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Generator, Optional

from vmimage.application.registry import ManagerRegistry
from vmimage.domain.entities.image import Image, PullPolicy
from vmimage.domain.services.streams import drain_stream
from vmimage.exceptions import VMImageError
from vmimage.infrastructure.logging import get_logger
from vmimage.infrastructure.metrics import MetricsRegistry
from vmimage.infrastructure.tracing import trace_span
from vmimage.ports.inbound import ImageManagerPort

logger = get_logger(__name__)


class ImageService:
    """Runs image operations against registry-selected backends.

    Example:
        service = ImageService(ManagerRegistry(config))
        image = service.new_image("alice/ubuntu:20.04")
        service.prepare("/data/ubuntu.img", image)
        service.push(image)
    """

    def __init__(
        self,
        registry: ManagerRegistry,
        metrics: Optional[MetricsRegistry] = None,
        default_policy: PullPolicy = PullPolicy.IF_NOT_PRESENT,
    ):
        self._registry = registry
        self._metrics = metrics
        self._default_policy = default_policy

    @property
    def registry(self) -> ManagerRegistry:
        """Return the manager registry."""
        return self._registry

    def manager(self, backend: str = "") -> ImageManagerPort:
        """Get the manager for a backend, the default when empty."""
        return self._registry.get_manager(backend)

    def new_image(self, fullname: str, backend: str = "") -> Image:
        """Create an unresolved image."""
        return self.manager(backend).new_image(fullname)

    def list_local_images(self, owner: str = "", backend: str = "") -> list[Image]:
        """List images present on the backend."""
        manager = self.manager(backend)
        with self._operation(manager, "list", owner):
            return manager.list_local_images(owner)

    def load_image(self, fullname: str, backend: str = "") -> Image:
        """Pull an image and load its metadata."""
        manager = self.manager(backend)
        with self._operation(manager, "load", fullname):
            return manager.load_image(fullname)

    def prepare(self, source: str, image: Image, backend: str = "") -> Image:
        """Package a local file or URL as ``image`` and wait for the build."""
        manager = self.manager(backend)
        with self._operation(manager, "prepare", image.fullname):
            drain_stream(manager.prepare(source, image), operation="prepare", image=image.fullname)
        return image

    def pull(self, image: Image, policy: Optional[PullPolicy] = None, backend: str = "") -> Image:
        """Pull an image and wait for the transfer to finish."""
        manager = self.manager(backend)
        with self._operation(manager, "pull", image.fullname):
            stream = manager.pull(image, policy or self._default_policy)
            drain_stream(stream, operation="pull", image=image.fullname)
        return image

    def push(self, image: Image, force: bool = False, backend: str = "") -> None:
        """Push an image and wait for the upload to finish."""
        manager = self.manager(backend)
        with self._operation(manager, "push", image.fullname):
            drain_stream(manager.push(image, force), operation="push", image=image.fullname)

    def remove_local(self, image: Image, backend: str = "") -> None:
        """Remove the local backend copy of an image."""
        manager = self.manager(backend)
        with self._operation(manager, "remove", image.fullname):
            manager.remove_local(image)

    def check_health(self, backend: str = "") -> None:
        """Check that a backend is reachable."""
        manager = self.manager(backend)
        with self._operation(manager, "health", ""):
            manager.check_health()

    @contextmanager
    def _operation(self, manager: ImageManagerPort, operation: str, target: str) -> Generator[None, None, None]:
        backend = manager.backend_type
        log = logger.bind(backend=backend, operation=operation, image=target)
        start = time.perf_counter()
        status = "success"
        with trace_span(f"image.{operation}", {"image.backend": backend, "image.name": target}):
            try:
                yield
            except VMImageError as e:
                status = "error"
                log.warning("Image operation failed", error=str(e), error_type=type(e).__name__)
                raise
            except Exception:
                status = "error"
                log.exception("Image operation failed unexpectedly")
                raise
            finally:
                duration = time.perf_counter() - start
                if self._metrics is not None:
                    self._metrics.record_operation(backend, operation, status, duration)
        log.info("Image operation completed", duration_seconds=round(duration, 3))
