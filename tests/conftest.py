"""Pytest configuration and fixtures for vmimage tests."""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Generator

import pytest
from prometheus_client import CollectorRegistry

from vmimage.application.registry import ManagerRegistry
from vmimage.application.service import ImageService
from vmimage.infrastructure.config import Config, HubConfig
from vmimage.infrastructure.metrics import MetricsRegistry


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_config(temp_dir: Path) -> Config:
    """Provide a test configuration with the mock backend as default."""
    return Config(
        backend="mock",
        hub=HubConfig(
            addr="http://hub.test",
            base_dir=temp_dir / "hub",
            username="alice",
            password="secret",
        ),
    )


@pytest.fixture
def collector() -> CollectorRegistry:
    """Provide an isolated Prometheus registry."""
    return CollectorRegistry(auto_describe=True)


@pytest.fixture
def metrics_registry(collector: CollectorRegistry) -> MetricsRegistry:
    """Provide a fresh metrics registry."""
    return MetricsRegistry(registry=collector)


@pytest.fixture
def disk_image(temp_dir: Path) -> Path:
    """Provide a small raw disk image file."""
    path = temp_dir / "src" / "ubuntu.img"
    path.parent.mkdir()
    path.write_bytes(b"\x00" * 4096 + b"bootsector" + b"\x00" * 4096)
    return path


@pytest.fixture
def registry(test_config: Config, metrics_registry: MetricsRegistry) -> ManagerRegistry:
    """Provide a manager registry defaulting to the mock backend."""
    return ManagerRegistry(test_config, metrics=metrics_registry)


@pytest.fixture
def service(registry: ManagerRegistry, metrics_registry: MetricsRegistry) -> ImageService:
    """Provide an image service over the mock backend."""
    return ImageService(registry, metrics=metrics_registry)


def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
