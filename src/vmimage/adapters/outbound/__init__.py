"""Outbound adapters - Image manager backends and their collaborators.

- DockerImageManager: VM images as single-layer Docker images
- HubImageManager / HttpImageHubClient: image hub service with a local cache
- MockImageManager: in-memory backend for tests and development
- QemuImgSizeProbe: disk image sizes via qemu-img
"""

from vmimage.adapters.outbound.docker_manager import DockerImageManager, make_docker_client
from vmimage.adapters.outbound.hub_client import HttpImageHubClient
from vmimage.adapters.outbound.hub_manager import HubImageManager
from vmimage.adapters.outbound.mock_manager import MockBuild, MockImageManager
from vmimage.adapters.outbound.size_probe import QemuImgSizeProbe

__all__ = [
    # Docker
    "DockerImageManager",
    "make_docker_client",
    # Image hub
    "HttpImageHubClient",
    "HubImageManager",
    # Mock
    "MockBuild",
    "MockImageManager",
    # Size probe
    "QemuImgSizeProbe",
]
