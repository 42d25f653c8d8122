"""Outbound ports - External dependency interfaces for image managers.

The Docker backend talks to the docker SDK directly; the image hub and the
disk size probe are reached through the protocols below so they can be
replaced in tests.
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from typing import Protocol

from vmimage.domain.entities.image import OSInfo, PullPolicy


# =============================================================================
# Image Hub Client Port
# =============================================================================


@dataclass
class HubImage:
    """Image record as known to the image hub."""
    name: str
    username: str = ""
    tag: str = "latest"
    private: bool = False
    size: int = 0
    virtual_size: int = 0
    digest: str = ""
    snapshot: str = ""
    local_path: str = ""
    os: OSInfo = field(default_factory=OSInfo)


class ImageHubClientPort(Protocol):
    """Protocol for the image hub service.

    The hub keeps pulled images in a local cache directory and exchanges
    them with a remote hub over HTTP.

    Thread Safety:
        Concurrent calls for different images must be safe.
    """

    @property
    @abstractmethod
    def address(self) -> str:
        """Return the remote hub address."""
        ...

    @abstractmethod
    def list_local_images(self) -> list[HubImage]:
        """List images in the local cache.

        Raises:
            BackendError: If the cache cannot be read.
        """
        ...

    @abstractmethod
    def get_info(self, fullname: str) -> HubImage:
        """Get image metadata from the remote hub.

        Args:
            fullname: Canonical image name.

        Raises:
            BackendError: If the hub request fails.
        """
        ...

    @abstractmethod
    def import_image(self, fullname: str, source: str) -> HubImage:
        """Create a local image from a file or URL.

        Args:
            fullname: Canonical image name.
            source: Local path or URL of the disk image.

        Raises:
            StorageIOError: If the source cannot be copied.
            BackendError: If a remote source cannot be downloaded.
        """
        ...

    @abstractmethod
    def pull(self, fullname: str, policy: PullPolicy) -> HubImage:
        """Fetch an image into the local cache according to the policy.

        Args:
            fullname: Canonical image name.
            policy: Pull policy.

        Raises:
            BackendError: If the transfer fails, or the policy is Never and
                the image is absent.
        """
        ...

    @abstractmethod
    def push(self, image: HubImage, force: bool) -> None:
        """Upload a locally cached image to the remote hub.

        Args:
            image: Image to upload.
            force: Overwrite an existing remote image.

        Raises:
            BackendError: If the upload fails.
        """
        ...

    @abstractmethod
    def remove_local_image(self, image: HubImage) -> None:
        """Delete an image from the local cache.

        Args:
            image: Image to delete.

        Raises:
            BackendError: If the files cannot be removed.
        """
        ...


# =============================================================================
# Size Probe Port
# =============================================================================


class SizeProbePort(Protocol):
    """Protocol for reading disk image sizes."""

    @abstractmethod
    def probe(self, path: str) -> tuple[int, int]:
        """Get the actual and virtual size of a disk image.

        Args:
            path: Local disk image path.

        Returns:
            Tuple of (actual_size, virtual_size) in bytes.

        Raises:
            BackendError: If the image cannot be inspected.
        """
        ...


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    # Image hub
    "HubImage",
    "ImageHubClientPort",
    # Size probe
    "SizeProbePort",
]
