"""Inbound ports - API contracts for image managers.

Every backend (Docker, image hub, mock) implements the same capability
set so that callers can switch backends by configuration only.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Protocol

from vmimage.domain.entities.image import Image, PullPolicy
from vmimage.domain.services.streams import ProgressStream


# =============================================================================
# Image Manager Port
# =============================================================================


class ImageManagerPort(Protocol):
    """Protocol for VM image operations against one backend.

    Operations returning a ``ProgressStream`` may stream backend progress;
    callers that only need completion should pass it to ``drain_stream``.

    Thread Safety:
        Safe for concurrent use if the backend client is.

    Example:
        image = manager.new_image("alice/ubuntu:20.04")
        drain_stream(manager.prepare("/data/ubuntu.img", image))
        drain_stream(manager.push(image))
    """

    @property
    @abstractmethod
    def backend_type(self) -> str:
        """Return the backend type this manager serves."""
        ...

    @abstractmethod
    def list_local_images(self, owner: str = "") -> list[Image]:
        """List images present on the local backend.

        Args:
            owner: Only list images of this owner; all when empty.

        Returns:
            Images with identity populated.

        Raises:
            BackendError: If listing fails.
        """
        ...

    @abstractmethod
    def new_image(self, fullname: str) -> Image:
        """Create an unresolved image without backend I/O.

        Args:
            fullname: ``[owner/]name[:tag]``.

        Returns:
            Image with identity only.

        Raises:
            InvalidInputError: If the name is malformed.
        """
        ...

    @abstractmethod
    def load_image(self, fullname: str) -> Image:
        """Pull an image and load its metadata.

        Blocks until the pull has completed.

        Args:
            fullname: ``[owner/]name[:tag]``.

        Returns:
            Pulled image with metadata populated.

        Raises:
            InvalidInputError: If the name is malformed.
            BackendError: If pull or inspection fails.
        """
        ...

    @abstractmethod
    def prepare(self, source: str, image: Image) -> ProgressStream:
        """Package a local file or URL as the given image.

        Args:
            source: Local path or remote image URL.
            image: Target image identity.

        Returns:
            Build progress stream.

        Raises:
            InvalidInputError: If the source is unsupported.
            NetworkError: If a remote digest cannot be fetched.
            StorageIOError: On local filesystem failures.
            BackendError: If the build fails.
        """
        ...

    @abstractmethod
    def pull(self, image: Image, policy: PullPolicy = PullPolicy.IF_NOT_PRESENT) -> ProgressStream:
        """Fetch an image from the backend's remote store.

        Args:
            image: Image to pull.
            policy: Pull policy; only honoured by some backends.

        Returns:
            Pull progress stream.

        Raises:
            BackendError: If the pull fails.
        """
        ...

    @abstractmethod
    def push(self, image: Image, force: bool = False) -> ProgressStream:
        """Publish an image to the backend's remote store.

        Args:
            image: Image to push.
            force: Overwrite remote state / push all tags.

        Returns:
            Push progress stream.

        Raises:
            BackendError: If the push fails.
        """
        ...

    @abstractmethod
    def remove_local(self, image: Image) -> None:
        """Delete the local backend copy, even if it is in use.

        The image struct is marked removed and should be discarded.

        Args:
            image: Image to remove.

        Raises:
            BackendError: If removal fails.
        """
        ...

    @abstractmethod
    def check_health(self) -> None:
        """Check that the backend is reachable.

        Raises:
            NetworkError: If the backend cannot be reached.
        """
        ...


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    "ImageManagerPort",
]
