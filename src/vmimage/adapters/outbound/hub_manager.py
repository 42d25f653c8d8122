"""Image-hub-backed image manager."""

from __future__ import annotations

import logging
import socket
from urllib.parse import urlparse

from vmimage.domain.entities.image import Image, PullPolicy
from vmimage.domain.services.streams import ProgressStream, empty_stream
from vmimage.exceptions import NetworkError
from vmimage.infrastructure.config import HUB_BACKEND
from vmimage.ports.outbound import HubImage, ImageHubClientPort

logger = logging.getLogger(__name__)

_DEFAULT_PORTS = {"http": 80, "https": 443}


def to_hub_image(image: Image) -> HubImage:
    """Convert an Image into the hub's record type."""
    return HubImage(
        name=image.name,
        username=image.owner,
        tag=image.tag,
        private=image.private,
        size=image.size,
        virtual_size=image.virtual_size,
        digest=image.digest or "",
        snapshot=image.snapshot,
        local_path=image.local_path,
        os=image.os,
    )


def apply_hub_image(image: Image, record: HubImage) -> Image:
    """Copy hub metadata onto an Image."""
    image.tag = record.tag or image.tag
    image.private = record.private
    image.size = record.size
    image.virtual_size = record.virtual_size
    image.digest = record.digest or image.digest
    image.snapshot = record.snapshot
    image.local_path = record.local_path or image.local_path
    image.os = record.os
    image.distro = record.os.distrib
    return image


class HubImageManager:
    """ImageManagerPort implementation on the image hub service.

    Transfers complete inside each call, so returned streams are empty.
    """

    def __init__(
        self,
        client: ImageHubClientPort,
        default_policy: PullPolicy = PullPolicy.IF_NOT_PRESENT,
        health_timeout: float = 1.0,
    ):
        self._client = client
        self._default_policy = default_policy
        self._health_timeout = health_timeout

    @property
    def backend_type(self) -> str:
        """Return the backend type (always vmihub)."""
        return HUB_BACKEND

    def list_local_images(self, owner: str = "") -> list[Image]:
        """List images in the hub's local cache."""
        images = []
        for record in self._client.list_local_images():
            if owner and record.username != owner:
                continue
            image = Image(name=record.name, owner=record.username, tag=record.tag)
            images.append(apply_hub_image(image, record))
        return images

    def new_image(self, fullname: str) -> Image:
        """Create an unresolved image without contacting the hub."""
        return Image.from_fullname(fullname)

    def load_image(self, fullname: str) -> Image:
        """Pull an image with the default policy and load its metadata."""
        image = self.new_image(fullname)
        self.pull(image, self._default_policy)
        return image

    def prepare(self, source: str, image: Image) -> ProgressStream:
        """Import a local file or URL into the hub cache as ``image``."""
        record = self._client.import_image(image.fullname, source)
        apply_hub_image(image, record)
        return empty_stream()

    def pull(self, image: Image, policy: PullPolicy = PullPolicy.IF_NOT_PRESENT) -> ProgressStream:
        """Fetch an image into the hub cache according to ``policy``."""
        record = self._client.pull(image.fullname, policy)
        apply_hub_image(image, record)
        image.mark_pulled()
        return empty_stream()

    def push(self, image: Image, force: bool = False) -> ProgressStream:
        """Upload an image to the remote hub."""
        self._client.push(to_hub_image(image), force)
        return empty_stream()

    def remove_local(self, image: Image) -> None:
        """Delete an image from the hub cache."""
        self._client.remove_local_image(to_hub_image(image))
        image.mark_removed()
        logger.info(f"Removed local image {image.fullname}")

    def check_health(self) -> None:
        """Check that the hub host accepts TCP connections."""
        parsed = urlparse(self._client.address)
        host = parsed.hostname
        if not host:
            return
        port = parsed.port or _DEFAULT_PORTS.get(parsed.scheme, 80)
        try:
            with socket.create_connection((host, port), timeout=self._health_timeout):
                pass
        except OSError as e:
            raise NetworkError(f"failed to reach image hub {host}: {e}", {"host": host, "port": port}) from e
