"""Mock image manager for testing and development.

This adapter provides an in-memory implementation of the ImageManagerPort
protocol. Builds go through the real packaging pipeline; the mock builder
reads the generated build context instead of handing it to Docker.
"""

from __future__ import annotations

import logging
import tarfile
import threading
from dataclasses import dataclass, field, replace
from typing import BinaryIO, Optional

import httpx

from vmimage.domain.entities.image import Image, PullPolicy
from vmimage.domain.services.packaging import DIGEST_LABEL, PackagingPipeline
from vmimage.domain.services.streams import ProgressStream, drain_stream
from vmimage.exceptions import BackendError, NetworkError
from vmimage.infrastructure.config import MOCK_BACKEND

logger = logging.getLogger(__name__)


@dataclass
class MockBuild:
    """A build submitted to the mock backend."""

    tag: str
    recipe_name: str
    recipe: str
    members: list[str] = field(default_factory=list)

    @property
    def digest(self) -> str:
        """Digest embedded in the recipe label."""
        for line in self.recipe.splitlines():
            if line.startswith(f"LABEL {DIGEST_LABEL}="):
                return line.split("=", 1)[1]
        return ""


class MockImageManager:
    """Mock implementation of ImageManagerPort for testing.

    Keeps a local and a remote image set in memory. Images can be marked
    in use to check that removal still succeeds.

    Example:
        manager = MockImageManager()
        image = manager.new_image("alice/ubuntu:20.04")
        drain_stream(manager.prepare("/data/ubuntu.img", image))
        drain_stream(manager.push(image))
    """

    def __init__(self, http_client: Optional[httpx.Client] = None):
        """Initialize mock image manager."""
        self._local: dict[str, Image] = {}
        self._remote: dict[str, Image] = {}
        self._in_use: set[str] = set()
        self._lock = threading.Lock()
        self.builds: list[MockBuild] = []
        self.calls: list[tuple[str, str]] = []
        self.healthy = True
        self._pipeline = PackagingPipeline(builder=self._build, http_client=http_client)

    @property
    def backend_type(self) -> str:
        """Return the backend type (always mock)."""
        return MOCK_BACKEND

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def add_remote_image(self, image: Image) -> None:
        """Seed the remote store."""
        with self._lock:
            self._remote[image.fullname] = replace(image)

    def mark_in_use(self, fullname: str) -> None:
        """Pretend a local image is referenced by a running VM."""
        with self._lock:
            self._in_use.add(fullname)

    def is_in_use(self, fullname: str) -> bool:
        """Check if an image is marked in use."""
        return fullname in self._in_use

    def has_local(self, fullname: str) -> bool:
        """Check if an image is present locally."""
        return fullname in self._local

    def has_remote(self, fullname: str) -> bool:
        """Check if an image has been pushed."""
        return fullname in self._remote

    # ------------------------------------------------------------------
    # ImageManagerPort
    # ------------------------------------------------------------------

    def list_local_images(self, owner: str = "") -> list[Image]:
        """List local images, optionally for one owner."""
        self.calls.append(("list_local_images", owner))
        with self._lock:
            return [
                replace(img)
                for img in self._local.values()
                if not owner or img.owner == owner
            ]

    def new_image(self, fullname: str) -> Image:
        """Create an unresolved image."""
        return Image.from_fullname(fullname)

    def load_image(self, fullname: str) -> Image:
        """Pull an image and copy its metadata."""
        self.calls.append(("load_image", fullname))
        image = self.new_image(fullname)
        drain_stream(self.pull(image), operation="pull", image=fullname)
        return image

    def prepare(self, source: str, image: Image) -> ProgressStream:
        """Package a source through the real pipeline into the local set."""
        self.calls.append(("prepare", image.fullname))
        stream = self._pipeline.prepare(source, image.fullname).stream
        with self._lock:
            built = self._local[image.fullname]
        image.digest = built.digest
        image.local_path = built.local_path
        image.size = built.size
        return stream

    def pull(self, image: Image, policy: PullPolicy = PullPolicy.IF_NOT_PRESENT) -> ProgressStream:
        """Copy an image from the remote set into the local set."""
        self.calls.append(("pull", image.fullname))
        fullname = image.fullname
        with self._lock:
            local = self._local.get(fullname)
            remote = self._remote.get(fullname)
            if policy == PullPolicy.NEVER and local is None:
                raise BackendError("image not present locally", operation="pull", image=fullname)
            if local is None or policy == PullPolicy.ALWAYS:
                if remote is None:
                    raise BackendError("image not found in remote store", operation="pull", image=fullname)
                local = replace(remote)
                self._local[fullname] = local

        image.digest = local.digest
        image.size = local.size
        image.virtual_size = local.virtual_size
        image.local_path = local.local_path
        image.distro = local.distro
        image.mark_pulled()
        logger.debug(f"Mock pulled {fullname}")
        return iter([{"status": f"Pulled {fullname}"}])

    def push(self, image: Image, force: bool = False) -> ProgressStream:
        """Copy a local image into the remote set.

        An existing remote copy is only replaced when ``force`` is set.
        """
        self.calls.append(("push", image.fullname))
        fullname = image.fullname
        with self._lock:
            local = self._local.get(fullname)
            if local is None:
                raise BackendError("image not present locally", operation="push", image=fullname)
            if fullname in self._remote and not force:
                raise BackendError("image already exists in remote store", operation="push", image=fullname)
            self._remote[fullname] = replace(local)
        return iter([{"status": f"Pushed {fullname}"}])

    def remove_local(self, image: Image) -> None:
        """Remove a local image, even if it is in use."""
        self.calls.append(("remove_local", image.fullname))
        fullname = image.fullname
        with self._lock:
            if fullname not in self._local:
                raise BackendError("no such image", operation="remove", image=fullname)
            del self._local[fullname]
            self._in_use.discard(fullname)
        image.mark_removed()

    def check_health(self) -> None:
        """Fail when ``healthy`` has been cleared."""
        if not self.healthy:
            raise NetworkError("mock backend is unhealthy")

    def _build(self, context: BinaryIO, recipe_name: str, tag: str) -> ProgressStream:
        try:
            with tarfile.open(fileobj=context, mode="r:") as tar:
                members = {m.name: m for m in tar.getmembers()}
                recipe_file = tar.extractfile(members[recipe_name])
                recipe = recipe_file.read().decode() if recipe_file else ""
        except (tarfile.TarError, KeyError) as e:
            raise BackendError(f"invalid build context: {e}", operation="build", image=tag) from e

        build = MockBuild(tag=tag, recipe_name=recipe_name, recipe=recipe, members=sorted(members))
        payloads = [m for name, m in members.items() if name != recipe_name]
        image = Image.from_fullname(tag)
        image.digest = build.digest
        if payloads:
            image.local_path = payloads[0].name
            image.size = payloads[0].size
        with self._lock:
            self.builds.append(build)
            self._local[image.fullname] = image
        return iter([{"stream": f"Successfully tagged {tag}"}])
