"""Docker-backed image manager.

VM images are stored as single-layer Docker images named
``<prefix>/[library/]<owner>/<name>:<tag>``. The disk image lives at
``/vm.img`` inside the layer and is read directly from the storage
driver's upper directory after a pull.
"""

from __future__ import annotations

import logging
import os
from typing import Any, BinaryIO, Iterable, Optional

import docker
import httpx
from docker.errors import DockerException

from vmimage import __version__
from vmimage.domain.entities.image import Image, PullPolicy
from vmimage.domain.services.packaging import DIGEST_LABEL, PAYLOAD_FILENAME, PackagingPipeline
from vmimage.domain.services.streams import ProgressStream, drain_stream
from vmimage.domain.value_objects.identifiers import (
    ANONYMOUS_NAMESPACE,
    BackendImageName,
    backend_image_name,
    backend_repository,
)
from vmimage.exceptions import BackendError, InvalidInputError, NetworkError
from vmimage.infrastructure.config import DOCKER_BACKEND, DockerConfig, PackagingConfig
from vmimage.ports.outbound import SizeProbePort

logger = logging.getLogger(__name__)

# Tags of dangling images
_UNTAGGED = "<none>:<none>"


def make_docker_client(config: DockerConfig) -> docker.APIClient:
    """Create a low-level Docker API client.

    Raises:
        BackendError: If the daemon endpoint is unusable.
    """
    try:
        return docker.APIClient(
            base_url=config.endpoint,
            version=config.api_version,
            timeout=config.timeout,
            user_agent=f"vmimage/{__version__}",
        )
    except (DockerException, OSError) as e:
        raise BackendError(
            f"failed to connect to docker at {config.endpoint}: {e}",
            operation="connect",
        ) from e


class DockerImageManager:
    """ImageManagerPort implementation on a Docker daemon.

    Example:
        manager = DockerImageManager(config.docker, QemuImgSizeProbe())
        image = manager.load_image("alice/ubuntu:20.04")
        print(image.local_path, image.virtual_size)
    """

    def __init__(
        self,
        config: DockerConfig,
        size_probe: SizeProbePort,
        packaging: PackagingConfig | None = None,
        api_client: Any | None = None,
        http_client: Optional[httpx.Client] = None,
    ):
        """Initialize the manager.

        Args:
            config: Docker backend configuration.
            size_probe: Disk size probe used after pulls.
            packaging: Packaging settings for prepare.
            api_client: Preconfigured ``docker.APIClient``; created from
                ``config`` when omitted.
            http_client: HTTP client for sidecar digests of remote sources.
        """
        self._config = config
        self._size_probe = size_probe
        self._api = api_client if api_client is not None else make_docker_client(config)
        packaging = packaging or PackagingConfig()
        self._pipeline = PackagingPipeline(
            builder=self._build,
            http_client=http_client,
            image_suffix=packaging.image_suffix,
            checksum_suffix=packaging.checksum_suffix,
            sidecar_timeout=packaging.sidecar_timeout,
        )

    @property
    def backend_type(self) -> str:
        """Return the backend type (always docker)."""
        return DOCKER_BACKEND

    def image_name(self, image: Image) -> BackendImageName:
        """Get the Docker image name for a VM image."""
        return backend_image_name(self._config.prefix, image.owner, image.name, image.tag)

    def list_local_images(self, owner: str = "") -> list[Image]:
        """List VM images under the configured prefix.

        Args:
            owner: Only list images of this owner; all when empty.

        Returns:
            Images with identity populated.
        """
        try:
            docker_images = self._api.images()
        except (DockerException, OSError) as e:
            raise BackendError(f"failed to list images: {e}", operation="list") from e

        prefix = self._config.prefix.strip("/")
        images = []
        for docker_image in docker_images:
            for repo_tag in docker_image.get("RepoTags") or []:
                if repo_tag == _UNTAGGED:
                    continue
                if prefix:
                    if not repo_tag.startswith(f"{prefix}/"):
                        continue
                    repo_tag = repo_tag[len(prefix) + 1:]
                if repo_tag.startswith(f"{ANONYMOUS_NAMESPACE}/"):
                    repo_tag = repo_tag[len(ANONYMOUS_NAMESPACE) + 1:]
                try:
                    image = Image.from_fullname(repo_tag)
                except InvalidInputError:
                    logger.debug(f"Skipping non VM image {repo_tag}")
                    continue
                if owner and image.owner != owner:
                    continue
                images.append(image)
        return images

    def new_image(self, fullname: str) -> Image:
        """Create an unresolved image without contacting Docker."""
        return Image.from_fullname(fullname)

    def load_image(self, fullname: str) -> Image:
        """Pull an image and load its metadata.

        Args:
            fullname: ``[owner/]name[:tag]``.

        Returns:
            Pulled image with local path and sizes populated.
        """
        image = self.new_image(fullname)
        drain_stream(self.pull(image), operation="pull", image=self.image_name(image))
        return image

    def prepare(self, source: str, image: Image) -> ProgressStream:
        """Build a Docker image wrapping a local file or URL.

        Args:
            source: Local path or remote image URL.
            image: Target image identity.

        Returns:
            Build progress stream.
        """
        build = self._pipeline.prepare(source, self.image_name(image))
        image.digest = build.digest
        return build.stream

    def pull(self, image: Image, policy: PullPolicy = PullPolicy.IF_NOT_PRESENT) -> ProgressStream:
        """Pull an image from the registry.

        The Docker daemon handles caching itself, so ``policy`` is ignored.
        Metadata is loaded once the returned stream is exhausted.
        """
        if policy != PullPolicy.IF_NOT_PRESENT:
            logger.debug(f"Pull policy {policy.value} is not supported by docker, ignoring")
        name = self.image_name(image)
        try:
            stream = self._api.pull(
                backend_repository(self._config.prefix, image.owner, image.name),
                tag=image.tag,
                stream=True,
                decode=True,
                auth_config=self._config.auth_config(),
            )
        except (DockerException, OSError) as e:
            raise BackendError(f"failed to pull image: {e}", operation="pull", image=name) from e
        return self._loading_metadata(self._guarded(stream, "pull", name), image)

    def push(self, image: Image, force: bool = False) -> ProgressStream:
        """Push an image to the registry.

        Args:
            image: Image to push.
            force: Push every tag of the repository, not only this one.
        """
        name = self.image_name(image)
        try:
            stream = self._api.push(
                backend_repository(self._config.prefix, image.owner, image.name),
                tag=None if force else image.tag,
                stream=True,
                decode=True,
                auth_config=self._config.auth_config(),
            )
        except (DockerException, OSError) as e:
            raise BackendError(f"failed to push image: {e}", operation="push", image=name) from e
        return self._guarded(stream, "push", name)

    def remove_local(self, image: Image) -> None:
        """Remove the local Docker image, even if containers use it."""
        name = self.image_name(image)
        try:
            # force: remove even if in use; noprune=False prunes untagged parents
            self._api.remove_image(name, force=True, noprune=False)
        except (DockerException, OSError) as e:
            raise BackendError(f"failed to remove image: {e}", operation="remove", image=name) from e
        image.mark_removed()
        logger.info(f"Removed local image {name}")

    def load_metadata(self, image: Image) -> None:
        """Fill local path, sizes and digest from the pulled Docker image.

        The digest label is taken as-is; if it is missing the digest stays
        unknown until ``Image.resolve_digest`` is called.
        """
        name = self.image_name(image)
        try:
            info = self._api.inspect_image(name)
        except (DockerException, OSError) as e:
            raise BackendError(f"failed to inspect image: {e}", operation="inspect", image=name) from e

        graph_data = (info.get("GraphDriver") or {}).get("Data") or {}
        upper_dir = graph_data.get("UpperDir")
        if not upper_dir:
            raise BackendError(
                "storage driver exposes no upper directory",
                operation="inspect",
                image=name,
                details={"driver": (info.get("GraphDriver") or {}).get("Name", "")},
            )
        image.local_path = os.path.join(upper_dir, PAYLOAD_FILENAME)
        image.size, image.virtual_size = self._size_probe.probe(image.local_path)

        labels = (info.get("Config") or {}).get("Labels") or {}
        image.digest = labels.get(DIGEST_LABEL) or image.digest
        image.mark_pulled()

    def check_health(self) -> None:
        """Ping the Docker daemon."""
        try:
            self._api.ping()
        except (DockerException, OSError) as e:
            raise NetworkError(f"docker daemon is unreachable: {e}", {"endpoint": self._config.endpoint}) from e

    def _build(self, context: BinaryIO, recipe_name: str, tag: str) -> ProgressStream:
        try:
            stream = self._api.build(
                fileobj=context,
                custom_context=True,
                dockerfile=recipe_name,
                tag=tag,
                rm=True,
                decode=True,
            )
        except (DockerException, OSError) as e:
            raise BackendError(f"failed to build image: {e}", operation="build", image=tag) from e
        return self._guarded(stream, "build", tag)

    def _loading_metadata(self, stream: ProgressStream, image: Image) -> ProgressStream:
        yield from stream
        self.load_metadata(image)

    @staticmethod
    def _guarded(stream: Iterable[dict[str, Any]], operation: str, name: str) -> ProgressStream:
        try:
            yield from stream
        except (DockerException, OSError) as e:
            raise BackendError(f"{operation} stream failed: {e}", operation=operation, image=name) from e
