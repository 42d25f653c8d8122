"""Packaging pipeline.

Wraps a raw VM disk image into a single-layer container image so that any
container backend can store and transport it. The image is described by a
three-line recipe:

    FROM scratch
    LABEL SHA256=<digest>
    ADD <payload> /vm.img

Local sources are packaged from their own directory. Remote sources are
referenced by URL and fetched by the backend during the build.
"""

from __future__ import annotations

import logging
import os
import tarfile
import tempfile
from contextlib import ExitStack
from pathlib import Path
from typing import BinaryIO, Callable, Iterable, NamedTuple, Optional
from urllib.parse import urlparse

import httpx

from vmimage.domain.services.digest import (
    CHECKSUM_SUFFIX,
    IMAGE_SUFFIX,
    digest_from_remote_sidecar,
    digest_of_file,
)
from vmimage.domain.services.streams import ProgressStream
from vmimage.exceptions import StorageIOError

logger = logging.getLogger(__name__)

# Reserved name of the recipe inside the build context; a unique suffix is added
RECIPE_PREFIX = "Dockerfile.vmimage"
# Fixed path of the disk image inside the built artifact
PAYLOAD_FILENAME = "vm.img"
# Label holding the payload digest
DIGEST_LABEL = "SHA256"
TEMP_DIR_PREFIX = "image-prepare-"

# builder(context, recipe_name, tag) -> progress stream.
# The builder must consume the context before it returns.
ImageBuilder = Callable[[BinaryIO, str, str], ProgressStream]


class PreparedBuild(NamedTuple):
    """Result of packaging a source."""

    digest: str
    stream: ProgressStream


def is_remote_source(source: str) -> bool:
    """Check if a source is an absolute URL rather than a local path.

    Args:
        source: Local path or URL.

    Returns:
        True if the source has both a scheme and a host.
    """
    parsed = urlparse(source)
    return bool(parsed.scheme and parsed.netloc)


def render_recipe(digest: str, payload_ref: str) -> str:
    """Render the build recipe for a payload.

    Args:
        digest: Payload digest stored as image label.
        payload_ref: File name in the build context, or a URL.

    Returns:
        Recipe text.
    """
    return (
        "FROM scratch\n"
        f"LABEL {DIGEST_LABEL}={digest}\n"
        f"ADD {payload_ref} /{PAYLOAD_FILENAME}\n"
    )


def write_build_context(fileobj: BinaryIO, workdir: str, names: Iterable[str]) -> None:
    """Write an uncompressed tar of selected files in a directory.

    File ownership is recorded as found on disk.

    Args:
        fileobj: Destination, rewound to the start afterwards.
        workdir: Directory holding the files.
        names: File names relative to ``workdir``.

    Raises:
        StorageIOError: If a file cannot be read.
    """
    try:
        with tarfile.open(fileobj=fileobj, mode="w") as tar:
            for name in names:
                tar.add(os.path.join(workdir, name), arcname=name, recursive=False)
    except (OSError, tarfile.TarError) as e:
        raise StorageIOError(f"failed to create build context: {e}", {"workdir": workdir}) from e
    fileobj.seek(0)


def _remove_quietly(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Failed to remove recipe {path}: {e}")


class PackagingPipeline:
    """Turns a local file or URL into a backend-built image artifact.

    Example:
        pipeline = PackagingPipeline(builder=manager.build)
        build = pipeline.prepare("/data/ubuntu.img", "hub.local/library/ubuntu:latest")
    """

    def __init__(
        self,
        builder: ImageBuilder,
        http_client: Optional[httpx.Client] = None,
        image_suffix: str = IMAGE_SUFFIX,
        checksum_suffix: str = CHECKSUM_SUFFIX,
        sidecar_timeout: float = 30.0,
    ) -> None:
        self._builder = builder
        self._http_client = http_client
        self._image_suffix = image_suffix
        self._checksum_suffix = checksum_suffix
        self._sidecar_timeout = sidecar_timeout

    def prepare(self, source: str, tag: str) -> PreparedBuild:
        """Package a source and submit it to the builder.

        The recipe file, and for remote sources the temporary working
        directory, are removed before returning, also on failure.

        Args:
            source: Local file path or remote image URL.
            tag: Backend-qualified tag for the built artifact.

        Returns:
            Payload digest and the progress stream from the builder.

        Raises:
            InvalidInputError: If a remote URL lacks the image suffix.
            NetworkError: If the sidecar digest cannot be fetched.
            StorageIOError: On local filesystem failures.
            BackendError: If the build fails.
        """
        with ExitStack() as stack:
            if is_remote_source(source):
                workdir = stack.enter_context(
                    tempfile.TemporaryDirectory(prefix=TEMP_DIR_PREFIX, ignore_cleanup_errors=True)
                )
                payload_ref = source
                digest = digest_from_remote_sidecar(
                    source,
                    client=self._http_client,
                    image_suffix=self._image_suffix,
                    checksum_suffix=self._checksum_suffix,
                    timeout=self._sidecar_timeout,
                )
                include: list[str] = []
            else:
                path = Path(source)
                workdir = str(path.parent)
                payload_ref = path.name
                digest = digest_of_file(path)
                include = [payload_ref]

            recipe_path = self._write_recipe(workdir, render_recipe(digest, payload_ref))
            stack.callback(_remove_quietly, recipe_path)
            recipe_name = os.path.basename(recipe_path)

            context = stack.enter_context(tempfile.TemporaryFile())
            write_build_context(context, workdir, [*include, recipe_name])

            logger.info(f"Building {tag} from {source} (digest {digest})")
            return PreparedBuild(digest, self._builder(context, recipe_name, tag))

    @staticmethod
    def _write_recipe(workdir: str, recipe: str) -> str:
        try:
            fd, path = tempfile.mkstemp(prefix=f"{RECIPE_PREFIX}.", dir=workdir)
        except OSError as e:
            raise StorageIOError(f"failed to write recipe in {workdir}: {e}", {"workdir": workdir}) from e
        try:
            with os.fdopen(fd, "w") as f:
                f.write(recipe)
        except OSError as e:
            _remove_quietly(path)
            raise StorageIOError(f"failed to write recipe {path}: {e}", {"workdir": workdir}) from e
        return path
