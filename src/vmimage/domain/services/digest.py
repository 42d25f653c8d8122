"""Content digest service.

Local files are hashed in fixed-size chunks. Remote images are not
downloaded: their digest is read from a sidecar checksum file published
next to them (``disk.img`` -> ``disk.sha256sum``).
"""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Optional, Union

import httpx

from vmimage.exceptions import InvalidInputError, NetworkError, StorageIOError

logger = logging.getLogger(__name__)

DIGEST_ALGORITHM = "sha256"
IMAGE_SUFFIX = ".img"
CHECKSUM_SUFFIX = ".sha256sum"
CHUNK_SIZE = 1024 * 1024  # 1MB


def digest_of_file(path: Union[str, Path], chunk_size: int = CHUNK_SIZE) -> str:
    """Hash a local file without loading it into memory.

    Args:
        path: File to hash.
        chunk_size: Read size in bytes.

    Returns:
        Digest in the form ``sha256:<hex>``.

    Raises:
        StorageIOError: If the file cannot be opened or read.
    """
    h = hashlib.sha256()
    try:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(chunk_size), b""):
                h.update(chunk)
    except OSError as e:
        raise StorageIOError(f"failed to hash {path}: {e}", {"path": str(path)}) from e
    return f"{DIGEST_ALGORITHM}:{h.hexdigest()}"


def sidecar_url(
    url: str,
    image_suffix: str = IMAGE_SUFFIX,
    checksum_suffix: str = CHECKSUM_SUFFIX,
) -> str:
    """Derive the checksum sidecar URL of a remote image.

    Args:
        url: Remote image URL.
        image_suffix: Suffix the image URL must end with.
        checksum_suffix: Suffix of the sidecar file.

    Returns:
        Sidecar URL.

    Raises:
        InvalidInputError: If the URL does not end with ``image_suffix``.
    """
    if not url.endswith(image_suffix):
        raise InvalidInputError(f"invalid url: {url}", {"expected_suffix": image_suffix})
    return url[: -len(image_suffix)] + checksum_suffix


def digest_from_remote_sidecar(
    url: str,
    client: Optional[httpx.Client] = None,
    image_suffix: str = IMAGE_SUFFIX,
    checksum_suffix: str = CHECKSUM_SUFFIX,
    timeout: float = 30.0,
) -> str:
    """Read the precomputed digest published next to a remote image.

    Args:
        url: Remote image URL.
        client: HTTP client to use; a short-lived one is created if omitted.
        image_suffix: Suffix the image URL must end with.
        checksum_suffix: Suffix of the sidecar file.
        timeout: Request timeout in seconds.

    Returns:
        First whitespace separated token of the sidecar body, so both a
        bare digest and ``sha256sum`` output (``<hex>  <file>``) work.

    Raises:
        InvalidInputError: If the URL lacks the image suffix.
        NetworkError: If the request fails, returns a non-2xx status or an
            empty body.
    """
    checksum_url = sidecar_url(url, image_suffix, checksum_suffix)
    logger.debug(f"Fetching sidecar digest: {checksum_url}")
    try:
        if client is None:
            response = httpx.get(checksum_url, timeout=timeout, follow_redirects=True)
        else:
            response = client.get(checksum_url, timeout=timeout)
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise NetworkError(
            f"failed to fetch digest for {url}",
            {"url": checksum_url, "status": e.response.status_code},
        ) from e
    except httpx.HTTPError as e:
        raise NetworkError(f"failed to fetch digest for {url}: {e}", {"url": checksum_url}) from e
    tokens = response.text.split()
    if not tokens:
        raise NetworkError(f"empty digest for {url}", {"url": checksum_url})
    return tokens[0]
