"""HTTP client for the image hub service.

Pulled and imported images are cached under ``base_dir`` as
``<storage_key>.img`` with a ``<storage_key>.json`` metadata record.
Remote endpoints live under ``/api/v1/images/<owner>/<name>``; images
without an owner use the ``library`` namespace.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
from dataclasses import asdict
from pathlib import Path
from typing import Any, Iterator, Optional

import httpx

from vmimage import __version__
from vmimage.domain.entities.image import OSInfo, PullPolicy
from vmimage.domain.services.digest import CHUNK_SIZE, digest_of_file
from vmimage.domain.services.packaging import is_remote_source
from vmimage.domain.value_objects.identifiers import (
    ANONYMOUS_NAMESPACE,
    create_storage_key,
    format_image_name,
    parse_image_name,
)
from vmimage.exceptions import BackendError, StorageIOError
from vmimage.ports.outbound import HubImage

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1/images"


def hub_image_from_dict(data: dict[str, Any]) -> HubImage:
    """Build a HubImage from an API or cache record."""
    os_info = data.get("os") or {}
    return HubImage(
        name=data["name"],
        username=data.get("username", ""),
        tag=data.get("tag", "latest"),
        private=bool(data.get("private", False)),
        size=int(data.get("size", 0)),
        virtual_size=int(data.get("virtual_size", 0)),
        digest=data.get("digest", ""),
        snapshot=data.get("snapshot", ""),
        local_path=data.get("local_path", ""),
        os=OSInfo(**{k: v for k, v in os_info.items() if k in OSInfo.__dataclass_fields__}),
    )


def _read_chunks(path: str) -> Iterator[bytes]:
    with open(path, "rb") as f:
        yield from iter(lambda: f.read(CHUNK_SIZE), b"")


class HttpImageHubClient:
    """ImageHubClientPort implementation over HTTP with a local cache.

    Example:
        client = HttpImageHubClient("https://hub.local", Path("/var/lib/vmimage/hub"),
                                    username="alice", password="secret")
        record = client.pull("alice/ubuntu:20.04", PullPolicy.IF_NOT_PRESENT)
    """

    def __init__(
        self,
        addr: str,
        base_dir: Path,
        username: str = "",
        password: str = "",
        timeout: float = 600.0,
        http_client: Optional[httpx.Client] = None,
    ):
        self._addr = addr
        self._base_dir = Path(base_dir)
        self._timeout = timeout
        self._client = http_client or httpx.Client(
            base_url=addr,
            auth=(username, password),
            timeout=timeout,
            headers={"User-Agent": f"vmimage/{__version__}"},
        )

    @property
    def address(self) -> str:
        """Return the remote hub address."""
        return self._addr

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()

    # ------------------------------------------------------------------
    # Local cache
    # ------------------------------------------------------------------

    def list_local_images(self) -> list[HubImage]:
        """List images in the local cache."""
        if not self._base_dir.is_dir():
            return []
        images = []
        for record_path in sorted(self._base_dir.glob("*.json")):
            images.append(self._read_record(record_path))
        return images

    def import_image(self, fullname: str, source: str) -> HubImage:
        """Copy a local file, or download a URL, into the local cache."""
        owner, name, tag = parse_image_name(fullname)
        image_path, _ = self._cache_paths(fullname)
        if is_remote_source(source):
            self._download(source, image_path, client=None)
        else:
            self._ensure_base_dir()
            try:
                shutil.copyfile(source, image_path)
            except OSError as e:
                raise StorageIOError(f"failed to copy {source}: {e}", {"path": source}) from e

        record = HubImage(
            name=name,
            username=owner,
            tag=tag,
            size=os.path.getsize(image_path),
            digest=digest_of_file(image_path),
            local_path=str(image_path),
        )
        self._write_record(record)
        logger.info(f"Imported {source} as {fullname}")
        return record

    def remove_local_image(self, image: HubImage) -> None:
        """Delete an image and its record from the local cache."""
        fullname = format_image_name(image.username, image.name, image.tag)
        for path in self._cache_paths(fullname):
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                raise BackendError(
                    f"failed to remove {path}: {e}", operation="remove", image=fullname
                ) from e

    # ------------------------------------------------------------------
    # Remote hub
    # ------------------------------------------------------------------

    def get_info(self, fullname: str) -> HubImage:
        """Get image metadata from the remote hub."""
        owner, name, tag = parse_image_name(fullname)
        try:
            response = self._client.get(self._api_path(owner, name), params={"tag": tag})
            response.raise_for_status()
            return hub_image_from_dict(response.json())
        except httpx.HTTPError as e:
            raise BackendError(f"failed to get image info: {e}", operation="info", image=fullname) from e
        except (ValueError, KeyError) as e:
            raise BackendError("invalid image info response", operation="info", image=fullname) from e

    def pull(self, fullname: str, policy: PullPolicy) -> HubImage:
        """Fetch an image into the local cache according to the policy.

        Always refetches; IfNotPresent reuses a cached copy; Never fails
        when there is no cached copy.
        """
        image_path, record_path = self._cache_paths(fullname)
        cached = record_path.is_file() and image_path.is_file()
        if policy == PullPolicy.NEVER and not cached:
            raise BackendError(
                "image is not present locally and pull policy is Never",
                operation="pull",
                image=fullname,
            )
        if cached and policy != PullPolicy.ALWAYS:
            logger.debug(f"Using cached image {fullname}")
            return self._read_record(record_path)

        info = self.get_info(fullname)
        owner, name, tag = parse_image_name(fullname)
        self._download(
            f"{self._api_path(owner, name)}/download",
            image_path,
            client=self._client,
            params={"tag": tag},
            expected_digest=info.digest,
        )
        info.local_path = str(image_path)
        self._write_record(info)
        logger.info(f"Pulled {fullname} from {self._addr}")
        return info

    def push(self, image: HubImage, force: bool) -> None:
        """Upload a locally cached image to the remote hub."""
        fullname = format_image_name(image.username, image.name, image.tag)
        if not image.local_path or not os.path.isfile(image.local_path):
            raise BackendError("image has no local file to push", operation="push", image=fullname)
        params = {
            "tag": image.tag,
            "force": "true" if force else "false",
            "digest": image.digest,
        }
        try:
            response = self._client.put(
                f"{self._api_path(image.username, image.name)}/upload",
                params=params,
                content=_read_chunks(image.local_path),
                headers={"Content-Type": "application/octet-stream"},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise BackendError(f"failed to push image: {e}", operation="push", image=fullname) from e
        logger.info(f"Pushed {fullname} to {self._addr}")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _api_path(owner: str, name: str) -> str:
        return f"{API_PREFIX}/{owner or ANONYMOUS_NAMESPACE}/{name}"

    def _cache_paths(self, fullname: str) -> tuple[Path, Path]:
        key = create_storage_key(fullname)
        return self._base_dir / f"{key}.img", self._base_dir / f"{key}.json"

    def _ensure_base_dir(self) -> None:
        try:
            self._base_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageIOError(f"failed to create {self._base_dir}: {e}") from e

    def _download(
        self,
        url: str,
        dest: Path,
        client: Optional[httpx.Client],
        params: Optional[dict[str, str]] = None,
        expected_digest: str = "",
    ) -> None:
        """Stream a URL to ``dest`` through a temp file in the cache dir."""
        self._ensure_base_dir()
        fd, tmp_path = tempfile.mkstemp(prefix=".download-", dir=self._base_dir)
        try:
            with os.fdopen(fd, "wb") as f:
                if client is None:
                    stream = httpx.stream("GET", url, timeout=self._timeout, follow_redirects=True)
                else:
                    stream = client.stream("GET", url, params=params)
                with stream as response:
                    response.raise_for_status()
                    for chunk in response.iter_bytes(CHUNK_SIZE):
                        f.write(chunk)
            if expected_digest:
                actual = digest_of_file(tmp_path)
                if actual != expected_digest:
                    raise BackendError(
                        "downloaded image digest mismatch",
                        operation="pull",
                        details={"expected": expected_digest, "actual": actual},
                    )
            os.replace(tmp_path, dest)
        except httpx.HTTPError as e:
            raise BackendError(f"failed to download {url}: {e}", operation="download") from e
        except OSError as e:
            raise StorageIOError(f"failed to write {dest}: {e}", {"path": str(dest)}) from e
        finally:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)

    def _read_record(self, record_path: Path) -> HubImage:
        try:
            return hub_image_from_dict(json.loads(record_path.read_text()))
        except OSError as e:
            raise StorageIOError(f"failed to read {record_path}: {e}") from e
        except (ValueError, KeyError) as e:
            raise BackendError(f"corrupt image record {record_path}", operation="list") from e

    def _write_record(self, image: HubImage) -> None:
        fullname = format_image_name(image.username, image.name, image.tag)
        _, record_path = self._cache_paths(fullname)
        self._ensure_base_dir()
        try:
            record_path.write_text(json.dumps(asdict(image), indent=2))
        except OSError as e:
            raise StorageIOError(f"failed to write {record_path}: {e}") from e
