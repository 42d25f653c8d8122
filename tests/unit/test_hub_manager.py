"""Unit tests for the image hub client and manager."""

import hashlib
import json
import socket
from pathlib import Path

import httpx
import pytest

from vmimage.adapters.outbound.hub_client import HttpImageHubClient
from vmimage.adapters.outbound.hub_manager import HubImageManager
from vmimage.domain.entities.image import ImageState, PullPolicy
from vmimage.domain.services.digest import digest_of_file
from vmimage.domain.services.streams import drain_stream
from vmimage.exceptions import BackendError, NetworkError, StorageIOError

HUB_ADDR = "http://hub.test"


class FakeHub:
    """In-memory image hub speaking the hub HTTP API."""

    def __init__(self):
        self.images = {}
        self.requests = []
        self.uploads = []

    def add(self, owner: str, name: str, tag: str, data: bytes, **extra) -> dict:
        record = {
            "name": name,
            "username": owner,
            "tag": tag,
            "size": len(data),
            "virtual_size": 10 * 1024**3,
            "digest": f"sha256:{hashlib.sha256(data).hexdigest()}",
            "os": {"type": "linux", "distrib": "ubuntu", "version": "20.04", "arch": "amd64"},
            **extra,
        }
        self.images[(owner or "library", name, tag)] = (record, data)
        return record

    def downloads(self) -> int:
        return sum(1 for _, path in self.requests if path.endswith("/download"))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((request.method, request.url.path))
        parts = request.url.path.split("/")
        if parts[1:4] != ["api", "v1", "images"] or len(parts) < 6:
            return httpx.Response(404)
        namespace, name = parts[4], parts[5]
        action = parts[6] if len(parts) > 6 else ""
        tag = request.url.params.get("tag", "latest")

        if request.method == "PUT" and action == "upload":
            self.uploads.append(
                {
                    "namespace": namespace,
                    "name": name,
                    "tag": tag,
                    "force": request.url.params.get("force"),
                    "digest": request.url.params.get("digest"),
                    "data": request.content,
                }
            )
            return httpx.Response(201)

        entry = self.images.get((namespace, name, tag))
        if entry is None:
            return httpx.Response(404, json={"error": "not found"})
        record, data = entry
        if action == "download":
            return httpx.Response(200, content=data)
        return httpx.Response(200, json=record)


@pytest.fixture
def hub() -> FakeHub:
    return FakeHub()


@pytest.fixture
def cache_dir(temp_dir: Path) -> Path:
    return temp_dir / "hub"


@pytest.fixture
def client(hub: FakeHub, cache_dir: Path) -> HttpImageHubClient:
    http = httpx.Client(base_url=HUB_ADDR, transport=httpx.MockTransport(hub.handler))
    return HttpImageHubClient(HUB_ADDR, cache_dir, http_client=http)


@pytest.fixture
def hub_manager(client: HttpImageHubClient) -> HubImageManager:
    return HubImageManager(client)


@pytest.mark.unit
class TestHubClient:
    """Test the HTTP hub client and its cache."""

    def test_get_info(self, client: HttpImageHubClient, hub: FakeHub):
        record = hub.add("alice", "ubuntu", "20.04", b"disk")
        info = client.get_info("alice/ubuntu:20.04")
        assert info.name == "ubuntu"
        assert info.username == "alice"
        assert info.digest == record["digest"]
        assert info.os.distrib == "ubuntu"

    def test_get_info_anonymous_uses_library(self, client: HttpImageHubClient, hub: FakeHub):
        hub.add("", "centos", "7", b"disk")
        client.get_info("centos:7")
        assert hub.requests == [("GET", "/api/v1/images/library/centos")]

    def test_get_info_not_found(self, client: HttpImageHubClient):
        with pytest.raises(BackendError) as exc_info:
            client.get_info("alice/missing:1")
        assert exc_info.value.operation == "info"

    def test_pull_downloads_into_cache(self, client: HttpImageHubClient, hub: FakeHub, cache_dir: Path):
        hub.add("alice", "ubuntu", "20.04", b"disk-bytes")
        record = client.pull("alice/ubuntu:20.04", PullPolicy.IF_NOT_PRESENT)

        image_path = cache_dir / "alice.ubuntu-20.04.img"
        assert image_path.read_bytes() == b"disk-bytes"
        assert record.local_path == str(image_path)
        saved = json.loads((cache_dir / "alice.ubuntu-20.04.json").read_text())
        assert saved["digest"] == record.digest

    def test_pull_if_not_present_uses_cache(self, client: HttpImageHubClient, hub: FakeHub):
        hub.add("alice", "ubuntu", "20.04", b"disk")
        client.pull("alice/ubuntu:20.04", PullPolicy.IF_NOT_PRESENT)
        client.pull("alice/ubuntu:20.04", PullPolicy.IF_NOT_PRESENT)
        assert hub.downloads() == 1

    def test_pull_always_refetches(self, client: HttpImageHubClient, hub: FakeHub, cache_dir: Path):
        hub.add("alice", "ubuntu", "20.04", b"v1")
        client.pull("alice/ubuntu:20.04", PullPolicy.ALWAYS)
        hub.add("alice", "ubuntu", "20.04", b"v2")
        client.pull("alice/ubuntu:20.04", PullPolicy.ALWAYS)
        assert hub.downloads() == 2
        assert (cache_dir / "alice.ubuntu-20.04.img").read_bytes() == b"v2"

    def test_pull_never_without_cache(self, client: HttpImageHubClient, hub: FakeHub):
        hub.add("alice", "ubuntu", "20.04", b"disk")
        with pytest.raises(BackendError, match="Never"):
            client.pull("alice/ubuntu:20.04", PullPolicy.NEVER)
        assert hub.requests == []

    def test_pull_never_with_cache(self, client: HttpImageHubClient, hub: FakeHub):
        hub.add("alice", "ubuntu", "20.04", b"disk")
        client.pull("alice/ubuntu:20.04", PullPolicy.IF_NOT_PRESENT)
        record = client.pull("alice/ubuntu:20.04", PullPolicy.NEVER)
        assert record.name == "ubuntu"
        assert hub.downloads() == 1

    def test_pull_digest_mismatch(self, client: HttpImageHubClient, hub: FakeHub, cache_dir: Path):
        hub.add("alice", "ubuntu", "20.04", b"disk", digest="sha256:0000")
        with pytest.raises(BackendError, match="digest mismatch"):
            client.pull("alice/ubuntu:20.04", PullPolicy.ALWAYS)
        assert list(cache_dir.iterdir()) == []

    def test_pull_download_not_found(self, client: HttpImageHubClient, hub: FakeHub, cache_dir: Path):
        with pytest.raises(BackendError):
            client.pull("alice/missing:1", PullPolicy.ALWAYS)
        assert not cache_dir.exists() or list(cache_dir.iterdir()) == []

    def test_import_local_file(self, client: HttpImageHubClient, disk_image: Path, cache_dir: Path):
        record = client.import_image("alice/ubuntu:20.04", str(disk_image))
        assert record.digest == digest_of_file(disk_image)
        assert record.size == disk_image.stat().st_size
        assert Path(record.local_path).read_bytes() == disk_image.read_bytes()
        assert [img.name for img in client.list_local_images()] == ["ubuntu"]

    def test_import_remote_file(
        self, client: HttpImageHubClient, cache_dir: Path, monkeypatch: pytest.MonkeyPatch
    ):
        source = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200, content=b"remote")))
        monkeypatch.setattr(httpx, "stream", lambda method, url, **kwargs: source.stream(method, url))
        record = client.import_image("ubuntu", "https://mirror.test/ubuntu.img")
        assert (cache_dir / "ubuntu-latest.img").read_bytes() == b"remote"
        assert record.tag == "latest"

    def test_import_missing_file(self, client: HttpImageHubClient, temp_dir: Path):
        with pytest.raises(StorageIOError):
            client.import_image("ubuntu", str(temp_dir / "missing.img"))

    def test_remove_local_image(self, client: HttpImageHubClient, disk_image: Path, cache_dir: Path):
        record = client.import_image("alice/ubuntu:20.04", str(disk_image))
        client.remove_local_image(record)
        assert list(cache_dir.iterdir()) == []
        client.remove_local_image(record)

    def test_list_empty_cache(self, client: HttpImageHubClient):
        assert client.list_local_images() == []

    def test_push_uploads_file(self, client: HttpImageHubClient, hub: FakeHub, disk_image: Path):
        record = client.import_image("alice/ubuntu:20.04", str(disk_image))
        client.push(record, force=True)
        upload = hub.uploads[0]
        assert upload["namespace"] == "alice"
        assert upload["tag"] == "20.04"
        assert upload["force"] == "true"
        assert upload["digest"] == record.digest
        assert upload["data"] == disk_image.read_bytes()

    def test_push_without_local_file(self, client: HttpImageHubClient, disk_image: Path):
        record = client.import_image("alice/ubuntu:20.04", str(disk_image))
        Path(record.local_path).unlink()
        with pytest.raises(BackendError, match="no local file"):
            client.push(record, force=False)


@pytest.mark.unit
class TestHubImageManager:
    """Test the hub-backed manager."""

    def test_backend_type(self, hub_manager: HubImageManager):
        assert hub_manager.backend_type == "vmihub"

    def test_load_image(self, hub_manager: HubImageManager, hub: FakeHub):
        record = hub.add("alice", "ubuntu", "20.04", b"disk", private=True, snapshot="snap-1")
        image = hub_manager.load_image("alice/ubuntu:20.04")
        assert image.is_pulled()
        assert image.digest == record["digest"]
        assert image.private is True
        assert image.snapshot == "snap-1"
        assert image.distro == "ubuntu"
        assert image.os.version == "20.04"
        assert image.local_path.endswith("alice.ubuntu-20.04.img")

    def test_load_image_uses_default_policy(self, client: HttpImageHubClient, hub: FakeHub):
        hub.add("alice", "ubuntu", "20.04", b"disk")
        manager = HubImageManager(client, default_policy=PullPolicy.NEVER)
        with pytest.raises(BackendError):
            manager.load_image("alice/ubuntu:20.04")

    def test_prepare_imports_source(self, hub_manager: HubImageManager, disk_image: Path):
        image = hub_manager.new_image("alice/ubuntu:20.04")
        assert drain_stream(hub_manager.prepare(str(disk_image), image)) == 0
        assert image.digest == digest_of_file(disk_image)
        assert [img.fullname for img in hub_manager.list_local_images()] == ["alice/ubuntu:20.04"]

    def test_list_filters_owner(self, hub_manager: HubImageManager, disk_image: Path):
        hub_manager.prepare(str(disk_image), hub_manager.new_image("alice/ubuntu:20.04"))
        hub_manager.prepare(str(disk_image), hub_manager.new_image("bob/debian:12"))
        assert [img.fullname for img in hub_manager.list_local_images("bob")] == ["bob/debian:12"]

    def test_push_after_prepare(self, hub_manager: HubImageManager, hub: FakeHub, disk_image: Path):
        image = hub_manager.new_image("ubuntu")
        hub_manager.prepare(str(disk_image), image)
        drain_stream(hub_manager.push(image))
        assert hub.uploads[0]["namespace"] == "library"
        assert hub.uploads[0]["force"] == "false"

    def test_remove_local(self, hub_manager: HubImageManager, disk_image: Path, cache_dir: Path):
        image = hub_manager.new_image("alice/ubuntu:20.04")
        hub_manager.prepare(str(disk_image), image)
        hub_manager.remove_local(image)
        assert image.state == ImageState.REMOVED
        assert hub_manager.list_local_images() == []

    def test_check_health(self, hub_manager: HubImageManager, monkeypatch: pytest.MonkeyPatch):
        addresses = []

        class FakeConnection:
            def __enter__(self):
                return self

            def __exit__(self, *exc):
                return False

        def fake_connect(address, timeout=None):
            addresses.append(address)
            return FakeConnection()

        monkeypatch.setattr(socket, "create_connection", fake_connect)
        hub_manager.check_health()
        assert addresses == [("hub.test", 80)]

    def test_check_health_unreachable(self, hub_manager: HubImageManager, monkeypatch: pytest.MonkeyPatch):
        def refuse(address, timeout=None):
            raise ConnectionRefusedError("refused")

        monkeypatch.setattr(socket, "create_connection", refuse)
        with pytest.raises(NetworkError):
            hub_manager.check_health()
