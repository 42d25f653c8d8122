"""Unit tests for the Docker-backed image manager and size probe."""

import json
import subprocess
import tarfile
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from docker.errors import APIError, NotFound
from prometheus_client import CollectorRegistry

from vmimage.adapters.outbound.docker_manager import DockerImageManager
from vmimage.adapters.outbound.size_probe import QemuImgSizeProbe
from vmimage.application.registry import ManagerRegistry
from vmimage.application.service import ImageService
from vmimage.domain.entities.image import ImageState, PullPolicy
from vmimage.domain.services.digest import digest_of_file
from vmimage.domain.services.streams import drain_stream
from vmimage.exceptions import BackendError, NetworkError
from vmimage.infrastructure.config import Config, DockerConfig
from vmimage.infrastructure.metrics import MetricsRegistry


class FixedSizeProbe:
    """Size probe returning constant sizes."""

    def __init__(self, actual: int = 1024, virtual: int = 10 * 1024**3):
        self.actual = actual
        self.virtual = virtual
        self.paths = []

    def probe(self, path):
        self.paths.append(path)
        return self.actual, self.virtual


@pytest.fixture
def api() -> MagicMock:
    """Docker API client double."""
    client = MagicMock()
    client.pull.return_value = iter([{"status": "Pulling"}, {"status": "Downloaded"}])
    client.push.return_value = iter([{"status": "Pushed"}])
    client.inspect_image.return_value = inspect_result()
    return client


@pytest.fixture
def docker_config() -> DockerConfig:
    return DockerConfig(prefix="hub.local", username="alice", password="secret")


@pytest.fixture
def probe() -> FixedSizeProbe:
    return FixedSizeProbe()


@pytest.fixture
def manager(docker_config: DockerConfig, probe: FixedSizeProbe, api: MagicMock) -> DockerImageManager:
    return DockerImageManager(docker_config, probe, api_client=api)


@pytest.fixture
def docker_service(manager: DockerImageManager) -> ImageService:
    registry = ManagerRegistry(Config(backend="docker"), factories={"docker": lambda config: manager})
    return ImageService(registry, MetricsRegistry(CollectorRegistry()))


def inspect_result(upper_dir: str = "/var/lib/docker/overlay2/abc/diff", digest: str = "sha256:beef") -> dict:
    return {
        "GraphDriver": {"Name": "overlay2", "Data": {"UpperDir": upper_dir}},
        "Config": {"Labels": {"SHA256": digest}},
    }


@pytest.mark.unit
class TestDockerNaming:
    """Test Docker image naming."""

    def test_owned_image(self, manager: DockerImageManager):
        image = manager.new_image("alice/ubuntu:20.04")
        assert manager.image_name(image) == "hub.local/alice/ubuntu:20.04"

    def test_anonymous_image(self, manager: DockerImageManager):
        image = manager.new_image("ubuntu")
        assert manager.image_name(image) == "hub.local/library/ubuntu:latest"

    def test_backend_type(self, manager: DockerImageManager):
        assert manager.backend_type == "docker"


@pytest.mark.unit
class TestDockerList:
    """Test listing local Docker images."""

    def test_list_parses_prefixed_tags(self, manager: DockerImageManager, api: MagicMock):
        api.images.return_value = [
            {"RepoTags": ["hub.local/alice/ubuntu:20.04", "hub.local/library/centos:7"]},
            {"RepoTags": ["<none>:<none>"]},
            {"RepoTags": None},
            {"RepoTags": ["docker.io/nginx:latest", "hub.localother/bob/x:1"]},
            {"RepoTags": ["hub.local/a/b/c:1"]},
        ]
        names = [img.fullname for img in manager.list_local_images()]
        assert names == ["alice/ubuntu:20.04", "centos:7"]

    def test_list_filters_owner(self, manager: DockerImageManager, api: MagicMock):
        api.images.return_value = [
            {"RepoTags": ["hub.local/alice/ubuntu:20.04", "hub.local/bob/debian:12"]},
        ]
        images = manager.list_local_images("bob")
        assert [img.fullname for img in images] == ["bob/debian:12"]

    def test_list_error(self, manager: DockerImageManager, api: MagicMock):
        api.images.side_effect = APIError("daemon error")
        with pytest.raises(BackendError):
            manager.list_local_images()


@pytest.mark.unit
class TestDockerPullPush:
    """Test pull and push."""

    def test_pull_uses_repository_and_tag(self, manager: DockerImageManager, api: MagicMock):
        image = manager.new_image("ubuntu:22.04")
        assert drain_stream(manager.pull(image)) == 2
        api.pull.assert_called_once_with(
            "hub.local/library/ubuntu",
            tag="22.04",
            stream=True,
            decode=True,
            auth_config={"username": "alice", "password": "secret"},
        )

    def test_pull_error(self, manager: DockerImageManager, api: MagicMock):
        api.pull.side_effect = NotFound("no such image")
        with pytest.raises(BackendError) as exc_info:
            manager.pull(manager.new_image("ubuntu"), PullPolicy.ALWAYS)
        assert exc_info.value.operation == "pull"

    def test_pull_stream_error_event(self, manager: DockerImageManager, api: MagicMock):
        api.pull.return_value = iter([{"error": "manifest unknown"}])
        with pytest.raises(BackendError, match="manifest unknown"):
            drain_stream(manager.pull(manager.new_image("ubuntu")), operation="pull")
        api.inspect_image.assert_not_called()

    def test_pull_loads_metadata(self, manager: DockerImageManager, api: MagicMock, probe: FixedSizeProbe):
        image = manager.new_image("alice/ubuntu:20.04")
        drain_stream(manager.pull(image, PullPolicy.ALWAYS))
        api.inspect_image.assert_called_once_with("hub.local/alice/ubuntu:20.04")
        assert image.is_pulled()
        assert image.digest == "sha256:beef"
        assert image.size == probe.actual

    def test_pull_after_remove(self, manager: DockerImageManager, api: MagicMock):
        image = manager.new_image("alice/ubuntu:20.04")
        manager.remove_local(image)
        assert image.state == ImageState.REMOVED

        drain_stream(manager.pull(image, PullPolicy.ALWAYS))
        assert image.state == ImageState.PULLED
        assert image.local_path == "/var/lib/docker/overlay2/abc/diff/vm.img"

    def test_push_single_tag(self, manager: DockerImageManager, api: MagicMock):
        drain_stream(manager.push(manager.new_image("alice/ubuntu:20.04")))
        assert api.push.call_args.args == ("hub.local/alice/ubuntu",)
        assert api.push.call_args.kwargs["tag"] == "20.04"

    def test_push_force_pushes_all_tags(self, manager: DockerImageManager, api: MagicMock):
        drain_stream(manager.push(manager.new_image("alice/ubuntu:20.04"), force=True))
        assert api.push.call_args.kwargs["tag"] is None

    def test_push_without_credentials(self, probe: FixedSizeProbe, api: MagicMock):
        manager = DockerImageManager(DockerConfig(), probe, api_client=api)
        drain_stream(manager.push(manager.new_image("ubuntu")))
        assert api.push.call_args.kwargs["auth_config"] is None


@pytest.mark.unit
class TestDockerMetadata:
    """Test metadata loading."""

    def test_load_image(self, manager: DockerImageManager, api: MagicMock, probe: FixedSizeProbe):
        api.inspect_image.return_value = inspect_result()
        image = manager.load_image("alice/ubuntu:20.04")

        api.inspect_image.assert_called_once_with("hub.local/alice/ubuntu:20.04")
        assert image.local_path == "/var/lib/docker/overlay2/abc/diff/vm.img"
        assert probe.paths == [image.local_path]
        assert image.size == probe.actual
        assert image.virtual_size == probe.virtual
        assert image.digest == "sha256:beef"
        assert image.is_pulled()

    def test_missing_label_leaves_digest_unknown(self, manager: DockerImageManager, api: MagicMock):
        info = inspect_result()
        info["Config"]["Labels"] = None
        api.inspect_image.return_value = info
        image = manager.load_image("ubuntu")
        assert not image.digest_known

    def test_missing_upper_dir(self, manager: DockerImageManager, api: MagicMock):
        api.inspect_image.return_value = {"GraphDriver": {"Name": "vfs", "Data": None}}
        with pytest.raises(BackendError, match="upper directory"):
            manager.load_image("ubuntu")


@pytest.mark.unit
class TestDockerService:
    """Test the Docker backend behind ImageService."""

    def test_pull_after_remove(self, docker_service: ImageService, probe: FixedSizeProbe):
        image = docker_service.new_image("alice/ubuntu:20.04")
        docker_service.remove_local(image)
        docker_service.pull(image, PullPolicy.ALWAYS)

        assert image.state == ImageState.PULLED
        assert image.digest == "sha256:beef"
        assert image.size == probe.actual

    def test_load_image(self, docker_service: ImageService, api: MagicMock):
        image = docker_service.load_image("ubuntu:22.04")
        assert image.is_pulled()
        api.inspect_image.assert_called_once_with("hub.local/library/ubuntu:22.04")


@pytest.mark.unit
class TestDockerRemove:
    """Test local removal."""

    def test_remove_forces_and_prunes(self, manager: DockerImageManager, api: MagicMock):
        image = manager.new_image("alice/ubuntu:20.04")
        manager.remove_local(image)
        api.remove_image.assert_called_once_with("hub.local/alice/ubuntu:20.04", force=True, noprune=False)
        assert image.state == ImageState.REMOVED

    def test_remove_error(self, manager: DockerImageManager, api: MagicMock):
        api.remove_image.side_effect = APIError("conflict")
        image = manager.new_image("ubuntu")
        with pytest.raises(BackendError):
            manager.remove_local(image)
        assert image.state == ImageState.UNRESOLVED


@pytest.mark.unit
class TestDockerPrepare:
    """Test building images."""

    def test_prepare_submits_build_context(self, manager: DockerImageManager, api: MagicMock, disk_image: Path):
        seen = {}

        def build(fileobj, custom_context, dockerfile, tag, rm, decode):
            with tarfile.open(fileobj=fileobj, mode="r:") as tar:
                seen["members"] = sorted(tar.getnames())
                seen["recipe"] = tar.extractfile(dockerfile).read().decode()
            seen["tag"] = tag
            return iter([{"stream": "Step 1/3"}, {"stream": "Successfully built"}])

        api.build.side_effect = build
        image = manager.new_image("alice/ubuntu:20.04")
        assert drain_stream(manager.prepare(str(disk_image), image)) == 2
        assert seen["tag"] == "hub.local/alice/ubuntu:20.04"
        assert "ubuntu.img" in seen["members"]
        assert f"LABEL SHA256={digest_of_file(disk_image)}" in seen["recipe"]
        assert sorted(p.name for p in disk_image.parent.iterdir()) == ["ubuntu.img"]
        assert image.digest == digest_of_file(disk_image)

    def test_prepare_build_error(self, manager: DockerImageManager, api: MagicMock, disk_image: Path):
        api.build.side_effect = APIError("build failed")
        with pytest.raises(BackendError):
            manager.prepare(str(disk_image), manager.new_image("ubuntu"))

    def test_prepare_through_service(self, docker_service: ImageService, api: MagicMock, disk_image: Path):
        api.build.return_value = iter([{"stream": "Successfully built"}])
        image = docker_service.new_image("alice/ubuntu:20.04")
        docker_service.prepare(str(disk_image), image)
        assert image.digest == digest_of_file(disk_image)


@pytest.mark.unit
class TestDockerHealth:
    """Test health check."""

    def test_healthy(self, manager: DockerImageManager, api: MagicMock):
        manager.check_health()
        api.ping.assert_called_once()

    def test_unreachable(self, manager: DockerImageManager, api: MagicMock):
        api.ping.side_effect = ConnectionError("refused")
        with pytest.raises(NetworkError):
            manager.check_health()


@pytest.mark.unit
class TestQemuImgSizeProbe:
    """Test qemu-img size probe."""

    def test_probe(self, monkeypatch: pytest.MonkeyPatch):
        calls = []

        def fake_run(cmd, **kwargs):
            calls.append(cmd)
            out = json.dumps({"actual-size": 2048, "virtual-size": 10737418240, "format": "qcow2"})
            return subprocess.CompletedProcess(cmd, 0, stdout=out, stderr="")

        monkeypatch.setattr(subprocess, "run", fake_run)
        assert QemuImgSizeProbe().probe("/images/vm.img") == (2048, 10737418240)
        assert calls == [["qemu-img", "info", "--output=json", "/images/vm.img"]]

    def test_probe_command_failure(self, monkeypatch: pytest.MonkeyPatch):
        def fake_run(cmd, **kwargs):
            raise subprocess.CalledProcessError(1, cmd, stderr="Could not open '/images/vm.img'\n")

        monkeypatch.setattr(subprocess, "run", fake_run)
        with pytest.raises(BackendError) as exc_info:
            QemuImgSizeProbe().probe("/images/vm.img")
        assert "Could not open" in exc_info.value.details["stderr"]

    def test_probe_missing_binary(self):
        with pytest.raises(BackendError):
            QemuImgSizeProbe(binary="/nonexistent/qemu-img").probe("/images/vm.img")

    def test_probe_bad_output(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setattr(
            subprocess,
            "run",
            lambda cmd, **kwargs: subprocess.CompletedProcess(cmd, 0, stdout="{}", stderr=""),
        )
        with pytest.raises(BackendError, match="not usable"):
            QemuImgSizeProbe().probe("/images/vm.img")
