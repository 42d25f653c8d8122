"""Disk image size probe backed by ``qemu-img``."""

from __future__ import annotations

import json
import logging
import subprocess

from vmimage.exceptions import BackendError

logger = logging.getLogger(__name__)


class QemuImgSizeProbe:
    """SizeProbePort implementation running ``qemu-img info``.

    Example:
        actual, virtual = QemuImgSizeProbe().probe("/var/lib/docker/.../vm.img")
    """

    def __init__(self, binary: str = "qemu-img", timeout: float = 60.0):
        self._binary = binary
        self._timeout = timeout

    def probe(self, path: str) -> tuple[int, int]:
        """Get the actual and virtual size of a disk image.

        Args:
            path: Local disk image path.

        Returns:
            Tuple of (actual_size, virtual_size) in bytes.

        Raises:
            BackendError: If qemu-img fails or its output is not usable.
        """
        cmd = [self._binary, "info", "--output=json", path]
        try:
            result = subprocess.run(
                cmd, capture_output=True, check=True, text=True, timeout=self._timeout
            )
        except (OSError, subprocess.SubprocessError) as e:
            stderr = getattr(e, "stderr", "") or ""
            raise BackendError(
                f"failed to run qemu-img info: {e}",
                operation="size_probe",
                details={"path": path, "stderr": stderr.strip()},
            ) from e

        try:
            info = json.loads(result.stdout)
            actual, virtual = int(info["actual-size"]), int(info["virtual-size"])
        except (ValueError, KeyError, TypeError) as e:
            raise BackendError(
                "qemu-img output is not usable json",
                operation="size_probe",
                details={"path": path},
            ) from e
        logger.debug(f"Probed {path}: actual={actual} virtual={virtual}")
        return actual, virtual
