"""VM image entity."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from vmimage.domain.services.digest import digest_of_file
from vmimage.domain.value_objects.identifiers import (
    DEFAULT_TAG,
    ImageFullname,
    StorageKey,
    create_storage_key,
    format_image_name,
    parse_image_name,
)
from vmimage.exceptions import InvalidInputError


class PullPolicy(Enum):
    """Whether a cached local copy may satisfy a pull."""
    ALWAYS = "Always"
    IF_NOT_PRESENT = "IfNotPresent"
    NEVER = "Never"


class ImageState(Enum):
    """Image lifecycle state relative to its backend."""
    UNRESOLVED = "unresolved"  # Name only
    PULLED = "pulled"  # Metadata populated
    REMOVED = "removed"  # Backend artifact gone, struct stale


@dataclass
class OSInfo:
    """Guest operating system information reported by the image hub."""
    type: str = "linux"
    distrib: str = ""
    version: str = ""
    arch: str = "amd64"


@dataclass
class Image:
    """A VM image wrapped in a backend artifact.

    ``digest`` is either unknown (None) or a computed content digest. It is
    only filled from a local file when ``resolve_digest`` is called.
    """
    name: str
    owner: str = ""
    tag: str = DEFAULT_TAG
    digest: Optional[str] = None
    size: int = 0  # Actual bytes on disk
    virtual_size: int = 0  # Guest-visible disk size
    local_path: str = ""
    distro: str = ""
    private: bool = False
    snapshot: str = ""
    os: OSInfo = field(default_factory=OSInfo)
    state: ImageState = ImageState.UNRESOLVED

    @classmethod
    def from_fullname(cls, fullname: str) -> Image:
        """Create an unresolved image from its canonical name.

        Args:
            fullname: ``[owner/]name[:tag]``.

        Returns:
            Image with identity only.

        Raises:
            InvalidInputError: If the name is malformed.
        """
        owner, name, tag = parse_image_name(fullname)
        return cls(name=name, owner=owner, tag=tag)

    @property
    def fullname(self) -> ImageFullname:
        """Canonical ``[owner/]name:tag`` addressing key."""
        return format_image_name(self.owner, self.name, self.tag)

    @property
    def storage_key(self) -> StorageKey:
        """Filesystem-safe variant of the full name."""
        return create_storage_key(self.fullname)

    @property
    def digest_known(self) -> bool:
        """Whether the digest has been computed or recovered."""
        return self.digest is not None

    def resolve_digest(self) -> str:
        """Compute the digest from the local file if it is still unknown.

        Returns:
            Content digest.

        Raises:
            InvalidInputError: If the image has no local path.
            StorageIOError: If the local file cannot be read.
        """
        if self.digest is None:
            if not self.local_path:
                raise InvalidInputError(f"image {self.fullname} has no local file")
            self.digest = digest_of_file(self.local_path)
        return self.digest

    def mark_pulled(self) -> None:
        """Mark metadata as populated by a pull or metadata load."""
        self.state = ImageState.PULLED

    def mark_removed(self) -> None:
        """Mark the backend artifact as deleted."""
        self.state = ImageState.REMOVED

    def is_pulled(self) -> bool:
        """Check if metadata has been loaded.

        Returns:
            True if pulled.
        """
        return self.state == ImageState.PULLED
