"""Image naming and addressing value objects."""

from __future__ import annotations

from typing import NewType

from vmimage.exceptions import InvalidInputError

# Type-safe identifiers
ImageFullname = NewType("ImageFullname", str)
StorageKey = NewType("StorageKey", str)
BackendImageName = NewType("BackendImageName", str)

DEFAULT_TAG = "latest"
# Namespace used by registries for images without an owner
ANONYMOUS_NAMESPACE = "library"
# Escapes separator characters inside storage key segments
KEY_ESCAPE = "_"


def parse_image_name(fullname: str) -> tuple[str, str, str]:
    """Split a canonical image name into owner, name and tag.

    Only the separators are checked, segment contents are taken as-is.

    Args:
        fullname: ``name``, ``name:tag``, ``owner/name`` or ``owner/name:tag``.

    Returns:
        Tuple of (owner, name, tag). Owner is empty when absent and tag
        defaults to "latest".

    Raises:
        InvalidInputError: If there are more than one ``/`` or ``:``.
    """
    parts = fullname.split("/")
    if len(parts) == 1:
        owner, name_tag = "", parts[0]
    elif len(parts) == 2:
        owner, name_tag = parts
    else:
        raise InvalidInputError(f"invalid image name: {fullname}")

    parts = name_tag.split(":")
    if len(parts) == 1:
        name, tag = parts[0], DEFAULT_TAG
    elif len(parts) == 2:
        name, tag = parts
    else:
        raise InvalidInputError(f"invalid image name: {fullname}")
    return owner, name, tag


def format_image_name(owner: str, name: str, tag: str = DEFAULT_TAG) -> ImageFullname:
    """Build the canonical ``[owner/]name:tag`` string.

    Args:
        owner: Image owner, may be empty.
        name: Image name.
        tag: Image tag.

    Returns:
        Canonical image name.
    """
    if not owner:
        return ImageFullname(f"{name}:{tag}")
    return ImageFullname(f"{owner}/{name}:{tag}")


def create_image_name(owner: str, name: str) -> str:
    """Create an untagged image name.

    Args:
        owner: Image owner, may be empty.
        name: Image name.

    Returns:
        ``owner/name``, or ``name`` when there is no owner.
    """
    if not owner:
        return name
    return f"{owner}/{name}"


def _escape(segment: str, specials: str) -> str:
    for ch in KEY_ESCAPE + specials:
        segment = segment.replace(ch, KEY_ESCAPE + ch)
    return segment


def create_storage_key(fullname: str) -> StorageKey:
    """Derive a filesystem and registry safe key from a canonical name.

    ``/`` becomes ``.`` and ``:`` becomes ``-``. Separator characters already
    present in a segment are prefixed with ``_`` so distinct names never
    share a key. Dots in the tag are left alone since the tag follows the
    only unescaped ``-``.

    Args:
        fullname: Canonical image name.

    Returns:
        Key such as ``alice.ubuntu-20.04``.

    Raises:
        InvalidInputError: If the name is malformed.
    """
    owner, name, tag = parse_image_name(fullname)
    key = f"{_escape(name, '.-')}-{_escape(tag, '-')}"
    if owner:
        key = f"{_escape(owner, '.-')}.{key}"
    return StorageKey(key)


def backend_repository(prefix: str, owner: str, name: str) -> str:
    """Build the registry repository for an image.

    Args:
        prefix: Registry namespace prefix, may be empty.
        owner: Image owner; ``library`` is used when empty.
        name: Image name.

    Returns:
        ``prefix/[library/]owner/name`` with empty segments dropped.
    """
    segments = [prefix.strip("/"), owner or ANONYMOUS_NAMESPACE, name]
    return "/".join(s for s in segments if s)


def backend_image_name(prefix: str, owner: str, name: str, tag: str) -> BackendImageName:
    """Build the backend-qualified, tagged image name.

    Returns:
        ``prefix/[library/]owner/name:tag``.
    """
    return BackendImageName(f"{backend_repository(prefix, owner, name)}:{tag}")
