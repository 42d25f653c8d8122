"""Value objects for image naming and addressing."""

from vmimage.domain.value_objects.identifiers import (
    ANONYMOUS_NAMESPACE,
    DEFAULT_TAG,
    BackendImageName,
    ImageFullname,
    StorageKey,
    backend_image_name,
    backend_repository,
    create_image_name,
    create_storage_key,
    format_image_name,
    parse_image_name,
)

__all__ = [
    "ANONYMOUS_NAMESPACE",
    "DEFAULT_TAG",
    "BackendImageName",
    "ImageFullname",
    "StorageKey",
    "backend_image_name",
    "backend_repository",
    "create_image_name",
    "create_storage_key",
    "format_image_name",
    "parse_image_name",
]
