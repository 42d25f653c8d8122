"""Domain entities for vmimage.

- Image: VM image identity and metadata across its backend lifecycle
- PullPolicy: Whether a local copy may satisfy a pull
"""

from vmimage.domain.entities.image import (
    Image,
    ImageState,
    OSInfo,
    PullPolicy,
)

__all__ = [
    "Image",
    "ImageState",
    "OSInfo",
    "PullPolicy",
]
