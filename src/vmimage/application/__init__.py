"""Application layer for vmimage.

Wires backend managers together and exposes the default-manager API.
"""

from vmimage.application.registry import DEFAULT_FACTORIES, ManagerRegistry
from vmimage.application.service import ImageService

__all__ = [
    "DEFAULT_FACTORIES",
    "ImageService",
    "ManagerRegistry",
]
