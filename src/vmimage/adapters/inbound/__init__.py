"""Inbound adapters for vmimage.

Provides the REST API adapter over ImageService.
"""

from vmimage.adapters.inbound.rest_api import create_app

__all__ = ["create_app"]
