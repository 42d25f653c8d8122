"""FastAPI REST adapter for vmimage.

Provides HTTP endpoints over ImageService. Every endpoint accepts an
optional ``backend`` selector; the configured default is used otherwise.

Usage:
    from vmimage.adapters.inbound.rest_api import create_app

    app = create_app(service)
    # Run with: uvicorn module:app --host 0.0.0.0 --port 8090
"""

from __future__ import annotations

from typing import Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from vmimage import __version__
from vmimage.application.service import ImageService
from vmimage.domain.entities.image import Image, PullPolicy
from vmimage.exceptions import (
    BackendError,
    ConfigError,
    InvalidInputError,
    NetworkError,
    StorageIOError,
    VMImageError,
)

_ERROR_STATUS: list[tuple[type[VMImageError], int]] = [
    (InvalidInputError, status.HTTP_400_BAD_REQUEST),
    (ConfigError, status.HTTP_400_BAD_REQUEST),
    (NetworkError, status.HTTP_502_BAD_GATEWAY),
    (BackendError, status.HTTP_502_BAD_GATEWAY),
    (StorageIOError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def error_status(exc: VMImageError) -> int:
    """HTTP status for a vmimage error."""
    for error_type, code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


class OSInfoModel(BaseModel):
    """Guest OS information."""

    type: str
    distrib: str
    version: str
    arch: str


class ImageResponse(BaseModel):
    """Image details response."""

    fullname: str
    name: str
    owner: str
    tag: str
    digest: Optional[str] = None
    size: int = 0
    virtual_size: int = 0
    local_path: str = ""
    distro: str = ""
    private: bool = False
    snapshot: str = ""
    os: OSInfoModel
    state: str

    @classmethod
    def from_image(cls, image: Image) -> ImageResponse:
        return cls(
            fullname=image.fullname,
            name=image.name,
            owner=image.owner,
            tag=image.tag,
            digest=image.digest,
            size=image.size,
            virtual_size=image.virtual_size,
            local_path=image.local_path,
            distro=image.distro,
            private=image.private,
            snapshot=image.snapshot,
            os=OSInfoModel(
                type=image.os.type,
                distrib=image.os.distrib,
                version=image.os.version,
                arch=image.os.arch,
            ),
            state=image.state.value,
        )


class ImageListResponse(BaseModel):
    """List of images."""

    images: list[ImageResponse]
    count: int


class PullImageRequest(BaseModel):
    """Request to pull an image."""

    name: str = Field(..., min_length=1, description="Image name, [owner/]name[:tag]")
    policy: Optional[PullPolicy] = Field(default=None, description="Pull policy")
    backend: str = Field(default="", description="Backend type")


class PushImageRequest(BaseModel):
    """Request to push a local image."""

    name: str = Field(..., min_length=1, description="Image name, [owner/]name[:tag]")
    force: bool = Field(default=False, description="Push all tags / overwrite")
    backend: str = Field(default="", description="Backend type")


class PrepareImageRequest(BaseModel):
    """Request to package a local file or URL as an image."""

    source: str = Field(..., min_length=1, description="Local path or http(s) URL")
    name: str = Field(..., min_length=1, description="Image name, [owner/]name[:tag]")
    backend: str = Field(default="", description="Backend type")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    backend: str
    version: str = __version__


def create_app(service: ImageService) -> FastAPI:
    """Create FastAPI application with image endpoints.

    Args:
        service: ImageService the endpoints delegate to.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="vmimage API",
        description="VM image packaging and distribution over pluggable backends",
        version=__version__,
    )

    @app.exception_handler(VMImageError)
    async def handle_vmimage_error(request: Request, exc: VMImageError) -> JSONResponse:
        return JSONResponse(status_code=error_status(exc), content=exc.to_dict())

    def find_local(fullname: str, backend: str) -> Image:
        target = service.new_image(fullname, backend).fullname
        for image in service.list_local_images(backend=backend):
            if image.fullname == target:
                return image
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Image {target} not found",
        )

    # Health endpoints
    @app.get("/health", response_model=HealthResponse, tags=["System"])
    def health_check(backend: str = ""):
        """Check that the backend is reachable."""
        service.check_health(backend)
        return HealthResponse(status="healthy", backend=service.manager(backend).backend_type)

    # Image endpoints
    @app.get("/images", response_model=ImageListResponse, tags=["Images"])
    def list_images(owner: str = "", backend: str = ""):
        """List images present on the backend."""
        images = service.list_local_images(owner, backend)
        return ImageListResponse(
            images=[ImageResponse.from_image(img) for img in images],
            count=len(images),
        )

    @app.get("/images/{name:path}", response_model=ImageResponse, tags=["Images"])
    def get_image(name: str, backend: str = ""):
        """Get a local image by name."""
        return ImageResponse.from_image(find_local(name, backend))

    @app.post("/images/pull", response_model=ImageResponse, tags=["Images"])
    def pull_image(request: PullImageRequest):
        """Pull an image from the backend's remote store."""
        image = service.new_image(request.name, request.backend)
        service.pull(image, request.policy, request.backend)
        return ImageResponse.from_image(image)

    @app.post("/images/push", response_model=ImageResponse, tags=["Images"])
    def push_image(request: PushImageRequest):
        """Push a local image to the backend's remote store."""
        image = find_local(request.name, request.backend)
        service.push(image, request.force, request.backend)
        return ImageResponse.from_image(image)

    @app.post(
        "/images/prepare",
        response_model=ImageResponse,
        status_code=status.HTTP_201_CREATED,
        tags=["Images"],
    )
    def prepare_image(request: PrepareImageRequest):
        """Package a local file or URL as a backend image."""
        image = service.new_image(request.name, request.backend)
        service.prepare(request.source, image, request.backend)
        return ImageResponse.from_image(image)

    @app.delete("/images/{name:path}", status_code=status.HTTP_204_NO_CONTENT, tags=["Images"])
    def delete_image(name: str, backend: str = ""):
        """Remove the local copy of an image."""
        image = service.new_image(name, backend)
        service.remove_local(image, backend)

    return app
