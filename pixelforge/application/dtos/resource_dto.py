from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from pixelforge.domain.entities.formats import storage_extension
from pixelforge.domain.entities.resource import Resource, Variant


class VariantMetadata(BaseModel):
    """Stored, immutable transformed artifact of an image."""
    hash: str = Field(..., description="Content hash of the canonical transformations", examples=["3f9c0a7d52be41e8a1c6d0f2"])
    url: str = Field(..., description="Path to download this variant", examples=["/images/42?variant=3f9c0a7d52be41e8a1c6d0f2"])
    format: str = Field(..., description="Output format", examples=["webp"])
    content_type: str = Field(..., description="MIME type of the artifact", examples=["image/webp"])
    size: int = Field(..., description="Artifact size in bytes", ge=0)
    width: int = Field(..., description="Width in pixels", gt=0)
    height: int = Field(..., description="Height in pixels", gt=0)
    transformations: dict[str, Any] = Field(..., description="Canonical transformations that produced this variant")
    created_at: datetime = Field(..., description="When the variant was stored")

    @classmethod
    def from_entity(cls, resource_id: str, variant: Variant) -> VariantMetadata:
        return cls(
            hash=variant.hash,
            url=f"/images/{resource_id}?variant={variant.hash}",
            format=variant.format,
            content_type=variant.content_type,
            size=variant.size,
            width=variant.width,
            height=variant.height,
            transformations=dict(variant.transformations),
            created_at=variant.created_at,
        )


class OriginalMetadata(BaseModel):
    key: str = Field(..., description="Storage key of the original upload")
    url: str = Field(..., description="Path to download the original", examples=["/images/42"])
    original_name: str = Field(..., description="File name at upload time", examples=["photo.jpg"])
    content_type: str = Field(..., description="MIME type of the original", examples=["image/jpeg"])
    format: str = Field(..., description="Normalized source format", examples=["jpeg"])
    size: int = Field(..., description="Size in bytes", ge=0)
    width: int | None = Field(None, description="Width in pixels")
    height: int | None = Field(None, description="Height in pixels")


class ImageMetadata(BaseModel):
    """An uploaded image together with every variant derived from it."""
    id: str = Field(..., description="Unique identifier of the image")
    original: OriginalMetadata
    variants: list[VariantMetadata] = Field(default_factory=list)
    created_at: datetime = Field(..., description="Upload time")

    @classmethod
    def from_entity(cls, resource: Resource) -> ImageMetadata:
        return cls(
            id=resource.id,
            original=OriginalMetadata(
                key=resource.original_storage_key,
                url=f"/images/{resource.id}",
                original_name=resource.original_name,
                content_type=resource.content_type,
                format=storage_extension(resource.original_format),
                size=resource.size,
                width=resource.width,
                height=resource.height,
            ),
            variants=[VariantMetadata.from_entity(resource.id, v) for v in resource.variants],
            created_at=resource.created_at,
        )


class Pagination(BaseModel):
    page: int = Field(..., ge=1)
    limit: int = Field(..., ge=1, le=100)
    total: int = Field(..., ge=0)
    total_pages: int = Field(..., ge=1)


class ListImagesResponse(BaseModel):
    items: list[ImageMetadata]
    pagination: Pagination


class DeleteImageResponse(BaseModel):
    id: str
    deleted: bool = True
    removed_keys: int = Field(..., description="Number of blob objects removed (original + variants)", ge=0)


class TransformRequest(BaseModel):
    """Body of the transform endpoints. Validation of the operations happens server-side."""
    transformations: dict[str, Any] = Field(
        ...,
        description="Sparse set of operation groups: resize, crop, rotate, flip, mirror, filters, compress, format, watermark",
        examples=[
            {
                "resize": {"width": 800, "height": 600, "fit": "cover"},
                "filters": {"sepia": True},
                "format": "webp",
                "watermark": {"text": "PixelForge", "position": "southeast", "opacity": 40},
            }
        ],
    )


class SaveTransformResponse(BaseModel):
    image_id: str
    cached: bool = Field(..., description="True when the variant already existed and the pipeline was skipped")
    variant: VariantMetadata


class CreateUploadUrlRequest(BaseModel):
    file_name: str = Field(..., min_length=1, examples=["photo.png"])
    content_type: str = Field(..., min_length=1, examples=["image/png"])


class CreateUploadUrlResponse(BaseModel):
    key: str
    upload_url: str
    token: str | None = None
    method: str = "PUT"
    headers: dict[str, str] = Field(default_factory=dict)


class FinalizeUploadRequest(BaseModel):
    key: str = Field(..., min_length=1)
    file_name: str = Field(..., min_length=1)
    content_type: str | None = None
