from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass

from pixelforge.domain.entities.formats import (
    format_from_filename,
    format_to_mime,
    mime_to_format,
    storage_extension,
)
from pixelforge.domain.entities.resource import Resource
from pixelforge.domain.errors import UnsupportedFormatError
from pixelforge.domain.services.pipeline_executor import PipelineExecutor
from pixelforge.infrastructure.database.repositories.resource_repository import ResourceRepository
from pixelforge.infrastructure.storage.supabase_storage import SupabaseStorage

logger = logging.getLogger(__name__)


def original_key(resource_id: str, fmt: str) -> str:
    return f"images/original/{resource_id}.{storage_extension(fmt)}"


@dataclass
class UploadImageUseCase:
    storage: SupabaseStorage
    resources: ResourceRepository
    pipeline: PipelineExecutor

    async def execute(
        self,
        subject_id: str,
        data: bytes,
        file_name: str | None,
        content_type: str | None,
    ) -> Resource:
        """
        Store an original image and create its resource record.

        The bytes are uploaded before the record exists, so a failure between
        the two leaves an unreferenced object rather than a dangling record.
        """
        if not data:
            raise UnsupportedFormatError("Image file is required")
        if content_type and not content_type.startswith("image/"):
            raise UnsupportedFormatError("Only image uploads are supported")

        detected, width, height = await asyncio.to_thread(self.pipeline.probe, data)
        fmt = detected or mime_to_format(content_type) or format_from_filename(file_name)
        if fmt is None:
            raise UnsupportedFormatError("Unsupported source image format")

        resource_id = str(uuid.uuid4())
        key = original_key(resource_id, fmt)
        mime = content_type or format_to_mime(fmt)
        await asyncio.to_thread(self.storage.put, key, data, mime)

        resource = await asyncio.to_thread(
            self.resources.create,
            owner_id=subject_id,
            original_storage_key=key,
            original_name=file_name or f"image.{storage_extension(fmt)}",
            content_type=mime,
            original_format=fmt,
            size=len(data),
            width=width,
            height=height,
            resource_id=resource_id,
        )
        logger.info("Uploaded image resource=%s owner=%s format=%s", resource.id, subject_id, fmt)
        return resource
