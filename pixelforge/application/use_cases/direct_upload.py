"""Two-step upload: the client PUTs straight to storage, then asks us to register it."""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
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
from pixelforge.infrastructure.storage.supabase_storage import SupabaseStorage, UploadTicket

logger = logging.getLogger(__name__)


def pending_prefix(subject_id: str) -> str:
    return f"images/pending/{subject_id}/"


@dataclass
class CreateUploadUrlUseCase:
    storage: SupabaseStorage

    async def execute(self, subject_id: str, file_name: str, content_type: str) -> UploadTicket:
        if not content_type.startswith("image/"):
            raise UnsupportedFormatError("Only image content types are supported")
        fmt = format_from_filename(file_name) or mime_to_format(content_type)
        if fmt is None:
            raise UnsupportedFormatError("Unsupported source image format")
        key = (
            f"{pending_prefix(subject_id)}"
            f"{int(time.time() * 1000)}-{secrets.token_hex(4)}.{storage_extension(fmt)}"
        )
        return await asyncio.to_thread(self.storage.create_upload_url, key)


@dataclass
class FinalizeUploadUseCase:
    storage: SupabaseStorage
    resources: ResourceRepository
    pipeline: PipelineExecutor

    async def execute(
        self,
        subject_id: str,
        key: str,
        file_name: str,
        content_type: str | None = None,
    ) -> Resource:
        # only keys handed out to this subject may be claimed
        if not key.startswith(pending_prefix(subject_id)) or ".." in key:
            raise UnsupportedFormatError("Invalid upload key for this user")

        stored = await asyncio.to_thread(self.storage.get, key)
        mime = (content_type or "").strip() or stored.content_type
        if not mime.startswith("image/"):
            raise UnsupportedFormatError("Uploaded object is not an image")

        detected, width, height = await asyncio.to_thread(self.pipeline.probe, stored.data)
        fmt = detected or mime_to_format(mime) or format_from_filename(file_name)
        if fmt is None:
            raise UnsupportedFormatError("Unsupported source image format")

        resource = await asyncio.to_thread(
            self.resources.create,
            owner_id=subject_id,
            original_storage_key=key,
            original_name=file_name,
            content_type=mime if mime_to_format(mime) else format_to_mime(fmt),
            original_format=fmt,
            size=stored.content_length or len(stored.data),
            width=width,
            height=height,
        )
        logger.info("Finalized direct upload resource=%s key=%s", resource.id, key)
        return resource
