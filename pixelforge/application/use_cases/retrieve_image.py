from __future__ import annotations

import asyncio
from dataclasses import dataclass

from pixelforge.application.use_cases._shared import BinaryImage, load_owned
from pixelforge.domain.entities.formats import (
    ensure_output_format,
    normalize_format,
    storage_extension,
)
from pixelforge.domain.entities.stages import DEFAULT_QUALITY, EncodeStage
from pixelforge.domain.errors import NotFoundError
from pixelforge.domain.services.pipeline_executor import PipelineExecutor
from pixelforge.infrastructure.database.repositories.resource_repository import ResourceRepository
from pixelforge.infrastructure.storage.supabase_storage import SupabaseStorage
from pixelforge.infrastructure.workers.pipeline_pool import PipelineWorkerPool


@dataclass
class RetrieveImageUseCase:
    """Serve the original or a stored variant, optionally re-encoded.

    Re-encoding is a one-off conversion: it is never cached as a variant.
    """

    storage: SupabaseStorage
    resources: ResourceRepository
    pipeline: PipelineExecutor
    workers: PipelineWorkerPool
    timeout_seconds: float | None = None

    async def execute(
        self,
        subject_id: str,
        resource_id: str,
        variant_hash: str | None = None,
        output_format: str | None = None,
    ) -> BinaryImage:
        # reject a bad format before touching storage
        target = ensure_output_format(output_format) if output_format else None
        resource = await load_owned(self.resources, subject_id, resource_id)

        key = resource.original_storage_key
        content_type = resource.content_type
        source_format = normalize_format(resource.original_format) or "jpeg"
        file_name = f"{resource.id}.{storage_extension(source_format)}"

        if variant_hash:
            variant = resource.find_variant(variant_hash)
            if variant is None:
                raise NotFoundError("Transformed variant not found")
            key = variant.storage_key
            content_type = variant.content_type
            file_name = f"{resource.id}-{variant.hash}.{storage_extension(variant.format)}"

        stored = await asyncio.to_thread(self.storage.get, key)
        if target is None:
            return BinaryImage(
                data=stored.data,
                content_type=content_type or stored.content_type,
                file_name=file_name,
            )

        result = await self.workers.run(
            self.pipeline.run_stages,
            stored.data,
            (EncodeStage(format=target, quality=DEFAULT_QUALITY),),
            None,
            timeout=self.timeout_seconds,
        )
        return BinaryImage(
            data=result.data,
            content_type=result.content_type,
            file_name=f"{resource.id}.{storage_extension(result.format)}",
        )
