from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from pixelforge.application.services.variant_cache import VariantCache
from pixelforge.application.use_cases._shared import BinaryImage, load_owned
from pixelforge.domain.entities.formats import storage_extension
from pixelforge.domain.services.pipeline_executor import PipelineExecutor
from pixelforge.domain.services.rate_limiter import RateLimiter
from pixelforge.domain.services.spec_normalizer import normalize
from pixelforge.infrastructure.database.repositories.resource_repository import ResourceRepository
from pixelforge.infrastructure.storage.supabase_storage import SupabaseStorage
from pixelforge.infrastructure.workers.pipeline_pool import PipelineWorkerPool

logger = logging.getLogger(__name__)


@dataclass
class PreviewTransformUseCase:
    """
    Render a transformation without saving it.

    If the same transformations were saved before, the stored variant is
    served as-is. Otherwise the request counts against the rate limit and the
    pipeline runs against the original; nothing is written anywhere.
    """

    storage: SupabaseStorage
    resources: ResourceRepository
    cache: VariantCache
    pipeline: PipelineExecutor
    workers: PipelineWorkerPool
    rate_limiter: RateLimiter
    timeout_seconds: float | None = None

    async def execute(
        self, subject_id: str, resource_id: str, transformations: Any
    ) -> BinaryImage:
        spec = normalize(transformations)
        resource = await load_owned(self.resources, subject_id, resource_id)

        cached = self.cache.lookup(resource, spec.hash)
        if cached is not None:
            stored = await asyncio.to_thread(self.storage.get, cached.storage_key)
            return BinaryImage(
                data=stored.data,
                content_type=cached.content_type or stored.content_type,
                file_name=f"{resource.id}-{cached.hash}.{storage_extension(cached.format)}",
            )

        self.rate_limiter.check(subject_id, resource.id)
        source = await asyncio.to_thread(self.storage.get, resource.original_storage_key)
        result = await self.workers.run(
            self.pipeline.run_stages,
            source.data,
            spec.stages,
            resource.original_format,
            timeout=self.timeout_seconds,
        )
        logger.debug("Rendered preview resource=%s hash=%s bytes=%d", resource.id, spec.hash, result.size)
        return BinaryImage(
            data=result.data,
            content_type=result.content_type,
            file_name=f"{resource.id}-preview.{storage_extension(result.format)}",
        )
