from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from pixelforge.application.services.variant_cache import VariantCache
from pixelforge.application.use_cases._shared import load_owned
from pixelforge.domain.entities.resource import Variant
from pixelforge.domain.services.pipeline_executor import PipelineExecutor
from pixelforge.domain.services.rate_limiter import RateLimiter
from pixelforge.domain.services.spec_normalizer import normalize
from pixelforge.infrastructure.database.repositories.resource_repository import ResourceRepository
from pixelforge.infrastructure.storage.supabase_storage import SupabaseStorage
from pixelforge.infrastructure.workers.pipeline_pool import PipelineWorkerPool

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SavedTransform:
    resource_id: str
    cached: bool
    variant: Variant


@dataclass
class SaveTransformUseCase:
    storage: SupabaseStorage
    resources: ResourceRepository
    cache: VariantCache
    pipeline: PipelineExecutor
    workers: PipelineWorkerPool
    rate_limiter: RateLimiter
    timeout_seconds: float | None = None

    async def execute(
        self, subject_id: str, resource_id: str, transformations: Any
    ) -> SavedTransform:
        """
        Produce (or reuse) the stored variant for ``transformations``.

        Flow:
        1. Validate and hash the request
        2. Cache hit -> return it with ``cached=True``; the pipeline is skipped
        3. Miss -> rate limit gate, fetch original, run the pipeline on the worker pool
        4. Commit: artifact upload, then metadata insert-if-absent

        Any failure before step 4 (validation, rate limit, storage, pipeline,
        timeout, cancellation) leaves no trace in either store.
        """
        spec = normalize(transformations)
        resource = await load_owned(self.resources, subject_id, resource_id)

        existing = self.cache.lookup(resource, spec.hash)
        if existing is not None:
            return SavedTransform(resource_id=resource.id, cached=True, variant=existing)

        self.rate_limiter.check(subject_id, resource.id)
        source = await asyncio.to_thread(self.storage.get, resource.original_storage_key)
        result = await self.workers.run(
            self.pipeline.run_stages,
            source.data,
            spec.stages,
            resource.original_format,
            timeout=self.timeout_seconds,
        )

        variant, _ = await asyncio.to_thread(self.cache.commit, resource.id, spec, result)
        return SavedTransform(resource_id=resource.id, cached=False, variant=variant)
