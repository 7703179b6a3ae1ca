from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from pixelforge.domain.entities.formats import storage_extension
from pixelforge.domain.entities.resource import Resource, Variant
from pixelforge.domain.services.pipeline_executor import PipelineResult
from pixelforge.domain.services.spec_normalizer import NormalizedSpec
from pixelforge.infrastructure.database.repositories.resource_repository import ResourceRepository
from pixelforge.infrastructure.storage.supabase_storage import SupabaseStorage

logger = logging.getLogger(__name__)


@dataclass
class VariantCache:
    """Content-addressed cache of transformed artifacts, one per (resource, hash).

    Commit writes the artifact to the blob store first and only then records
    the metadata, so a crash in between leaves at worst an orphaned object,
    never a variant pointing at missing bytes. Identical requests racing each
    other may both run the pipeline; the metadata insert is insert-if-absent,
    so only the first one is recorded and the other gets that variant back.
    """

    storage: SupabaseStorage
    resources: ResourceRepository

    @staticmethod
    def storage_key(resource_id: str, variant_hash: str, fmt: str) -> str:
        return f"images/variants/{resource_id}/{variant_hash}.{storage_extension(fmt)}"

    def lookup(self, resource: Resource, variant_hash: str) -> Variant | None:
        variant = resource.find_variant(variant_hash)
        logger.debug(
            "Variant cache %s resource=%s hash=%s",
            "hit" if variant else "miss",
            resource.id,
            variant_hash,
        )
        return variant

    def commit(
        self, resource_id: str, spec: NormalizedSpec, result: PipelineResult
    ) -> tuple[Variant, bool]:
        key = self.storage_key(resource_id, spec.hash, result.format)
        # same hash means same bytes, so overwriting a racing upload is harmless
        self.storage.put(key, result.data, result.content_type)
        variant = Variant(
            hash=spec.hash,
            storage_key=key,
            content_type=result.content_type,
            format=result.format,
            size=result.size,
            width=result.width,
            height=result.height,
            transformations=spec.canonical,
            created_at=datetime.now(UTC),
        )
        stored, inserted = self.resources.append_variant(resource_id, variant)
        if inserted:
            logger.info("Stored variant resource=%s hash=%s key=%s", resource_id, spec.hash, key)
        else:
            logger.info(
                "Variant resource=%s hash=%s already committed by a concurrent request",
                resource_id,
                spec.hash,
            )
        return stored, inserted
