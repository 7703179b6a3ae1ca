from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from pixelforge.application.use_cases._shared import load_owned
from pixelforge.infrastructure.database.repositories.resource_repository import ResourceRepository
from pixelforge.infrastructure.storage.supabase_storage import SupabaseStorage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeletedImage:
    id: str
    removed_keys: int


@dataclass
class DeleteImageUseCase:
    storage: SupabaseStorage
    resources: ResourceRepository

    async def execute(self, subject_id: str, resource_id: str) -> DeletedImage:
        """Remove the original and every variant from storage, then the record.

        Blobs go first: if storage fails the record survives and the delete can
        be retried; the reverse order would leak objects nothing points to.
        """
        resource = await load_owned(self.resources, subject_id, resource_id)
        keys = resource.storage_keys()
        await asyncio.to_thread(self.storage.delete_many, keys)
        await asyncio.to_thread(self.resources.delete, resource.id)
        logger.info("Deleted image resource=%s removed_keys=%d", resource.id, len(keys))
        return DeletedImage(id=resource.id, removed_keys=len(keys))
