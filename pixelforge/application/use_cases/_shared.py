from __future__ import annotations

import asyncio
from dataclasses import dataclass

from pixelforge.domain.entities.resource import Resource
from pixelforge.domain.errors import NotFoundError
from pixelforge.infrastructure.database.repositories.resource_repository import ResourceRepository


@dataclass(frozen=True)
class BinaryImage:
    data: bytes
    content_type: str
    file_name: str


async def load_owned(resources: ResourceRepository, subject_id: str, resource_id: str) -> Resource:
    """The resource, if ``subject_id`` owns it. Foreign and missing ids look the same."""
    resource = await asyncio.to_thread(resources.find_owned, resource_id, subject_id)
    if resource is None:
        raise NotFoundError("Image not found")
    return resource
