from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass

from pixelforge.domain.entities.resource import Resource
from pixelforge.infrastructure.database.repositories.resource_repository import ResourceRepository

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class ImagePage:
    items: list[Resource]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return max(math.ceil(self.total / self.limit), 1)


@dataclass
class ListImagesUseCase:
    resources: ResourceRepository

    async def execute(self, subject_id: str, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> ImagePage:
        page = page if page and page > 0 else 1
        limit = min(limit, MAX_PAGE_SIZE) if limit and limit > 0 else DEFAULT_PAGE_SIZE
        items, total = await asyncio.gather(
            asyncio.to_thread(self.resources.list_by_owner, subject_id, limit, (page - 1) * limit),
            asyncio.to_thread(self.resources.count_by_owner, subject_id),
        )
        return ImagePage(items=items, page=page, limit=limit, total=total)
