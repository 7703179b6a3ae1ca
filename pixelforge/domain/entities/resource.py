from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any


@dataclass(frozen=True)
class Variant:
    hash: str  # content hash of the canonical transformations
    storage_key: str  # images/variants/{resource_id}/{hash}.{ext}
    content_type: str
    format: str
    size: int  # bytes
    width: int
    height: int
    transformations: Mapping[str, Any]  # canonical transformations that produced this artifact
    created_at: datetime


class VariantSet:
    """Append-only collection of variants keyed by hash.

    ``add`` is insert-if-absent: adding a variant whose hash is already present
    leaves the set unchanged and hands back the variant that was there first.
    There is no removal; variants go away only with their resource.
    """

    __slots__ = ("_by_hash",)

    def __init__(self, variants: Iterable[Variant] = ()) -> None:
        self._by_hash: dict[str, Variant] = {}
        for variant in variants:
            self.add(variant)

    def add(self, variant: Variant) -> tuple[Variant, bool]:
        existing = self._by_hash.get(variant.hash)
        if existing is not None:
            return existing, False
        self._by_hash[variant.hash] = variant
        return variant, True

    def get(self, variant_hash: str) -> Variant | None:
        return self._by_hash.get(variant_hash)

    def as_mapping(self) -> Mapping[str, Variant]:
        return MappingProxyType(self._by_hash)

    def storage_keys(self) -> list[str]:
        return [v.storage_key for v in self._by_hash.values()]

    def __contains__(self, variant_hash: object) -> bool:
        return variant_hash in self._by_hash

    def __iter__(self) -> Iterator[Variant]:
        return iter(self._by_hash.values())

    def __len__(self) -> int:
        return len(self._by_hash)

    def __repr__(self) -> str:
        return f"VariantSet({list(self._by_hash)})"


@dataclass(frozen=True)
class Resource:
    id: str
    owner_id: str
    original_storage_key: str  # images/original/{id}.{ext}
    original_name: str
    content_type: str
    original_format: str  # normalized: jpeg | png | webp | avif
    size: int  # bytes
    width: int | None
    height: int | None
    created_at: datetime
    variants: VariantSet = field(default_factory=VariantSet, compare=False)

    def find_variant(self, variant_hash: str) -> Variant | None:
        return self.variants.get(variant_hash)

    def storage_keys(self) -> list[str]:
        """Every blob key owned by this resource, original first."""
        keys = [self.original_storage_key, *self.variants.storage_keys()]
        return [k for k in keys if k]
