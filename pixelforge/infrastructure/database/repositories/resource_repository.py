from __future__ import annotations

import logging
import os
import threading
import uuid
from dataclasses import asdict, replace
from datetime import UTC, datetime
from typing import Any

from psycopg2.extras import Json
from supabase import Client

from pixelforge.domain.entities.resource import Resource, Variant, VariantSet
from pixelforge.domain.errors import NotFoundError, StorageError
from pixelforge.infrastructure.database.postgres_client import get_postgres_client

logger = logging.getLogger(__name__)

# module-level in-memory store for disabled mode
_MEM_RESOURCES: dict[str, Resource] = {}
_MEM_LOCK = threading.Lock()

_UNIQUE_VIOLATION = "23505"

_RESOURCE_COLUMNS = (
    "id",
    "owner_id",
    "original_storage_key",
    "original_name",
    "content_type",
    "original_format",
    "size",
    "width",
    "height",
    "created_at",
)


def _parse_ts(value: Any) -> datetime:
    # PostgreSQL returns datetime objects, Supabase returns ISO strings
    if isinstance(value, str):
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    return value


def _snapshot(resource: Resource) -> Resource:
    return replace(resource, variants=VariantSet(resource.variants))


class ResourceRepository:
    """Resource metadata store: in-memory, local PostgreSQL, or Supabase tables.

    Variants live in their own table keyed by ``(resource_id, hash)``; that
    primary key is what makes ``append_variant`` insert-if-absent in the
    database backends.
    """

    def __init__(self, client: Client | None) -> None:
        self.client = client
        self.disabled = os.getenv("SUPABASE_DISABLED", "0") == "1"
        self.use_local_db = os.getenv("USE_LOCAL_DB", "0") == "1"
        self.pg_client = get_postgres_client() if self.use_local_db else None

    # --------- row mapping ---------

    def _row_to_variant(self, row: dict) -> Variant:
        return Variant(
            hash=row["hash"],
            storage_key=row["storage_key"],
            content_type=row["content_type"],
            format=row["format"],
            size=row["size"],
            width=row["width"],
            height=row["height"],
            transformations=row.get("transformations") or {},
            created_at=_parse_ts(row["created_at"]),
        )

    def _row_to_resource(self, row: dict, variant_rows: list[dict] | None = None) -> Resource:
        return Resource(
            id=str(row["id"]),
            owner_id=row["owner_id"],
            original_storage_key=row.get("original_storage_key") or "",
            original_name=row["original_name"],
            content_type=row["content_type"],
            original_format=row["original_format"],
            size=row["size"],
            width=row.get("width"),
            height=row.get("height"),
            created_at=_parse_ts(row["created_at"]),
            variants=VariantSet(self._row_to_variant(v) for v in (variant_rows or [])),
        )

    def _variant_row(self, resource_id: str, variant: Variant) -> dict[str, Any]:
        data = asdict(variant)
        data["resource_id"] = resource_id
        data["transformations"] = dict(variant.transformations)
        data["created_at"] = variant.created_at.isoformat()
        return data

    # --------- commands ---------

    def create(
        self,
        owner_id: str,
        original_storage_key: str,
        original_name: str,
        content_type: str,
        original_format: str,
        size: int,
        width: int | None,
        height: int | None,
        resource_id: str | None = None,
    ) -> Resource:
        now = datetime.now(UTC)
        resource = Resource(
            id=resource_id or str(uuid.uuid4()),
            owner_id=owner_id,
            original_storage_key=original_storage_key,
            original_name=original_name,
            content_type=content_type,
            original_format=original_format,
            size=size,
            width=width,
            height=height,
            created_at=now,
        )

        # PostgreSQL mode
        if self.use_local_db and self.pg_client:
            row = self.pg_client.fetch_one(
                f"""
                INSERT INTO resources ({", ".join(_RESOURCE_COLUMNS)})
                VALUES ({", ".join(["%s"] * len(_RESOURCE_COLUMNS))})
                RETURNING *
                """,
                tuple(getattr(resource, col) for col in _RESOURCE_COLUMNS),
            )
            if row is None:  # pragma: no cover
                raise StorageError("Insert resource did not return a row")
            return self._row_to_resource(row)

        # In-memory mode
        if self.disabled or self.client is None:
            with _MEM_LOCK:
                _MEM_RESOURCES[resource.id] = resource
                return _snapshot(resource)

        # Supabase mode
        try:  # pragma: no cover - network
            data = {col: getattr(resource, col) for col in _RESOURCE_COLUMNS}
            data["created_at"] = now.isoformat()
            res = self.client.table("resources").insert(data).execute()
            return self._row_to_resource(res.data[0])
        except Exception as exc:  # pragma: no cover
            raise StorageError(f"DB insert resource failed: {exc}") from exc

    def append_variant(self, resource_id: str, variant: Variant) -> tuple[Variant, bool]:
        """Insert ``variant`` unless one with the same hash exists.

        Returns the variant now on record and whether this call inserted it.
        """
        # PostgreSQL mode
        if self.use_local_db and self.pg_client:
            row = self.pg_client.fetch_one(
                """
                INSERT INTO resource_variants (
                    resource_id, hash, storage_key, content_type, format,
                    size, width, height, transformations, created_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (resource_id, hash) DO NOTHING
                RETURNING *
                """,
                (
                    resource_id,
                    variant.hash,
                    variant.storage_key,
                    variant.content_type,
                    variant.format,
                    variant.size,
                    variant.width,
                    variant.height,
                    Json(dict(variant.transformations)),
                    variant.created_at,
                ),
            )
            if row is not None:
                return self._row_to_variant(row), True
            existing = self.pg_client.fetch_one(
                "SELECT * FROM resource_variants WHERE resource_id = %s AND hash = %s",
                (resource_id, variant.hash),
            )
            if existing is None:  # pragma: no cover
                raise StorageError("Variant conflict without an existing row")
            return self._row_to_variant(existing), False

        # In-memory mode
        if self.disabled or self.client is None:
            with _MEM_LOCK:
                resource = _MEM_RESOURCES.get(resource_id)
                if resource is None:
                    raise NotFoundError("Image not found")
                return resource.variants.add(variant)

        # Supabase mode
        try:  # pragma: no cover - network
            res = self.client.table("resource_variants").insert(
                self._variant_row(resource_id, variant)
            ).execute()
            return self._row_to_variant(res.data[0]), True
        except Exception as exc:  # pragma: no cover
            if getattr(exc, "code", None) != _UNIQUE_VIOLATION:
                raise StorageError(f"DB insert variant failed: {exc}") from exc
        existing = self._supabase_variant(resource_id, variant.hash)  # pragma: no cover
        if existing is None:  # pragma: no cover
            raise StorageError("Variant conflict without an existing row")
        return existing, False  # pragma: no cover

    def delete(self, resource_id: str) -> bool:
        # PostgreSQL mode (variants cascade)
        if self.use_local_db and self.pg_client:
            return self.pg_client.execute("DELETE FROM resources WHERE id = %s", (resource_id,)) > 0

        # In-memory mode
        if self.disabled or self.client is None:
            with _MEM_LOCK:
                return _MEM_RESOURCES.pop(resource_id, None) is not None

        # Supabase mode
        try:  # pragma: no cover - network
            self.client.table("resource_variants").delete().eq("resource_id", resource_id).execute()
            self.client.table("resources").delete().eq("id", resource_id).execute()
            return True
        except Exception as exc:  # pragma: no cover
            raise StorageError(f"DB delete resource failed: {exc}") from exc

    # --------- queries ---------

    def find_owned(self, resource_id: str, owner_id: str) -> Resource | None:
        resource = self.get(resource_id)
        if resource is None or resource.owner_id != owner_id:
            return None
        return resource

    def get(self, resource_id: str) -> Resource | None:
        # PostgreSQL mode
        if self.use_local_db and self.pg_client:
            try:
                uuid.UUID(resource_id)
            except ValueError:
                return None
            row = self.pg_client.fetch_one("SELECT * FROM resources WHERE id = %s", (resource_id,))
            if row is None:
                return None
            variant_rows = self.pg_client.fetch_all(
                "SELECT * FROM resource_variants WHERE resource_id = %s ORDER BY created_at",
                (resource_id,),
            )
            return self._row_to_resource(row, variant_rows)

        # In-memory mode
        if self.disabled or self.client is None:
            with _MEM_LOCK:
                resource = _MEM_RESOURCES.get(resource_id)
                return _snapshot(resource) if resource else None

        # Supabase mode
        try:  # pragma: no cover - network
            res = (
                self.client.table("resources")
                .select("*, resource_variants(*)")
                .eq("id", resource_id)
                .limit(1)
                .execute()
            )
        except Exception as exc:  # pragma: no cover
            raise StorageError(f"DB get resource failed: {exc}") from exc
        rows = res.data or []  # pragma: no cover
        if not rows:  # pragma: no cover
            return None
        row = rows[0]  # pragma: no cover
        return self._row_to_resource(row, row.pop("resource_variants", None))  # pragma: no cover

    def list_by_owner(self, owner_id: str, limit: int = 10, offset: int = 0) -> list[Resource]:
        # PostgreSQL mode
        if self.use_local_db and self.pg_client:
            rows = self.pg_client.fetch_all(
                """
                SELECT * FROM resources WHERE owner_id = %s
                ORDER BY created_at DESC LIMIT %s OFFSET %s
                """,
                (owner_id, limit, offset),
            )
            return [r for r in (self.get(str(row["id"])) for row in rows) if r is not None]

        # In-memory mode
        if self.disabled or self.client is None:
            with _MEM_LOCK:
                owned = [_snapshot(r) for r in _MEM_RESOURCES.values() if r.owner_id == owner_id]
            owned.sort(key=lambda r: r.created_at, reverse=True)
            return owned[offset : offset + limit]

        # Supabase mode
        try:  # pragma: no cover - network
            res = (
                self.client.table("resources")
                .select("*, resource_variants(*)")
                .eq("owner_id", owner_id)
                .order("created_at", desc=True)
                .range(offset, offset + limit - 1)
                .execute()
            )
            return [
                self._row_to_resource(row, row.pop("resource_variants", None))
                for row in (res.data or [])
            ]
        except Exception as exc:  # pragma: no cover
            raise StorageError(f"DB list resources failed: {exc}") from exc

    def count_by_owner(self, owner_id: str) -> int:
        # PostgreSQL mode
        if self.use_local_db and self.pg_client:
            row = self.pg_client.fetch_one(
                "SELECT COUNT(*) AS total FROM resources WHERE owner_id = %s", (owner_id,)
            )
            return int(row["total"]) if row else 0

        # In-memory mode
        if self.disabled or self.client is None:
            with _MEM_LOCK:
                return sum(1 for r in _MEM_RESOURCES.values() if r.owner_id == owner_id)

        # Supabase mode
        try:  # pragma: no cover - network
            res = (
                self.client.table("resources")
                .select("id", count="exact")
                .eq("owner_id", owner_id)
                .execute()
            )
            return res.count or 0
        except Exception as exc:  # pragma: no cover
            raise StorageError(f"DB count resources failed: {exc}") from exc

    def _supabase_variant(self, resource_id: str, variant_hash: str) -> Variant | None:  # pragma: no cover
        res = (
            self.client.table("resource_variants")
            .select("*")
            .eq("resource_id", resource_id)
            .eq("hash", variant_hash)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return self._row_to_variant(rows[0]) if rows else None
