from __future__ import annotations

import logging
import mimetypes
import os
from dataclasses import dataclass
from pathlib import Path

from supabase import Client

from pixelforge.domain.errors import NotFoundError, StorageError

logger = logging.getLogger(__name__)


@dataclass
class StoredObject:
    data: bytes
    content_type: str
    content_length: int


@dataclass
class UploadTicket:
    key: str
    upload_url: str
    token: str | None
    method: str = "PUT"


class SupabaseStorage:
    """Blob store over Supabase Storage with a local-directory fake fallback.

    Keys are bucket-relative paths such as ``images/original/{id}.png``.
    """

    def __init__(self, client: Client | None) -> None:
        self.client = client
        self.bucket = os.getenv("SUPABASE_STORAGE_BUCKET", "images")
        self.disabled = os.getenv("SUPABASE_DISABLED", "0") == "1"
        self.local_dir = Path(os.getenv("SUPABASE_STORAGE_LOCAL_DIR", ".local_storage"))
        if self.local_mode:
            self.local_dir.mkdir(parents=True, exist_ok=True)

    @property
    def local_mode(self) -> bool:
        return self.disabled or self.client is None

    def _local_path(self, key: str) -> Path:
        path = (self.local_dir / key).resolve()
        if self.local_dir.resolve() not in path.parents:
            raise StorageError(f"Invalid storage key: {key}")
        return path

    def put(self, key: str, data: bytes, content_type: str) -> None:
        """Store ``data`` under ``key``, replacing whatever was there."""
        if not key or data is None:
            raise StorageError("key and data are required")
        if self.local_mode:
            full_path = self._local_path(key)
            full_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = full_path.with_name(full_path.name + ".part")
            tmp_path.write_bytes(data)
            tmp_path.replace(full_path)
            return
        try:  # pragma: no cover - network
            self.client.storage.from_(self.bucket).upload(  # type: ignore[attr-defined]
                path=key,
                file=data,
                file_options={"content-type": content_type, "upsert": "true"},
            )
        except Exception as exc:  # pragma: no cover
            raise StorageError(f"Storage upload failed: {exc}") from exc

    def get(self, key: str) -> StoredObject:
        if not key:
            raise StorageError("key is required")
        if self.local_mode:
            full_path = self._local_path(key)
            if not full_path.is_file():
                raise NotFoundError(f"Stored object not found: {key}")
            data = full_path.read_bytes()
            return StoredObject(
                data=data,
                content_type=mimetypes.guess_type(key)[0] or "application/octet-stream",
                content_length=len(data),
            )
        try:  # pragma: no cover - network
            data = self.client.storage.from_(self.bucket).download(key)  # type: ignore[attr-defined]
        except Exception as exc:  # pragma: no cover
            if "not found" in str(exc).lower():
                raise NotFoundError(f"Stored object not found: {key}") from exc
            raise StorageError(f"Storage download failed: {exc}") from exc
        return StoredObject(  # pragma: no cover - network
            data=data,
            content_type=mimetypes.guess_type(key)[0] or "application/octet-stream",
            content_length=len(data),
        )

    def delete(self, key: str) -> None:
        if not key:
            return
        self.delete_many([key])

    def delete_many(self, keys: list[str]) -> None:
        keys = [k for k in keys if k]
        if not keys:
            return
        if self.local_mode:
            for key in keys:
                full_path = self._local_path(key)
                if full_path.exists():
                    full_path.unlink()
            return
        try:  # pragma: no cover - network
            self.client.storage.from_(self.bucket).remove(keys)  # type: ignore[attr-defined]
        except Exception as exc:
            raise StorageError(f"Storage delete failed: {exc}") from exc
        logger.debug("Removed %d objects from bucket=%s", len(keys), self.bucket)

    def create_upload_url(self, key: str) -> UploadTicket:
        """Signed URL the client can PUT the original image to."""
        if self.local_mode:
            return UploadTicket(key=key, upload_url=f"/local-storage/{key}", token=None)
        try:  # pragma: no cover - network
            res = self.client.storage.from_(self.bucket).create_signed_upload_url(key)  # type: ignore[attr-defined]
        except Exception as exc:  # pragma: no cover
            raise StorageError(f"Signed upload URL failed: {exc}") from exc
        return UploadTicket(  # pragma: no cover - network
            key=key,
            upload_url=res.get("signed_url") or res.get("signedUrl", ""),
            token=res.get("token"),
        )
