from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, HTTPException, Request, status

from pixelforge.application.use_cases.direct_upload import pending_prefix
from pixelforge.domain.errors import StorageError
from pixelforge.infrastructure.api.dependencies import get_current_user, get_storage
from pixelforge.infrastructure.storage.supabase_storage import SupabaseStorage

# Stand-in for the Supabase signed upload endpoint when storage runs from a
# local directory. Only pending keys of the caller are writable.
router = APIRouter(prefix="/local-storage", tags=["Local Storage"], include_in_schema=False)


@router.put("/{key:path}", status_code=status.HTTP_204_NO_CONTENT)
async def put_local_object(
    key: str,
    request: Request,
    user=Depends(get_current_user),
    storage: SupabaseStorage = Depends(get_storage),
):
    if not storage.local_mode:
        raise HTTPException(status_code=404, detail="Not Found")
    if not key.startswith(pending_prefix(user.id)):
        raise HTTPException(status_code=403, detail="Key is not writable by this user")
    data = await request.body()
    if not data:
        raise HTTPException(status_code=400, detail="Request body is empty")
    content_type = request.headers.get("content-type", "application/octet-stream")
    try:
        await asyncio.to_thread(storage.put, key, data, content_type)
    except StorageError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
