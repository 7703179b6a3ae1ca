from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from pixelforge.application.services.variant_cache import VariantCache
from pixelforge.config import Settings
from pixelforge.domain.errors import AuthenticationError
from pixelforge.domain.services.pipeline_executor import PipelineExecutor
from pixelforge.domain.services.rate_limiter import RateLimiter, SlidingWindowRateLimiter
from pixelforge.infrastructure.database.repositories.resource_repository import ResourceRepository
from pixelforge.infrastructure.database.supabase_client import (
    SupabaseAuthAdapter,
    Subject,
    get_supabase_client,
)
from pixelforge.infrastructure.storage.supabase_storage import SupabaseStorage
from pixelforge.infrastructure.workers.pipeline_pool import PipelineWorkerPool

_bearer_scheme = HTTPBearer(auto_error=False)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


@lru_cache(maxsize=1)
def get_worker_pool() -> PipelineWorkerPool:
    settings = get_settings()
    return PipelineWorkerPool(
        max_workers=settings.pipeline_max_workers or None,
        max_queue=settings.pipeline_max_queue,
    )


@lru_cache(maxsize=1)
def get_rate_limiter() -> RateLimiter:
    # process-wide: every request must see the same buckets
    return SlidingWindowRateLimiter(get_settings().rate_limit)


@lru_cache(maxsize=1)
def get_pipeline() -> PipelineExecutor:
    return PipelineExecutor()


def get_auth_adapter() -> SupabaseAuthAdapter:
    return SupabaseAuthAdapter()


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(_bearer_scheme)] = None,
    auth: Annotated[SupabaseAuthAdapter, Depends(get_auth_adapter)] = None,
) -> Subject:
    if not credentials or not credentials.scheme or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    token = credentials.credentials
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    try:
        return auth.validate_token(token)
    except AuthenticationError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc))


def get_storage() -> SupabaseStorage:
    return SupabaseStorage(get_supabase_client())


def get_resource_repo() -> ResourceRepository:
    return ResourceRepository(get_supabase_client())


def get_variant_cache(
    storage: Annotated[SupabaseStorage, Depends(get_storage)],
    resources: Annotated[ResourceRepository, Depends(get_resource_repo)],
) -> VariantCache:
    return VariantCache(storage=storage, resources=resources)
