from __future__ import annotations

import logging
import math

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from fastapi.responses import Response

from pixelforge.application.dtos.resource_dto import (
    CreateUploadUrlRequest,
    CreateUploadUrlResponse,
    DeleteImageResponse,
    FinalizeUploadRequest,
    ImageMetadata,
    ListImagesResponse,
    Pagination,
    SaveTransformResponse,
    TransformRequest,
    VariantMetadata,
)
from pixelforge.application.services.variant_cache import VariantCache
from pixelforge.application.use_cases._shared import BinaryImage
from pixelforge.application.use_cases.delete_image import DeleteImageUseCase
from pixelforge.application.use_cases.direct_upload import (
    CreateUploadUrlUseCase,
    FinalizeUploadUseCase,
)
from pixelforge.application.use_cases.list_images import ListImagesUseCase
from pixelforge.application.use_cases.preview_transform import PreviewTransformUseCase
from pixelforge.application.use_cases.retrieve_image import RetrieveImageUseCase
from pixelforge.application.use_cases.save_transform import SaveTransformUseCase
from pixelforge.application.use_cases.upload_image import UploadImageUseCase
from pixelforge.config import Settings
from pixelforge.domain.errors import (
    AuthenticationError,
    InvalidSpecification,
    NotFoundError,
    PipelineBusyError,
    PipelineError,
    PipelineTimeoutError,
    PixelForgeError,
    RateLimitExceeded,
    StorageError,
    UnsupportedFormatError,
)
from pixelforge.domain.services.pipeline_executor import PipelineExecutor
from pixelforge.domain.services.rate_limiter import RateLimiter
from pixelforge.infrastructure.api.dependencies import (
    get_current_user,
    get_pipeline,
    get_rate_limiter,
    get_resource_repo,
    get_settings,
    get_storage,
    get_variant_cache,
    get_worker_pool,
)
from pixelforge.infrastructure.database.repositories.resource_repository import ResourceRepository
from pixelforge.infrastructure.storage.supabase_storage import SupabaseStorage
from pixelforge.infrastructure.workers.pipeline_pool import PipelineWorkerPool

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/images",
    tags=["Images"],
    responses={
        401: {"description": "Unauthorized - Invalid or missing authentication token"},
        404: {"description": "Not Found - Image does not exist or user doesn't have access"},
    },
)


def _to_http(exc: PixelForgeError) -> HTTPException:
    """Translate a domain error into the matching HTTP response."""
    if isinstance(exc, InvalidSpecification):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(exc), "field": exc.field, "reason": exc.reason},
        )
    if isinstance(exc, RateLimitExceeded):
        return HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=str(exc),
            headers={"Retry-After": str(max(1, math.ceil(exc.retry_after)))},
        )
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, UnsupportedFormatError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, AuthenticationError):
        return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc))
    if isinstance(exc, PipelineBusyError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    # before PipelineError: a timeout is a pipeline failure too
    if isinstance(exc, PipelineTimeoutError):
        return HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=str(exc))
    if isinstance(exc, PipelineError):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, StorageError):
        logger.error("Storage failure: %s", exc)
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _binary(image: BinaryImage) -> Response:
    return Response(
        content=image.data,
        media_type=image.content_type,
        headers={"Content-Disposition": f'inline; filename="{image.file_name}"'},
    )


@router.post(
    "",
    response_model=ImageMetadata,
    status_code=status.HTTP_201_CREATED,
    summary="Upload Image",
    description="""
    Upload an original image (multipart form field `file`).

    **Supported formats**: JPEG, PNG, WEBP, AVIF
    **Authentication required**: Yes (Bearer token)
    """,
    responses={400: {"description": "Bad Request - Not an image or unsupported format"}},
)
async def upload_image(
    file: UploadFile = File(..., description="Image file to upload"),
    user=Depends(get_current_user),
    storage: SupabaseStorage = Depends(get_storage),
    resources: ResourceRepository = Depends(get_resource_repo),
    pipeline: PipelineExecutor = Depends(get_pipeline),
):
    """Store an original image and return its metadata."""
    data = await file.read()
    uc = UploadImageUseCase(storage=storage, resources=resources, pipeline=pipeline)
    try:
        resource = await uc.execute(
            subject_id=user.id,
            data=data,
            file_name=file.filename,
            content_type=file.content_type,
        )
    except PixelForgeError as exc:
        raise _to_http(exc) from exc
    return ImageMetadata.from_entity(resource)


@router.get(
    "",
    response_model=ListImagesResponse,
    summary="List User Images",
    description="Paginated list of the caller's images, newest first, each with its stored variants.",
)
async def list_images(
    user=Depends(get_current_user),
    resources: ResourceRepository = Depends(get_resource_repo),
    page: int = Query(1, description="1-based page number"),
    limit: int = Query(10, description="Page size, clamped to 1-100"),
):
    uc = ListImagesUseCase(resources=resources)
    try:
        result = await uc.execute(user.id, page=page, limit=limit)
    except PixelForgeError as exc:
        raise _to_http(exc) from exc
    return ListImagesResponse(
        items=[ImageMetadata.from_entity(r) for r in result.items],
        pagination=Pagination(
            page=result.page,
            limit=result.limit,
            total=result.total,
            total_pages=result.total_pages,
        ),
    )


@router.post(
    "/upload-url",
    response_model=CreateUploadUrlResponse,
    summary="Create Direct Upload URL",
    description="""
    Reserve a pending storage key and return a signed URL the client can PUT the
    image bytes to. Complete the upload with `POST /images/finalize-upload`.
    """,
)
async def create_upload_url(
    body: CreateUploadUrlRequest,
    user=Depends(get_current_user),
    storage: SupabaseStorage = Depends(get_storage),
):
    uc = CreateUploadUrlUseCase(storage=storage)
    try:
        ticket = await uc.execute(user.id, body.file_name, body.content_type)
    except PixelForgeError as exc:
        raise _to_http(exc) from exc
    return CreateUploadUrlResponse(
        key=ticket.key,
        upload_url=ticket.upload_url,
        token=ticket.token,
        method=ticket.method,
        headers={"Content-Type": body.content_type},
    )


@router.post(
    "/finalize-upload",
    response_model=ImageMetadata,
    status_code=status.HTTP_201_CREATED,
    summary="Finalize Direct Upload",
    description="Register an object previously uploaded to a pending key as a new image.",
)
async def finalize_upload(
    body: FinalizeUploadRequest,
    user=Depends(get_current_user),
    storage: SupabaseStorage = Depends(get_storage),
    resources: ResourceRepository = Depends(get_resource_repo),
    pipeline: PipelineExecutor = Depends(get_pipeline),
):
    uc = FinalizeUploadUseCase(storage=storage, resources=resources, pipeline=pipeline)
    try:
        resource = await uc.execute(user.id, body.key, body.file_name, body.content_type)
    except PixelForgeError as exc:
        raise _to_http(exc) from exc
    return ImageMetadata.from_entity(resource)


@router.get(
    "/{image_id}",
    summary="Retrieve Image",
    description="""
    Download the original image, or a stored variant with `?variant={hash}`.

    `?format=jpeg|png|webp|avif` re-encodes the bytes on the fly (quality 80).
    Re-encoded output is not stored.
    """,
    responses={200: {"content": {"image/*": {}}, "description": "Image bytes"}},
)
async def retrieve_image(
    image_id: str,
    variant: str | None = Query(None, description="Hash of a stored variant"),
    output_format: str | None = Query(None, alias="format", description="Re-encode to this format"),
    user=Depends(get_current_user),
    storage: SupabaseStorage = Depends(get_storage),
    resources: ResourceRepository = Depends(get_resource_repo),
    pipeline: PipelineExecutor = Depends(get_pipeline),
    workers: PipelineWorkerPool = Depends(get_worker_pool),
    settings: Settings = Depends(get_settings),
):
    uc = RetrieveImageUseCase(
        storage=storage,
        resources=resources,
        pipeline=pipeline,
        workers=workers,
        timeout_seconds=settings.pipeline_timeout_seconds,
    )
    try:
        image = await uc.execute(user.id, image_id, variant_hash=variant, output_format=output_format)
    except PixelForgeError as exc:
        raise _to_http(exc) from exc
    return _binary(image)


@router.delete(
    "/{image_id}",
    response_model=DeleteImageResponse,
    summary="Delete Image",
    description="Permanently delete an image, its original bytes and every stored variant.",
)
async def delete_image(
    image_id: str,
    user=Depends(get_current_user),
    storage: SupabaseStorage = Depends(get_storage),
    resources: ResourceRepository = Depends(get_resource_repo),
):
    uc = DeleteImageUseCase(storage=storage, resources=resources)
    try:
        deleted = await uc.execute(user.id, image_id)
    except PixelForgeError as exc:
        raise _to_http(exc) from exc
    return DeleteImageResponse(id=deleted.id, deleted=True, removed_keys=deleted.removed_keys)


@router.post(
    "/{image_id}/transform",
    summary="Preview Transformation",
    description="""
    Run the transformation pipeline and return the resulting bytes without
    storing anything. If an identical variant is already stored its bytes are
    returned and the pipeline is skipped.

    Pipeline runs are rate limited per user and image.
    """,
    responses={
        200: {"content": {"image/*": {}}, "description": "Transformed image bytes"},
        400: {"description": "Invalid transformations"},
        429: {"description": "Too many pipeline runs; see Retry-After"},
    },
)
async def preview_transform(
    image_id: str,
    body: TransformRequest,
    user=Depends(get_current_user),
    storage: SupabaseStorage = Depends(get_storage),
    resources: ResourceRepository = Depends(get_resource_repo),
    cache: VariantCache = Depends(get_variant_cache),
    pipeline: PipelineExecutor = Depends(get_pipeline),
    workers: PipelineWorkerPool = Depends(get_worker_pool),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    settings: Settings = Depends(get_settings),
):
    uc = PreviewTransformUseCase(
        storage=storage,
        resources=resources,
        cache=cache,
        pipeline=pipeline,
        workers=workers,
        rate_limiter=rate_limiter,
        timeout_seconds=settings.pipeline_timeout_seconds,
    )
    try:
        image = await uc.execute(user.id, image_id, body.transformations)
    except PixelForgeError as exc:
        raise _to_http(exc) from exc
    return _binary(image)


@router.post(
    "/{image_id}/transform/save",
    response_model=SaveTransformResponse,
    summary="Save Transformation",
    description="""
    Store the result of the transformation pipeline as a variant of the image.

    Identical transformations (regardless of key order or omitted fields) map to
    the same variant: the second call returns it with `cached=true`.
    """,
    responses={
        400: {"description": "Invalid transformations"},
        429: {"description": "Too many pipeline runs; see Retry-After"},
    },
)
async def save_transform(
    image_id: str,
    body: TransformRequest,
    user=Depends(get_current_user),
    storage: SupabaseStorage = Depends(get_storage),
    resources: ResourceRepository = Depends(get_resource_repo),
    cache: VariantCache = Depends(get_variant_cache),
    pipeline: PipelineExecutor = Depends(get_pipeline),
    workers: PipelineWorkerPool = Depends(get_worker_pool),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    settings: Settings = Depends(get_settings),
):
    uc = SaveTransformUseCase(
        storage=storage,
        resources=resources,
        cache=cache,
        pipeline=pipeline,
        workers=workers,
        rate_limiter=rate_limiter,
        timeout_seconds=settings.pipeline_timeout_seconds,
    )
    try:
        saved = await uc.execute(user.id, image_id, body.transformations)
    except PixelForgeError as exc:
        raise _to_http(exc) from exc
    return SaveTransformResponse(
        image_id=saved.resource_id,
        cached=saved.cached,
        variant=VariantMetadata.from_entity(saved.resource_id, saved.variant),
    )
