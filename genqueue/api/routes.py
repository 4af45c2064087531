"""
HTTP endpoints: job enqueueing, provider/worker callbacks, workspace actions and the worker registry.
"""

import logging

import httpx
from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from genqueue.api.auth import get_current_user
from genqueue.core import config
from genqueue.core.callbacks import (
    SIGNATURE_HEADERS,
    handle_generation_complete,
    handle_replicate_webhook,
    verify_signature,
)
from genqueue.core.enqueue import enqueue_job
from genqueue.core.errors import AuthenticationError, GenQueueError, ValidationError
from genqueue.core.queue import UpstashQueue
from genqueue.core.storage import SupabaseStorage
from genqueue.core.worker_registry import (
    get_active_worker,
    register_worker_url,
    run_health_checks,
    system_metrics,
)
from genqueue.core.workspace import (
    ACTIONS,
    cleanup_expired_assets,
    delete_assets,
    save_to_library,
)
from genqueue.db import get_db
from genqueue.schemas import (
    GenerationCompleteRequest,
    JobOut,
    LibraryAssetOut,
    QueueJobRequest,
    QueueJobResponse,
    ReplicateWebhook,
    UpdateWorkerUrlRequest,
    WorkerUrlRequest,
    WorkerUrlResponse,
    WorkspaceActionRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["jobs"])


def get_queue():
    queue = UpstashQueue()
    try:
        yield queue
    finally:
        queue.close()


def get_storage():
    storage = SupabaseStorage()
    try:
        yield storage
    finally:
        storage.close()


def get_http_client():
    """Plain HTTP client for provider downloads and worker health checks."""
    with httpx.Client(timeout=config.HTTP_TIMEOUT) as client:
        yield client


@router.post("/queue-job", response_model=QueueJobResponse)
def queue_job(
    data: QueueJobRequest,
    user: dict = Depends(get_current_user),
    db: Session = Depends(get_db),
    queue: UpstashQueue = Depends(get_queue),
):
    """
    Create a job and push it onto the worker queue.
    Any failure after authentication is reported as 400.
    """
    try:
        result = enqueue_job(
            db,
            queue,
            user_id=user["id"],
            job_type=data.jobType,
            metadata=data.metadata,
            project_id=data.projectId,
            video_id=data.videoId,
            image_id=data.imageId,
        )
    except GenQueueError as e:
        logger.error(f"queue-job failed for user {user['id']}: {e.message}")
        raise GenQueueError(e.message, status_code=400) from e
    except SQLAlchemyError as e:
        logger.error(f"queue-job database error for user {user['id']}: {e}", exc_info=True)
        raise GenQueueError(f"Failed to create job: {e}", status_code=400) from e

    return {
        "success": True,
        "job": JobOut.model_validate(result.job),
        "queueLength": result.queue_length,
        "modelVariant": result.job_type.model_variant,
        "jobType": result.job_type.name,
    }


@router.post("/replicate-callback")
async def replicate_callback(
    request: Request,
    db: Session = Depends(get_db),
    storage: SupabaseStorage = Depends(get_storage),
    http: httpx.Client = Depends(get_http_client),
):
    """Provider webhook: prediction finished, failed or changed status."""
    body = await request.body()

    if config.REPLICATE_WEBHOOK_SECRET:
        signature = next(
            (request.headers.get(h) for h in SIGNATURE_HEADERS if request.headers.get(h)),
            None,
        )
        if not signature:
            raise AuthenticationError("Missing webhook signature")
        if not verify_signature(config.REPLICATE_WEBHOOK_SECRET, body, signature):
            raise AuthenticationError("Invalid webhook signature")

    try:
        webhook = ReplicateWebhook.model_validate_json(body)
    except ValueError as e:
        raise ValidationError(f"Malformed webhook body: {e}") from e

    return await run_in_threadpool(
        handle_replicate_webhook, db, storage, http, webhook.model_dump()
    )


@router.post("/generation-complete")
def generation_complete(data: GenerationCompleteRequest, db: Session = Depends(get_db)):
    """Batch completion from an internal worker that uploaded its own assets."""
    return handle_generation_complete(db, data.model_dump(exclude_none=True))


@router.post("/get-active-worker-url", response_model=WorkerUrlResponse)
def get_active_worker_url(
    data: WorkerUrlRequest,
    db: Session = Depends(get_db),
    http: httpx.Client = Depends(get_http_client),
):
    if not data.worker_type:
        raise ValidationError("worker_type is required")
    return get_active_worker(db, http, data.worker_type)


@router.post("/update-worker-url")
def update_worker_url(
    data: UpdateWorkerUrlRequest,
    db: Session = Depends(get_db),
    http: httpx.Client = Depends(get_http_client),
):
    return register_worker_url(
        db,
        http,
        data.workerUrl,
        worker_type=data.worker_type,
        auto_registered=data.autoRegistered,
        registration_method=data.registrationMethod,
        detection_method=data.detectionMethod,
    )


@router.post("/health-check-workers")
def health_check_workers(
    db: Session = Depends(get_db),
    http: httpx.Client = Depends(get_http_client),
):
    return {"success": True, "healthResults": run_health_checks(db, http)}


@router.get("/system-metrics")
def get_system_metrics(
    user: dict = Depends(get_current_user),
    db: Session = Depends(get_db),
    queue: UpstashQueue = Depends(get_queue),
):
    return system_metrics(db, queue)


@router.post("/workspace-actions")
def workspace_actions(
    data: WorkspaceActionRequest,
    user: dict = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: SupabaseStorage = Depends(get_storage),
):
    """Save, discard or expire the caller's workspace assets."""
    logger.info(f"Workspace action {data.action} for user {user['id']}: {data.asset_ids}")

    if data.action == "save_to_library":
        saved = save_to_library(
            db,
            storage,
            user["id"],
            data.asset_ids,
            collection_id=data.collection_id,
            custom_title=data.custom_title,
            tags=data.tags,
        )
        return {
            "success": True,
            "saved_count": len(saved),
            "saved_assets": [LibraryAssetOut.model_validate(a).model_dump(mode="json") for a in saved],
        }
    if data.action == "delete_assets":
        return {"success": True, "deleted_count": delete_assets(db, storage, user["id"], data.asset_ids)}
    if data.action == "cleanup_expired":
        return {"success": True, "cleaned_count": cleanup_expired_assets(db, storage, user_id=user["id"])}
    raise ValidationError(f"Invalid action: {data.action}. Expected one of {', '.join(ACTIONS)}")
