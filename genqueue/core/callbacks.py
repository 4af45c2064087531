"""
Worker Callback Receiver.

Handles completion notices for queued jobs:

- provider webhooks (Replicate prediction format ``{id, status, output, error}``),
  where the produced asset is fetched from the provider and re-uploaded into
  private workspace storage;
- batch completions posted by internal workers that already uploaded their
  assets (``generation-complete``).

Deliveries for a job that already reached a terminal state are acknowledged
without touching storage or the database, so provider retries are harmless.
"""

import hashlib
import hmac
import logging
import random
import time
from datetime import datetime
from typing import Any, Optional

import httpx
from sqlalchemy.orm import Session

from genqueue.core.errors import NotFoundError, UpstreamError, ValidationError
from genqueue.core.storage import WORKSPACE_BUCKET, SupabaseStorage
from genqueue.db.models import Job, JobStatus, WorkspaceAsset

logger = logging.getLogger(__name__)

SIGNATURE_HEADERS = ("X-Replicate-Signature", "Replicate-Signature")
COMPOSITE_MARKERS = ("output.png", "grid", "combined")
FAILED_STATUSES = {"failed", "canceled"}
RUNNING_STATUSES = {"starting", "processing"}


def sign_body(secret: str, body: bytes) -> str:
    """Signature = "sha256=" + hex(HMAC_SHA256(secret, raw body))"""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_signature(secret: str, body: bytes, signature: Optional[str]) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(sign_body(secret, body), signature)


def _item_url(item: Any) -> Optional[str]:
    if isinstance(item, str):
        return item
    if isinstance(item, dict):
        return item.get("url")
    return None


def extract_output_url(output: Any) -> Optional[str]:
    """
    Pick the asset URL out of a provider output.

    Lists may contain a composite grid next to the individual images; the first
    individual image wins, with the first item as the fallback.
    """
    if isinstance(output, list):
        urls = [_item_url(item) for item in output]
        individual = [
            url for url in urls
            if url and not any(marker in url for marker in COMPOSITE_MARKERS)
        ]
        if individual:
            return individual[0]
        return urls[0] if urls else None
    return _item_url(output)


def _merge_metadata(job: Job, **values) -> None:
    # Reassign so SQLAlchemy sees the JSON change
    job.meta = {**(job.meta or {}), **values}


def _asset_kind(job: Job) -> tuple:
    if job.format == "video":
        return "video", "video/mp4", "mp4"
    return "image", "image/png", "png"


def handle_replicate_webhook(
    db: Session,
    storage: SupabaseStorage,
    http: httpx.Client,
    payload: dict,
) -> dict:
    prediction_id = payload.get("id")
    status = payload.get("status")
    if not prediction_id:
        raise ValidationError("Missing prediction ID")

    job = db.query(Job).filter(Job.external_id == prediction_id).first()
    if not job:
        raise NotFoundError(f"Job not found for prediction {prediction_id}")

    logger.info(f"[{job.id}] Webhook for prediction {prediction_id}: {status}")

    if job.status.is_terminal:
        logger.info(f"[{job.id}] Already {job.status.value}, ignoring duplicate delivery")
        return {"success": True, "jobId": job.id, "status": job.status.value, "duplicate": True}

    if status == "succeeded":
        return _complete_from_output(db, storage, http, job, payload.get("output"))

    if status in FAILED_STATUSES:
        job.status = JobStatus.FAILED
        job.error_message = payload.get("error") or "Prediction failed"
        job.completed_at = datetime.utcnow()
        _merge_metadata(job, provider_status=status, webhook_processed=True)
        db.commit()
        logger.info(f"[{job.id}] Marked failed: {job.error_message}")
        return {"success": True, "jobId": job.id, "status": JobStatus.FAILED.value}

    if status in RUNNING_STATUSES and job.status == JobStatus.QUEUED:
        job.status = JobStatus.PROCESSING
    _merge_metadata(job, provider_status=status, webhook_processed=True)
    db.commit()
    return {"success": True, "jobId": job.id, "status": status}


def _complete_from_output(
    db: Session,
    storage: SupabaseStorage,
    http: httpx.Client,
    job: Job,
    output: Any,
) -> dict:
    output_url = extract_output_url(output)
    if not output_url or not output_url.startswith("http"):
        job.status = JobStatus.FAILED
        job.error_message = f"Invalid output URL from webhook: {output_url}"
        job.completed_at = datetime.utcnow()
        _merge_metadata(job, provider_status="succeeded", webhook_processed=True)
        db.commit()
        raise ValidationError("Invalid output URL")

    asset_type, mime_type, ext = _asset_kind(job)
    storage_path = f"{job.user_id}/{job.id}_{int(time.time() * 1000)}.{ext}"

    try:
        resp = http.get(output_url, follow_redirects=True)
        resp.raise_for_status()
        content = resp.content
        logger.info(f"[{job.id}] Downloaded {len(content)} bytes from provider")

        storage.upload(WORKSPACE_BUCKET, storage_path, content, mime_type)
        signed_url = storage.create_signed_url(WORKSPACE_BUCKET, storage_path)
    except (httpx.HTTPError, UpstreamError) as e:
        logger.error(f"[{job.id}] Asset transfer failed: {e}", exc_info=True)
        _merge_metadata(job, last_webhook_error=str(e))
        db.commit()
        raise UpstreamError(f"Asset transfer failed: {e}", status_code=500) from e

    meta = job.meta or {}
    asset = WorkspaceAsset(
        user_id=job.user_id,
        job_id=job.id,
        asset_index=0,
        asset_type=asset_type,
        temp_storage_path=storage_path,
        mime_type=mime_type,
        file_size_bytes=len(content),
        generation_seed=meta.get("seed") or random.randint(0, 999999),
        original_prompt=meta.get("prompt", ""),
        model_used=meta.get("model_variant", "unknown"),
        generation_settings={
            "quality": job.quality,
            "job_type": job.job_type,
            "provider": "replicate",
        },
    )
    db.add(asset)

    job.status = JobStatus.COMPLETED
    job.result_url = signed_url
    job.completed_at = datetime.utcnow()
    job.error_message = None
    _merge_metadata(
        job,
        provider_status="succeeded",
        output_url=output_url,
        storage_path=storage_path,
        webhook_processed=True,
    )
    db.commit()
    db.refresh(asset)

    logger.info(f"[{job.id}] Completed via webhook, asset {asset.id}")
    return {
        "success": True,
        "jobId": job.id,
        "status": JobStatus.COMPLETED.value,
        "assetId": asset.id,
    }


def handle_generation_complete(db: Session, payload: dict) -> dict:
    """
    Batch completion from an internal worker.

    Accepts both ``job_id``/``user_id`` and the legacy ``jobId``/``userId``
    spelling, and ``assets`` or the legacy ``results``/``images``/``videos``.
    Assets already stored for the same ``(job_id, asset_index)`` are skipped.
    A single-output worker may send only ``output_url`` (or ``outputUrl``); it
    becomes the job's result and its one asset.
    """
    job_id = payload.get("job_id") or payload.get("jobId")
    if not job_id:
        raise ValidationError("job_id is required")

    try:
        status = JobStatus(payload.get("status"))
    except ValueError:
        raise ValidationError(f"Invalid status: {payload.get('status')}")

    job = db.query(Job).filter(Job.id == job_id).first()
    if not job:
        raise NotFoundError(f"Job not found: {job_id}")

    user_id = payload.get("user_id") or payload.get("userId") or job.user_id
    assets = (
        payload.get("assets")
        or payload.get("results")
        or payload.get("images")
        or payload.get("videos")
        or []
    )
    output_url = payload.get("output_url") or payload.get("outputUrl")
    if status == JobStatus.COMPLETED and output_url:
        job.result_url = output_url
        _merge_metadata(job, output_url=output_url)
        if not assets:
            assets = [{"url": output_url, "mime_type": _asset_kind(job)[1]}]

    inserted = 0
    if status == JobStatus.COMPLETED and assets:
        existing = {
            index for (index,) in
            db.query(WorkspaceAsset.asset_index).filter(WorkspaceAsset.job_id == job.id)
        }
        for index, asset in enumerate(assets):
            if index in existing:
                continue
            mime_type = asset.get("mime_type") or asset.get("type") or "image/png"
            path = (
                asset.get("temp_storage_path")
                or asset.get("storage_path")
                or asset.get("url")
                or asset.get("path")
            )
            if not path:
                raise ValidationError(f"Asset {index} has no storage path")
            db.add(WorkspaceAsset(
                user_id=user_id,
                job_id=job.id,
                asset_index=index,
                asset_type="video" if "video" in mime_type else "image",
                temp_storage_path=path,
                mime_type=mime_type,
                file_size_bytes=asset.get("file_size_bytes") or asset.get("size") or 0,
                generation_seed=asset.get("generation_seed") or asset.get("seed") or random.randint(0, 999999),
                original_prompt=payload.get("prompt") or asset.get("prompt") or (job.meta or {}).get("prompt"),
                model_used=payload.get("model_used") or asset.get("model") or "unknown",
                generation_settings=payload.get("generation_settings") or asset.get("settings") or {},
            ))
            inserted += 1

    job.status = status
    if status.is_terminal and job.completed_at is None:
        job.completed_at = datetime.utcnow()
    if status == JobStatus.FAILED:
        job.error_message = payload.get("error_message") or payload.get("errorMessage") or job.error_message
    db.commit()

    logger.info(f"[{job.id}] generation-complete: {status.value}, {inserted} new assets")
    return {"success": True, "job_id": job.id, "assets_inserted": inserted}
