"""
Job Enqueuer - persists a generation job and hands it to the worker queue.

The job row is committed before the push so a worker popping the payload can
always find it. If the push fails the row is deleted again, leaving no
``queued`` job that nothing will ever pick up.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from genqueue.core.config import JOB_QUEUE_NAME
from genqueue.core.errors import GenQueueError, NotFoundError, UpstreamError, ValidationError
from genqueue.core.job_types import JobType, parse_job_type
from genqueue.core.queue import UpstashQueue
from genqueue.core.usage import credits_for, record_usage
from genqueue.db.models import Job, JobStatus, Project

logger = logging.getLogger(__name__)


@dataclass
class EnqueueResult:
    job: Job
    queue_length: int
    job_type: JobType


def resolve_prompt(db: Session, user_id: str, project_id: Optional[str], metadata: dict) -> str:
    """Project prompt when a project is given, else ``metadata.prompt``."""
    if project_id:
        project = (
            db.query(Project)
            .filter(Project.id == project_id, Project.user_id == user_id)
            .first()
        )
        if not project:
            raise NotFoundError(f"Project not found: {project_id}")
        prompt = project.enhanced_prompt or project.original_prompt
    else:
        prompt = metadata.get("prompt")

    if not prompt or not str(prompt).strip():
        raise ValidationError("Prompt is required")
    return str(prompt).strip()


def build_queue_payload(job: Job, job_type: JobType, prompt: str) -> dict:
    """Payload the external worker pops from the queue."""
    return {
        "id": job.id,
        "type": job_type.name,
        "format": job_type.format,
        "quality": job_type.quality,
        "model_variant": job_type.model_variant,
        "prompt": prompt,
        "user_id": job.user_id,
        "project_id": job.project_id,
        "video_id": job.video_id,
        "image_id": job.image_id,
        "metadata": job.meta,
        "created_at": datetime.now(timezone.utc).isoformat(),
    }


def enqueue_job(
    db: Session,
    queue: UpstashQueue,
    *,
    user_id: str,
    job_type: str,
    metadata: Optional[dict] = None,
    project_id: Optional[str] = None,
    video_id: Optional[str] = None,
    image_id: Optional[str] = None,
) -> EnqueueResult:
    metadata = dict(metadata or {})
    parsed = parse_job_type(job_type)
    prompt = resolve_prompt(db, user_id, project_id, metadata)

    job = Job(
        user_id=user_id,
        job_type=parsed.name,
        format=parsed.format,
        quality=parsed.quality,
        status=JobStatus.QUEUED,
        project_id=project_id,
        video_id=video_id,
        image_id=image_id,
        meta={**metadata, "prompt": prompt, "model_variant": parsed.model_variant},
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    logger.info(f"[{job.id}] Job created: {parsed.name} for user {user_id}")

    payload = build_queue_payload(job, parsed, prompt)
    try:
        queue_length = queue.lpush(JOB_QUEUE_NAME, payload)
    except Exception as e:
        logger.error(f"[{job.id}] Queue push failed, removing job row", exc_info=True)
        db.delete(job)
        db.commit()
        if isinstance(e, GenQueueError):
            raise
        raise UpstreamError(f"Queue push failed: {e}") from e

    logger.info(f"[{job.id}] Queued on {JOB_QUEUE_NAME} (length {queue_length})")

    # Usage accounting must not fail an already queued job
    try:
        record_usage(
            db,
            user_id=user_id,
            action=parsed.name,
            credits=credits_for(metadata),
            format=parsed.format,
            quality=parsed.quality,
            metadata={"job_id": job.id, "project_id": project_id, "model_variant": parsed.model_variant},
        )
    except SQLAlchemyError:
        db.rollback()
        logger.error(f"[{job.id}] Failed to record usage", exc_info=True)

    return EnqueueResult(job=job, queue_length=queue_length, job_type=parsed)
