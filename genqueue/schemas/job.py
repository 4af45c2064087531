"""
Pydantic schemas for the HTTP endpoints.

Request field names follow the JSON the web client and the providers send
(camelCase for the client, the provider's own names for webhooks).
"""
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from genqueue.db.models import JobStatus


class QueueJobRequest(BaseModel):
    """Enqueue a generation job."""
    jobType: Optional[str] = None
    metadata: dict = Field(default_factory=dict)
    projectId: Optional[str] = None
    videoId: Optional[str] = None
    imageId: Optional[str] = None


class JobOut(BaseModel):
    id: str
    user_id: str
    job_type: str
    format: str
    quality: str
    status: JobStatus
    metadata: dict = Field(default_factory=dict, validation_alias="meta")
    project_id: Optional[str] = None
    video_id: Optional[str] = None
    image_id: Optional[str] = None
    external_id: Optional[str] = None
    result_url: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class QueueJobResponse(BaseModel):
    success: bool
    job: JobOut
    queueLength: int
    modelVariant: str
    jobType: str


class ReplicateWebhook(BaseModel):
    """Prediction webhook body. Extra provider fields are ignored."""
    id: Optional[str] = None
    status: Optional[str] = None
    output: Any = None
    error: Optional[str] = None


class GeneratedAsset(BaseModel):
    temp_storage_path: Optional[str] = None
    storage_path: Optional[str] = None
    url: Optional[str] = None
    path: Optional[str] = None
    mime_type: Optional[str] = None
    type: Optional[str] = None
    file_size_bytes: Optional[int] = None
    size: Optional[int] = None
    generation_seed: Optional[int] = None
    seed: Optional[int] = None
    prompt: Optional[str] = None
    model: Optional[str] = None
    settings: Optional[dict] = None


class GenerationCompleteRequest(BaseModel):
    """Batch completion from an internal worker (current and legacy spellings)."""
    job_id: Optional[str] = None
    jobId: Optional[str] = None
    status: Optional[str] = None
    user_id: Optional[str] = None
    userId: Optional[str] = None
    assets: Optional[List[GeneratedAsset]] = None
    results: Optional[List[GeneratedAsset]] = None
    images: Optional[List[GeneratedAsset]] = None
    videos: Optional[List[GeneratedAsset]] = None
    prompt: Optional[str] = None
    model_used: Optional[str] = None
    generation_settings: Optional[dict] = None
    error_message: Optional[str] = None
    errorMessage: Optional[str] = None
    output_url: Optional[str] = None
    outputUrl: Optional[str] = None


class WorkerUrlRequest(BaseModel):
    worker_type: Optional[str] = None


class WorkerUrlResponse(BaseModel):
    success: bool
    worker_url: str
    isHealthy: bool
    healthError: Optional[str] = None
    responseTimeMs: Optional[int] = None


class UpdateWorkerUrlRequest(BaseModel):
    workerUrl: Optional[str] = None
    worker_type: str = "wan"
    autoRegistered: bool = False
    registrationMethod: str = "manual"
    detectionMethod: str = "manual"


class WorkspaceActionRequest(BaseModel):
    action: Optional[str] = None
    asset_ids: List[str] = Field(default_factory=list)
    collection_id: Optional[str] = None
    custom_title: Optional[str] = None
    tags: Optional[List[str]] = None


class LibraryAssetOut(BaseModel):
    id: str
    user_id: str
    asset_type: str
    storage_path: str
    mime_type: Optional[str] = None
    file_size_bytes: Optional[int] = None
    original_prompt: Optional[str] = None
    model_used: Optional[str] = None
    generation_seed: Optional[int] = None
    collection_id: Optional[str] = None
    custom_title: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    created_at: datetime

    class Config:
        from_attributes = True
