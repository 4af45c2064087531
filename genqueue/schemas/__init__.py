from genqueue.schemas.job import (
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

__all__ = [
    "GenerationCompleteRequest",
    "JobOut",
    "LibraryAssetOut",
    "QueueJobRequest",
    "QueueJobResponse",
    "ReplicateWebhook",
    "UpdateWorkerUrlRequest",
    "WorkerUrlRequest",
    "WorkerUrlResponse",
    "WorkspaceActionRequest",
]
