from genqueue.db.database import Base, engine, get_db, init_db, SessionLocal, JOB_CHANGES_CHANNEL
from genqueue.db.models import (
    Job,
    JobStatus,
    LibraryAsset,
    Project,
    SystemConfig,
    UsageLog,
    WorkspaceAsset,
)

__all__ = [
    "Base",
    "engine",
    "get_db",
    "init_db",
    "SessionLocal",
    "JOB_CHANGES_CHANNEL",
    "Job",
    "JobStatus",
    "LibraryAsset",
    "Project",
    "SystemConfig",
    "UsageLog",
    "WorkspaceAsset",
]
