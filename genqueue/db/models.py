"""
Database models for the generation pipeline.
"""
import enum
import uuid
from datetime import datetime, timedelta

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from genqueue.core.config import WORKSPACE_ASSET_TTL_DAYS
from genqueue.db.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _asset_expiry() -> datetime:
    return datetime.utcnow() + timedelta(days=WORKSPACE_ASSET_TTL_DAYS)


class JobStatus(str, enum.Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class Job(Base):
    """One row per generation request."""
    __tablename__ = "jobs"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), nullable=False, index=True)

    # What to generate
    job_type = Column(String(64), nullable=False)
    format = Column(String(16), nullable=False)  # image | video
    quality = Column(String(16), nullable=False)  # fast | high
    meta = Column("metadata", JSON, default=dict, nullable=False)

    # Optional links to the records the job produces or belongs to
    project_id = Column(String(36), nullable=True)
    video_id = Column(String(36), nullable=True)
    image_id = Column(String(36), nullable=True)

    # Status, driven by the worker and provider callbacks
    status = Column(
        Enum(JobStatus, values_callable=lambda e: [m.value for m in e]),
        default=JobStatus.QUEUED,
        nullable=False,
    )
    external_id = Column(String(128), nullable=True, index=True)  # provider prediction id

    # Output
    result_url = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )
    completed_at = Column(DateTime, nullable=True)


class WorkspaceAsset(Base):
    """A generated image/video awaiting save-to-library or discard."""
    __tablename__ = "workspace_assets"
    __table_args__ = (
        UniqueConstraint("job_id", "asset_index", name="uq_workspace_assets_job_index"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), nullable=False, index=True)
    job_id = Column(String(36), nullable=False, index=True)
    asset_index = Column(Integer, default=0, nullable=False)

    asset_type = Column(String(16), nullable=False)  # image | video
    temp_storage_path = Column(String(500), nullable=False)
    mime_type = Column(String(64), nullable=True)
    file_size_bytes = Column(Integer, nullable=True)

    generation_seed = Column(Integer, nullable=True)
    original_prompt = Column(Text, nullable=True)
    model_used = Column(String(128), nullable=True)
    generation_settings = Column(JSON, default=dict, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    expires_at = Column(DateTime, default=_asset_expiry, nullable=False)


class Project(Base):
    __tablename__ = "projects"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), nullable=False, index=True)
    original_prompt = Column(Text, nullable=False)
    enhanced_prompt = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class UsageLog(Base):
    """Credit accounting, one row per queued job."""
    __tablename__ = "usage_logs"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), nullable=False, index=True)
    action = Column(String(64), nullable=False)
    format = Column(String(16), nullable=True)
    quality = Column(String(16), nullable=True)
    credits_consumed = Column(Integer, default=1, nullable=False)
    meta = Column("metadata", JSON, default=dict, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class SystemConfig(Base):
    """Single-row JSON document: worker URLs and the worker health cache."""
    __tablename__ = "system_config"

    id = Column(Integer, primary_key=True, default=1)
    config = Column(JSON, default=dict, nullable=False)
    updated_at = Column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class LibraryAsset(Base):
    """An asset the user kept from the workspace."""
    __tablename__ = "user_library"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), nullable=False, index=True)

    asset_type = Column(String(16), nullable=False)  # image | video
    storage_path = Column(String(500), nullable=False)  # inside user-library
    mime_type = Column(String(64), nullable=True)
    file_size_bytes = Column(Integer, nullable=True)

    original_prompt = Column(Text, nullable=True)
    model_used = Column(String(128), nullable=True)
    generation_seed = Column(Integer, nullable=True)

    collection_id = Column(String(36), nullable=True)
    custom_title = Column(String(255), nullable=True)
    tags = Column(JSON, default=list, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
