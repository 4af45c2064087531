"""
Workspace actions - what happens to generated assets once the user has seen them.

    save_to_library   copy from workspace-temp into user-library, record a library row
    delete_assets     discard assets
    cleanup_expired   discard assets whose expires_at has passed

Saved and discarded assets leave the workspace. A storage object that cannot
be removed is logged and left behind; the rows are deleted regardless.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from genqueue.core.errors import NotFoundError, UpstreamError, ValidationError
from genqueue.core.storage import LIBRARY_BUCKET, WORKSPACE_BUCKET, SupabaseStorage
from genqueue.db.models import LibraryAsset, WorkspaceAsset

logger = logging.getLogger(__name__)

ACTIONS = ("save_to_library", "delete_assets", "cleanup_expired")


def library_extension(mime_type: Optional[str]) -> str:
    mime_type = mime_type or ""
    if "video" in mime_type:
        return "mp4"
    if "jpeg" in mime_type:
        return "jpg"
    return "png"


def _user_assets(db: Session, user_id: str, asset_ids: List[str]) -> List[WorkspaceAsset]:
    if not asset_ids:
        raise ValidationError("asset_ids is required")
    return (
        db.query(WorkspaceAsset)
        .filter(WorkspaceAsset.id.in_(asset_ids), WorkspaceAsset.user_id == user_id)
        .order_by(WorkspaceAsset.job_id, WorkspaceAsset.asset_index)
        .all()
    )


def _remove_objects(storage: SupabaseStorage, paths: List[str]):
    try:
        storage.remove(WORKSPACE_BUCKET, paths)
    except UpstreamError as e:
        logger.error(f"Could not remove {len(paths)} workspace objects: {e.message}")


def _discard(db: Session, storage: SupabaseStorage, assets: List[WorkspaceAsset]) -> int:
    if not assets:
        return 0
    _remove_objects(storage, [a.temp_storage_path for a in assets])
    for asset in assets:
        db.delete(asset)
    db.commit()
    return len(assets)


def save_to_library(
    db: Session,
    storage: SupabaseStorage,
    user_id: str,
    asset_ids: List[str],
    collection_id: Optional[str] = None,
    custom_title: Optional[str] = None,
    tags: Optional[List[str]] = None,
) -> List[LibraryAsset]:
    """
    Move workspace assets into the user's library.

    Every object is copied before anything is recorded: if one copy fails the
    request fails with 500 and the workspace is left as it was.
    """
    assets = _user_assets(db, user_id, asset_ids)
    if not assets:
        raise NotFoundError("Assets not found")

    copies = []
    failures = []
    for asset in assets:
        dest_path = f"{user_id}/{collection_id or 'default'}/{asset.id}.{library_extension(asset.mime_type)}"
        try:
            data = storage.download(WORKSPACE_BUCKET, asset.temp_storage_path)
            storage.upload(LIBRARY_BUCKET, dest_path, data, asset.mime_type or "image/png", upsert=True)
        except UpstreamError as e:
            logger.error(f"Copy failed for asset {asset.id}: {e.message}")
            failures.append(asset.id)
            continue
        copies.append((asset, dest_path, len(data)))

    if failures:
        raise UpstreamError(
            f"File copy failed: {len(failures)} files failed to copy ({', '.join(failures)})",
            status_code=500,
        )

    temp_paths = [asset.temp_storage_path for asset, _, _ in copies]
    saved = []
    for asset, dest_path, size in copies:
        library_asset = LibraryAsset(
            user_id=user_id,
            asset_type=asset.asset_type,
            storage_path=dest_path,
            mime_type=asset.mime_type,
            file_size_bytes=asset.file_size_bytes or size,
            original_prompt=asset.original_prompt,
            model_used=asset.model_used,
            generation_seed=asset.generation_seed,
            collection_id=collection_id,
            custom_title=custom_title,
            tags=list(tags or []),
        )
        db.add(library_asset)
        saved.append(library_asset)
        db.delete(asset)
    db.commit()
    for library_asset in saved:
        db.refresh(library_asset)

    _remove_objects(storage, temp_paths)
    logger.info(f"Saved {len(saved)} assets to library for user {user_id}")
    return saved


def delete_assets(db: Session, storage: SupabaseStorage, user_id: str, asset_ids: List[str]) -> int:
    """Discard the user's assets among ``asset_ids``. Returns how many were deleted."""
    deleted = _discard(db, storage, _user_assets(db, user_id, asset_ids))
    logger.info(f"Deleted {deleted} workspace assets for user {user_id}")
    return deleted


def cleanup_expired_assets(
    db: Session,
    storage: SupabaseStorage,
    user_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> int:
    """Discard expired assets, for one user or for everyone."""
    query = db.query(WorkspaceAsset).filter(WorkspaceAsset.expires_at < (now or datetime.utcnow()))
    if user_id:
        query = query.filter(WorkspaceAsset.user_id == user_id)
    cleaned = _discard(db, storage, query.all())
    if cleaned:
        logger.info(f"Cleaned up {cleaned} expired workspace assets")
    return cleaned
