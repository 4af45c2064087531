# tests/test_workspace_actions.py

from datetime import datetime, timedelta

import pytest
from conftest import USER

from genqueue.core.storage import LIBRARY_BUCKET, WORKSPACE_BUCKET
from genqueue.core.workspace import cleanup_expired_assets, library_extension
from genqueue.db import LibraryAsset, WorkspaceAsset


@pytest.fixture
def make_asset(db, storage, make_job):
    job = make_job()

    def _make_asset(index=0, user_id=USER["id"], mime_type="image/png", **overrides):
        path = f"{user_id}/{job.id}_{index}.png"
        asset = WorkspaceAsset(
            user_id=user_id,
            job_id=job.id,
            asset_index=index,
            asset_type="video" if "video" in mime_type else "image",
            temp_storage_path=path,
            mime_type=mime_type,
            file_size_bytes=3,
            generation_seed=100 + index,
            original_prompt="a lighthouse at dusk",
            model_used="wan_2_1_1_3b",
            **overrides,
        )
        db.add(asset)
        db.commit()
        db.refresh(asset)
        storage.objects[(WORKSPACE_BUCKET, path)] = (b"img", mime_type)
        return asset
    return _make_asset


def test_save_to_library_moves_assets(client, db, storage, make_asset):
    first, second = make_asset(0), make_asset(1)
    first_id, second_id = first.id, second.id

    resp = client.post("/workspace-actions", json={
        "action": "save_to_library",
        "asset_ids": [first_id, second_id],
        "collection_id": "col-1",
        "tags": ["sunset"],
    })

    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["success"] is True
    assert body["saved_count"] == 2

    saved = db.query(LibraryAsset).order_by(LibraryAsset.storage_path).all()
    assert [a.storage_path for a in saved] == sorted([
        f"{USER['id']}/col-1/{first_id}.png",
        f"{USER['id']}/col-1/{second_id}.png",
    ])
    assert all(a.tags == ["sunset"] for a in saved)
    assert {a.generation_seed for a in saved} == {100, 101}

    assert db.query(WorkspaceAsset).count() == 0
    assert all(bucket == LIBRARY_BUCKET for bucket, _ in storage.objects)
    assert len(storage.objects) == 2


def test_save_to_library_copy_failure_keeps_workspace(client, db, storage, make_asset):
    asset = make_asset(0)
    del storage.objects[(WORKSPACE_BUCKET, asset.temp_storage_path)]

    resp = client.post("/workspace-actions", json={"action": "save_to_library", "asset_ids": [asset.id]})

    assert resp.status_code == 500
    assert "File copy failed" in resp.json()["error"]
    assert db.query(WorkspaceAsset).count() == 1
    assert db.query(LibraryAsset).count() == 0


def test_save_to_library_ignores_other_users_assets(client, db, make_asset):
    foreign = make_asset(0, user_id="someone-else")

    resp = client.post("/workspace-actions", json={"action": "save_to_library", "asset_ids": [foreign.id]})

    assert resp.status_code == 404
    assert resp.json()["error"] == "Assets not found"
    assert db.query(WorkspaceAsset).count() == 1


def test_delete_assets_removes_rows_and_objects(client, db, storage, make_asset):
    keep, drop = make_asset(0), make_asset(1)

    resp = client.post("/workspace-actions", json={"action": "delete_assets", "asset_ids": [drop.id]})

    assert resp.status_code == 200
    assert resp.json() == {"success": True, "deleted_count": 1}
    assert [a.id for a in db.query(WorkspaceAsset).all()] == [keep.id]
    assert list(storage.objects) == [(WORKSPACE_BUCKET, keep.temp_storage_path)]


def test_delete_assets_survives_storage_failure(client, db, storage, make_asset):
    asset = make_asset(0)
    storage.fail_remove = True

    resp = client.post("/workspace-actions", json={"action": "delete_assets", "asset_ids": [asset.id]})

    assert resp.status_code == 200
    assert db.query(WorkspaceAsset).count() == 0


def test_delete_assets_requires_ids(client):
    resp = client.post("/workspace-actions", json={"action": "delete_assets"})

    assert resp.status_code == 400
    assert resp.json()["error"] == "asset_ids is required"


def test_cleanup_expired_only_touches_expired_assets(client, db, storage, make_asset):
    fresh = make_asset(0)
    make_asset(1, expires_at=datetime.utcnow() - timedelta(hours=1))

    resp = client.post("/workspace-actions", json={"action": "cleanup_expired"})

    assert resp.status_code == 200
    assert resp.json() == {"success": True, "cleaned_count": 1}
    assert [a.id for a in db.query(WorkspaceAsset).all()] == [fresh.id]
    assert list(storage.objects) == [(WORKSPACE_BUCKET, fresh.temp_storage_path)]


def test_cleanup_for_all_users(db, storage, make_asset):
    past = datetime.utcnow() - timedelta(days=1)
    make_asset(0, expires_at=past)
    make_asset(1, user_id="someone-else", expires_at=past)

    assert cleanup_expired_assets(db, storage) == 2
    assert db.query(WorkspaceAsset).count() == 0


def test_unknown_action_is_400(client):
    resp = client.post("/workspace-actions", json={"action": "archive", "asset_ids": ["a"]})

    assert resp.status_code == 400
    assert "Invalid action" in resp.json()["error"]


def test_workspace_actions_require_auth(anon_client):
    resp = anon_client.post("/workspace-actions", json={"action": "cleanup_expired"})

    assert resp.status_code == 401


def test_library_extension():
    assert library_extension("video/mp4") == "mp4"
    assert library_extension("image/jpeg") == "jpg"
    assert library_extension("image/png") == "png"
    assert library_extension(None) == "png"
