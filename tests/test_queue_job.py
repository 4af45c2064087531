# tests/test_queue_job.py

import pytest
from conftest import USER, respond

from genqueue.api.routes import get_queue
from genqueue.core.config import JOB_QUEUE_NAME
from genqueue.core.enqueue import enqueue_job
from genqueue.core.errors import UpstreamError
from genqueue.core.queue import UpstashQueue
from genqueue.db import Job, JobStatus, Project, UsageLog


def test_queue_job_creates_queued_job_and_pushes_payload(client, db, queue):
    resp = client.post("/queue-job", json={
        "jobType": "image_fast",
        "metadata": {"prompt": "a lighthouse at dusk"},
    })

    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["success"] is True
    assert body["queueLength"] == 1
    assert body["jobType"] == "image_fast"
    assert body["modelVariant"] == "wan_2_1_1_3b"
    assert body["job"]["status"] == "queued"
    assert body["job"]["format"] == "image"
    assert body["job"]["quality"] == "fast"

    job = db.query(Job).one()
    assert job.id == body["job"]["id"]
    assert job.user_id == USER["id"]
    assert job.status == JobStatus.QUEUED

    payload = queue.lists[JOB_QUEUE_NAME][0]
    assert payload["id"] == job.id
    assert payload["prompt"] == "a lighthouse at dusk"
    assert payload["format"] == "image"
    assert payload["quality"] == "fast"


def test_queue_length_grows_by_one_per_job(client, queue):
    queue.lists[JOB_QUEUE_NAME].extend([{"id": "older-1"}, {"id": "older-2"}])

    resp = client.post("/queue-job", json={
        "jobType": "video_high",
        "metadata": {"prompt": "waves"},
    })

    assert resp.json()["queueLength"] == 3


def test_usage_is_recorded_with_default_credits(client, db):
    client.post("/queue-job", json={"jobType": "sdxl_image_fast", "metadata": {"prompt": "cat"}})

    usage = db.query(UsageLog).one()
    assert usage.credits_consumed == 1
    assert usage.action == "sdxl_image_fast"
    assert usage.format == "image"


def test_usage_credits_come_from_metadata(client, db):
    client.post("/queue-job", json={
        "jobType": "video_high",
        "metadata": {"prompt": "cat", "credits": 5},
    })

    assert db.query(UsageLog).one().credits_consumed == 5


def test_project_prompt_is_used(client, db, queue):
    project = Project(
        user_id=USER["id"],
        original_prompt="a cat",
        enhanced_prompt="a fluffy orange cat, golden hour, 35mm",
    )
    db.add(project)
    db.commit()

    resp = client.post("/queue-job", json={"jobType": "image_high", "projectId": project.id})

    assert resp.status_code == 200, resp.text
    assert queue.lists[JOB_QUEUE_NAME][0]["prompt"] == "a fluffy orange cat, golden hour, 35mm"
    assert resp.json()["job"]["project_id"] == project.id


def test_missing_project_is_reported_as_400(client, db, queue):
    resp = client.post("/queue-job", json={"jobType": "image_high", "projectId": "nope"})

    assert resp.status_code == 400
    assert resp.json()["success"] is False
    assert "Project not found" in resp.json()["error"]
    assert db.query(Job).count() == 0
    assert not queue.lists[JOB_QUEUE_NAME]


def test_missing_prompt_is_rejected(client, db):
    resp = client.post("/queue-job", json={"jobType": "image_fast", "metadata": {}})

    assert resp.status_code == 400
    assert resp.json()["error"] == "Prompt is required"
    assert db.query(Job).count() == 0


def test_unknown_job_type_is_rejected(client, db):
    resp = client.post("/queue-job", json={"jobType": "hologram_fast", "metadata": {"prompt": "x"}})

    assert resp.status_code == 400
    assert db.query(Job).count() == 0


def test_queue_failure_leaves_no_job_behind(client, db, queue):
    queue.fail = True

    resp = client.post("/queue-job", json={"jobType": "image_fast", "metadata": {"prompt": "x"}})

    assert resp.status_code == 400
    assert "Redis" in resp.json()["error"]
    assert db.query(Job).count() == 0
    assert db.query(UsageLog).count() == 0


def test_missing_authorization_is_401(anon_client, db):
    resp = anon_client.post("/queue-job", json={"jobType": "image_fast", "metadata": {"prompt": "x"}})

    assert resp.status_code == 401
    assert resp.json() == {"error": "Authorization header required", "success": False}
    assert db.query(Job).count() == 0


def test_invalid_token_is_401(anon_client, fake_http):
    fake_http.routes["https://supabase.test/auth/v1/user"] = respond(401, json={"msg": "bad jwt"})

    resp = anon_client.post(
        "/queue-job",
        json={"jobType": "image_fast", "metadata": {"prompt": "x"}},
        headers={"Authorization": "Bearer not-a-token"},
    )

    assert resp.status_code == 401


def test_valid_token_resolves_user(anon_client, fake_http, db):
    fake_http.routes["https://supabase.test/auth/v1/user"] = respond(
        200, json={"id": "user-from-token", "email": "a@b.c"}
    )

    resp = anon_client.post(
        "/queue-job",
        json={"jobType": "image_fast", "metadata": {"prompt": "x"}},
        headers={"Authorization": "Bearer good-token"},
    )

    assert resp.status_code == 200, resp.text
    assert db.query(Job).one().user_id == "user-from-token"
    auth_request = fake_http.requests[0]
    assert auth_request.headers["Authorization"] == "Bearer good-token"


def test_malformed_redis_reply_leaves_no_job_behind(client, db, fake_http, http_client):
    fake_http.routes["https://redis.test/lpush/job_queue"] = respond(200, text="<html>gateway</html>")
    client.app.dependency_overrides[get_queue] = lambda: UpstashQueue(
        url="https://redis.test", token="tok", client=http_client
    )

    resp = client.post("/queue-job", json={"jobType": "image_fast", "metadata": {"prompt": "a cat"}})

    assert resp.status_code == 400
    assert "malformed reply" in resp.json()["error"]
    assert db.query(Job).count() == 0
    assert db.query(UsageLog).count() == 0


class BrokenQueue:
    def lpush(self, key, payload):
        raise RuntimeError("socket closed")


def test_unexpected_queue_error_still_removes_job(db):
    with pytest.raises(UpstreamError, match="socket closed"):
        enqueue_job(
            db,
            BrokenQueue(),
            user_id=USER["id"],
            job_type="image_fast",
            metadata={"prompt": "a cat"},
        )

    assert db.query(Job).count() == 0
