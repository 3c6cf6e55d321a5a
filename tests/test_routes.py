import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from novelforge.jobs.models import CHAPTER_WORKFLOW
from novelforge.jobs.queue import JobQueue
from novelforge.routes.queue import queue_dependency, router
from novelforge.utils.logging import get_log_buffer


@pytest.fixture
async def queue(tmp_path):
    queue = JobQueue(str(tmp_path / "jobs.db"))
    await queue.initialize()
    yield queue
    await queue.close()


@pytest.fixture
async def client(queue):
    app = FastAPI()
    app.include_router(router)

    async def override_queue():
        return queue

    app.dependency_overrides[queue_dependency] = override_queue
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


async def test_create_job(client, queue):
    response = await client.post("/api/queue/jobs", json={"type": "line_edit", "target_id": "chapter_1"})

    assert response.status_code == 201
    body = response.json()
    assert body["type"] == "line_edit"
    assert body["status"] == "pending"
    assert (await queue.get_job(body["job_id"])) is not None


async def test_create_job_rejects_unknown_type(client):
    response = await client.post("/api/queue/jobs", json={"type": "translate", "target_id": "chapter_1"})

    assert response.status_code == 422


async def test_queue_chapter_workflow(client):
    response = await client.post("/api/queue/chapters/chapter_1/workflow")

    assert response.status_code == 201
    body = response.json()
    assert body["chapter_id"] == "chapter_1"
    assert list(body["jobs"]) == [job_type.value for job_type in CHAPTER_WORKFLOW]


async def test_stats(client, queue):
    await queue.create_job("proofread", "chapter_1")

    response = await client.get("/api/queue/stats")

    assert response.status_code == 200
    body = response.json()
    assert body["queue"]["pending"] == 1
    assert body["queue"]["total"] == 1
    assert body["session"]["is_active"] is False
    assert body["worker"] == {"running": False, "processing": False, "current_job": None}


async def test_list_jobs(client, queue):
    await queue.queue_chapter_workflow("chapter_1")

    response = await client.get("/api/queue/jobs", params={"status": "pending", "limit": 5})

    assert response.status_code == 200
    body = response.json()
    assert len(body["jobs"]) == 5
    assert body["total"] == len(CHAPTER_WORKFLOW)


async def test_list_jobs_invalid_status(client):
    response = await client.get("/api/queue/jobs", params={"status": "sleeping"})

    assert response.status_code == 400


async def test_get_job(client, queue):
    job_id = await queue.create_job("dev_edit", "chapter_1")

    response = await client.get(f"/api/queue/jobs/{job_id}")
    assert response.status_code == 200
    assert response.json()["id"] == job_id

    assert (await client.get("/api/queue/jobs/job_missing")).status_code == 404


async def test_retry_job(client, queue):
    job_id = await queue.create_job("dev_edit", "chapter_1")

    assert (await client.post("/api/queue/jobs/job_missing/retry")).status_code == 404
    assert (await client.post(f"/api/queue/jobs/{job_id}/retry")).status_code == 409

    await queue.db.mark_failed(job_id, 3, "boom")
    response = await client.post(f"/api/queue/jobs/{job_id}/retry")
    assert response.status_code == 200
    assert response.json()["status"] == "pending"


async def test_delete_job(client, queue):
    job_id = await queue.create_job("dev_edit", "chapter_1")

    assert (await client.delete(f"/api/queue/jobs/{job_id}")).status_code == 200
    assert (await client.delete(f"/api/queue/jobs/{job_id}")).status_code == 404


async def test_delete_running_job_conflicts(client, queue):
    job_id = await queue.create_job("dev_edit", "chapter_1")
    await queue.db.pickup_next()

    assert (await client.delete(f"/api/queue/jobs/{job_id}")).status_code == 409
    assert (await queue.get_job(job_id)).status.value == "running"


async def test_bulk_delete(client, queue):
    done = await queue.create_job("dev_edit", "chapter_1")
    await queue.create_job("dev_edit", "chapter_2")
    await queue.db.mark_completed(done)

    assert (await client.delete("/api/queue/jobs")).status_code == 400
    assert (await client.delete("/api/queue/jobs", params={"status": "running"})).status_code == 400

    response = await client.delete("/api/queue/jobs", params={"status": "completed"})
    assert response.json() == {"deleted": 1}
    assert await queue.count_jobs() == 1


async def test_logs(client, queue):
    get_log_buffer().clear()
    await queue.create_job("dev_edit", "chapter_1")

    response = await client.get("/api/queue/logs", params={"source": "queue_worker"})

    assert response.status_code == 200
    messages = [entry["message"] for entry in response.json()["logs"]]
    assert "Job created" in messages

    assert (await client.get("/api/queue/logs", params={"level": "loud"})).status_code == 400


async def test_job_logs(client, queue):
    get_log_buffer().clear()
    job_id = await queue.create_job("dev_edit", "chapter_1")
    await queue.create_job("dev_edit", "chapter_2")

    response = await client.get(f"/api/queue/jobs/{job_id}/logs")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "pending"
    assert [entry["message"] for entry in body["logs"]] == ["Job created"]
    assert body["logs"][0]["job_id"] == job_id

    filtered = await client.get("/api/queue/logs", params={"job_id": job_id})
    assert [entry["job_id"] for entry in filtered.json()["logs"]] == [job_id]

    assert (await client.get("/api/queue/jobs/job_missing/logs")).status_code == 404
