"""
Integration tests for the HTTP presenter.
"""

import pytest_asyncio
from httpx import AsyncClient

from queuectl.constants import JobState
from queuectl.core.queue import JobQueue
from queuectl.worker.registry import WorkerRegistry


class TestPresenterAPI:
    """Integration tests for the read-only endpoints."""

    @pytest_asyncio.fixture
    async def populated(self, queue: JobQueue, registry: WorkerRegistry) -> JobQueue:
        await queue.enqueue({"id": "job1", "command": "echo <b>hi</b>"})
        await queue.enqueue({"id": "job2", "command": "false", "max_retries": 0})
        job = await queue.get_next("w1")
        await queue.save_result(job.mark_failed("boom"), "w1")
        await registry.register("worker-a", 4242)
        return queue

    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "healthy"

    async def test_stats(self, client: AsyncClient, populated: JobQueue):
        response = await client.get("/stats")

        assert response.status_code == 200
        assert response.json() == {
            "total": 2,
            "pending": 1,
            "processing": 0,
            "completed": 0,
            "failed": 0,
            "dead": 1,
            "workers": 1,
        }

    async def test_list_jobs(self, client: AsyncClient, populated: JobQueue):
        response = await client.get("/jobs")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert [job["id"] for job in data["jobs"]] == ["job1", "job2"]

    async def test_list_jobs_by_state(self, client: AsyncClient, populated: JobQueue):
        response = await client.get("/jobs", params={"state": "dead"})

        data = response.json()
        assert data["state"] == JobState.DEAD
        assert [job["id"] for job in data["jobs"]] == ["job2"]
        assert data["jobs"][0]["error"] == "boom"

    async def test_list_jobs_rejects_unknown_state(self, client: AsyncClient):
        response = await client.get("/jobs", params={"state": "sleeping"})
        assert response.status_code == 422

    async def test_get_job(self, client: AsyncClient, populated: JobQueue):
        response = await client.get("/jobs/job2")

        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "dead"
        assert data["attempts"] == 1

    async def test_get_job_not_found(self, client: AsyncClient):
        response = await client.get("/jobs/missing")

        assert response.status_code == 404
        assert response.json()["detail"] == "Job missing not found"

    async def test_workers(self, client: AsyncClient, populated: JobQueue):
        response = await client.get("/workers")

        assert response.status_code == 200
        assert [(w["id"], w["pid"]) for w in response.json()] == [("worker-a", 4242)]

    async def test_dashboard_escapes_commands(self, client: AsyncClient, populated: JobQueue):
        response = await client.get("/")

        assert response.status_code == 200
        assert "text/html" in response.headers["content-type"]
        assert "Total jobs: 2" in response.text
        assert "echo &lt;b&gt;hi&lt;/b&gt;" in response.text
        assert "<b>hi</b>" not in response.text

    async def test_metrics(self, client: AsyncClient, populated: JobQueue):
        response = await client.get("/metrics")

        assert response.status_code == 200
        assert 'queuectl_queue_depth{state="dead"} 1.0' in response.text
        assert "queuectl_workers_active 1.0" in response.text
