"""
End-to-end dispatch workflow over the HTTP API.

Walks a task through its whole life: worker registration -> task
creation -> automatic assignment -> progress updates -> completion, then
checks the dashboard. Uses an async httpx client on the ASGI app, so no
server or Redis is needed.

Run with:
    pytest tests/test_integration.py -v
"""

import asyncio

import httpx
import pytest

from dispatcher.app import create_app


@pytest.fixture
def asgi_client(services):
    transport = httpx.ASGITransport(app=create_app(services))
    return httpx.AsyncClient(transport=transport, base_url="http://dispatcher")


@pytest.mark.asyncio
async def test_request_workflow(asgi_client):
    """Test complete task workflow."""
    async with asgi_client as client:
        # [1/5] Health
        health = await client.get("/health", timeout=5.0)
        health.raise_for_status()

        # [2/5] Crew
        workers = {}
        for name, skills, experience in (
            ("Ahmad", ["Harvesting", "Pruning"], 5),
            ("Faiz", ["Harvesting"], 3),
        ):
            response = await client.post(
                "/workers", json={"name": name, "expertise": skills, "experience": experience}
            )
            response.raise_for_status()
            workers[name] = response.json()["data"]["id"]

        # [3/5] Task and assignment
        response = await client.post("/tasks", json={
            "title": "Tree Pruning - Block A",
            "taskType": "Harvesting",
            "requiredSkills": ["Pruning"],
            "priority": "High",
            "startDate": "2024-11-29",
            "endDate": "2024-12-01",
        })
        response.raise_for_status()
        task_id = response.json()["data"]["id"]

        response = await client.post(f"/tasks/{task_id}/assign")
        response.raise_for_status()
        assert response.json()["data"]["assigned_to"] == workers["Ahmad"]

        # [4/5] Progress to completion
        for progress in (25, 60, 90):
            response = await client.patch(f"/tasks/{task_id}", json={"progress": progress})
            response.raise_for_status()
        response = await client.patch(f"/tasks/{task_id}", json={"status": "Completed", "progress": 100})
        response.raise_for_status()
        assert response.json()["data"]["status"] == "Completed"

        # [5/5] Dashboard
        summary = (await client.get("/dashboard/summary")).json()["data"]
        assert summary["tasks_by_status"]["Completed"] == 1
        assert summary["workers_at_capacity"] == 0


@pytest.mark.asyncio
async def test_concurrent_assign_requests(asgi_client):
    """Parallel assign requests for one task: one 200, the rest already_assigned."""
    async with asgi_client as client:
        await client.post("/workers", json={"name": "Razak", "experience": 7})
        response = await client.post("/tasks", json={
            "title": "General upkeep",
            "taskType": "General Work",
            "priority": "Low",
            "startDate": "2024-12-01",
            "endDate": "2024-12-01",
        })
        task_id = response.json()["data"]["id"]

        responses = await asyncio.gather(*(client.post(f"/tasks/{task_id}/assign") for _ in range(5)))

    codes = sorted(r.status_code for r in responses)
    assert codes == [200, 409, 409, 409, 409]
    assert {r.json()["error"] for r in responses if r.status_code == 409} == {"already_assigned"}
