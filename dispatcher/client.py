"""
HTTP client for the dispatcher service.

Unwraps the response envelope: successful calls return `data`, failures
raise DispatchClientError carrying the envelope's error code.
"""

import os
import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx


logger = logging.getLogger(__name__)


class DispatchClientError(Exception):
    """Non-success envelope returned by the dispatcher."""

    def __init__(self, status_code: int, code: Optional[str], message: Optional[str]):
        super().__init__(f"{status_code} {code}: {message}")
        self.status_code = status_code
        self.code = code
        self.message = message


@dataclass
class ListResult:
    items: list
    total: int
    limit: int
    offset: int


class DispatchClient:
    def __init__(self, base_url: Optional[str] = None, http_client: Optional[httpx.Client] = None, timeout: float = 10.0):
        """
        Args:
            base_url: Dispatcher URL (default DISPATCHER_URL or http://localhost:8010)
            http_client: Pre-configured client, e.g. a FastAPI TestClient
            timeout: Per-request timeout in seconds
        """
        if http_client is None:
            base_url = base_url or os.getenv("DISPATCHER_URL", "http://localhost:8010")
            http_client = httpx.Client(base_url=base_url, timeout=timeout)
        self.http = http_client

    def close(self) -> None:
        self.http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def _request(self, method: str, path: str, **kwargs) -> dict:
        response = self.http.request(method, path, **kwargs)
        try:
            body = response.json()
        except ValueError:
            raise DispatchClientError(response.status_code, None, response.text)
        if response.is_error or not body.get("success", False):
            logger.warning(f"{method} {path} failed: {response.status_code} {body.get('error')}")
            raise DispatchClientError(response.status_code, body.get("error"), body.get("message"))
        return body

    def _data(self, method: str, path: str, **kwargs) -> Any:
        return self._request(method, path, **kwargs).get("data")

    def _list(self, path: str, params: dict) -> ListResult:
        params = {k: v for k, v in params.items() if v is not None}
        body = self._request("GET", path, params=params)
        page = body.get("pagination") or {}
        items = body.get("data") or []
        return ListResult(
            items=items,
            total=page.get("total", len(items)),
            limit=page.get("limit", len(items)),
            offset=page.get("offset", 0),
        )

    def health(self) -> dict:
        response = self.http.get("/health")
        response.raise_for_status()
        return response.json()

    # Tasks

    def create_task(self, **fields) -> dict:
        return self._data("POST", "/tasks", json=fields)

    def get_task(self, task_id: str) -> dict:
        return self._data("GET", f"/tasks/{task_id}")

    def list_tasks(self, limit: int = 50, offset: int = 0, **filters) -> ListResult:
        """Filters use the API's query names: status, priority, assignedTo, areaId, startFrom, endTo, search."""
        return self._list("/tasks", {**filters, "limit": limit, "offset": offset})

    def update_task(self, task_id: str, **fields) -> dict:
        return self._data("PATCH", f"/tasks/{task_id}", json=fields)

    def delete_task(self, task_id: str) -> None:
        self._request("DELETE", f"/tasks/{task_id}")

    def assign(self, task_id: str) -> Optional[dict]:
        """
        Ask the dispatcher to pick a worker.

        Returns:
            The updated task, or None when no worker is currently eligible
        """
        try:
            return self._data("POST", f"/tasks/{task_id}/assign")
        except DispatchClientError as e:
            if e.code == "no_eligible_worker":
                logger.info(f"No eligible worker for task {task_id}")
                return None
            raise

    def reassign(self, task_id: str, worker_id: str) -> dict:
        return self._data("POST", f"/tasks/{task_id}/reassign", json={"workerId": worker_id})

    def recommendations(self, task_id: str, limit: int = 10) -> list:
        return self._data("GET", f"/tasks/{task_id}/recommendations", params={"limit": limit})

    # Workers

    def create_worker(self, **fields) -> dict:
        return self._data("POST", "/workers", json=fields)

    def get_worker(self, worker_id: str) -> dict:
        return self._data("GET", f"/workers/{worker_id}")

    def list_workers(
        self,
        expertise: Optional[list[str]] = None,
        availability: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> ListResult:
        return self._list("/workers", {
            "expertise": ",".join(expertise) if expertise else None,
            "availability": availability,
            "limit": limit,
            "offset": offset,
        })

    def update_worker(self, worker_id: str, **fields) -> dict:
        return self._data("PATCH", f"/workers/{worker_id}", json=fields)

    def delete_worker(self, worker_id: str) -> None:
        self._request("DELETE", f"/workers/{worker_id}")

    # Reference data

    def create_area(self, name: str, description: str = "") -> dict:
        return self._data("POST", "/areas", json={"name": name, "description": description})

    def update_area(self, area_id: str, **fields) -> dict:
        return self._data("PATCH", f"/areas/{area_id}", json=fields)

    def delete_area(self, area_id: str) -> None:
        self._request("DELETE", f"/areas/{area_id}")

    def create_asset(self, name: str, asset_type: Optional[str] = None) -> dict:
        return self._data("POST", "/assets", json={"name": name, "type": asset_type})

    def update_asset(self, asset_id: str, **fields) -> dict:
        return self._data("PATCH", f"/assets/{asset_id}", json=fields)

    def delete_asset(self, asset_id: str) -> None:
        self._request("DELETE", f"/assets/{asset_id}")

    def summary(self) -> dict:
        return self._data("GET", "/dashboard/summary")
