"""
Dispatcher service - HTTP API over the dispatch core.

Listens on http://localhost:8010 by default. Run with `dispatcher`, or with
`uvicorn dispatcher.app:create_app --factory`.

Responsibilities:
- task CRUD and lifecycle updates (PATCH /tasks/{id})
- automatic assignment (POST /tasks/{id}/assign) and manual reassignment
- filtered, paginated task/worker views and worker recommendations
- worker, area and asset maintenance

Every response uses the envelope {success, data, error, message, pagination}.
"""

import os
import shutil
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date
from typing import Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from common.config import DispatchSettings, load_settings
from common.errors import DispatchError, NoEligibleWorker
from common.mlflow_utils import log_assignment_decision, setup_mlflow
from common.models import (
    ApiResponse,
    AreaCreate,
    AreaUpdate,
    Area,
    AssetCreate,
    AssetUpdate,
    Asset,
    AvailabilityStatus,
    Page,
    Pagination,
    ReassignRequest,
    TaskCreate,
    TaskPriority,
    TaskStatus,
    TaskUpdate,
    WorkerCreate,
    WorkerUpdate,
)
from common.redis_utils import build_store
from common.seed import seed_demo_data
from common.store import EntityStore
from dispatcher.engine import AssignmentEngine
from dispatcher.lifecycle import TaskLifecycleManager
from dispatcher.queries import QueryFacade, TaskFilter
from dispatcher.registry import Registry

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [DISPATCHER] %(levelname)s: %(message)s'
)
logger = logging.getLogger(__name__)


@dataclass
class DispatchServices:
    settings: DispatchSettings
    store: EntityStore
    lifecycle: TaskLifecycleManager
    engine: AssignmentEngine
    registry: Registry
    queries: QueryFacade


def build_services(settings: DispatchSettings, store: Optional[EntityStore] = None) -> DispatchServices:
    """Wire the dispatch core around one Entity Store."""
    store = store or build_store(settings)
    lifecycle = TaskLifecycleManager(store)
    engine = AssignmentEngine(
        store,
        lifecycle,
        settings.scoring,
        max_attempts=settings.assign_max_attempts,
        decision_logger=log_assignment_decision if settings.mlflow_enabled else None,
    )
    return DispatchServices(
        settings=settings,
        store=store,
        lifecycle=lifecycle,
        engine=engine,
        registry=Registry(store),
        queries=QueryFacade(store, settings.scoring),
    )


def envelope(data=None, message: Optional[str] = None, pagination: Optional[Pagination] = None) -> dict:
    """Successful response envelope."""
    fields = {"success": True, "data": jsonable_encoder(data)}
    if message is not None:
        fields["message"] = message
    if pagination is not None:
        fields["pagination"] = pagination
    return ApiResponse(**fields).model_dump(mode="json", exclude_unset=True)


def page_envelope(page: Page, message: Optional[str] = None) -> dict:
    return envelope(
        page.items,
        message=message,
        pagination=Pagination(total=page.total, limit=page.limit, offset=page.offset),
    )


def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    body = ApiResponse(success=False, error=code, message=message)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json", exclude_none=True))


def get_services(request: Request) -> DispatchServices:
    return request.app.state.services


def create_app(services: Optional[DispatchServices] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        services: Pre-built services (tests inject an in-memory store);
            built from environment settings when omitted
    """
    if services is None:
        load_dotenv()
        services = build_services(load_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        settings = services.settings
        logger.info(f"Dispatcher starting (store backend: {settings.store_backend})")
        if not services.store.ping():
            logger.warning("Entity store not reachable - requests will fail until it recovers")
        if settings.mlflow_enabled:
            setup_mlflow(settings.mlflow_tracking_uri)
        if settings.seed_demo_data:
            seed_demo_data(services.store)

        yield

        # Shutdown
        logger.info("Dispatcher shutting down")

    app = FastAPI(
        title="Field Dispatch",
        description="Task lifecycle tracking and worker assignment for field operations",
        lifespan=lifespan,
    )
    app.state.services = services

    @app.exception_handler(DispatchError)
    async def dispatch_error_handler(request: Request, exc: DispatchError):
        logger.warning(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc.message}")
        return error_response(exc.status_code, exc.code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        details = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        logger.warning(f"{request.method} {request.url.path} -> 400 validation_error: {details}")
        return error_response(400, "validation_error", details)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return error_response(500, "internal_error", "Internal server error")

    register_routes(app)
    return app


def register_routes(app: FastAPI) -> None:

    @app.get("/health")
    def health(services: DispatchServices = Depends(get_services)):
        """Health check endpoint."""
        return {
            "status": "healthy",
            "service": "dispatcher",
            "store_backend": services.settings.store_backend,
            "store": services.store.ping(),
        }

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    @app.post("/tasks", status_code=201)
    def create_task(payload: TaskCreate, services: DispatchServices = Depends(get_services)):
        task = services.lifecycle.create_task(payload)
        return envelope(services.queries.get_task(task.id), message="Task created successfully")

    @app.get("/tasks")
    def list_tasks(
        status: Optional[TaskStatus] = None,
        priority: Optional[TaskPriority] = None,
        assigned_to: Optional[str] = Query(None, alias="assignedTo"),
        area_id: Optional[str] = Query(None, alias="areaId"),
        start_from: Optional[date] = Query(None, alias="startFrom"),
        end_to: Optional[date] = Query(None, alias="endTo"),
        search: Optional[str] = None,
        limit: int = Query(50, ge=1, le=500),
        offset: int = Query(0, ge=0),
        services: DispatchServices = Depends(get_services),
    ):
        task_filter = TaskFilter(
            status=status,
            priority=priority,
            assigned_to=assigned_to,
            area_id=area_id,
            start_from=start_from,
            end_to=end_to,
            search=search,
        )
        return page_envelope(services.queries.list_tasks(task_filter, limit=limit, offset=offset))

    @app.get("/tasks/{task_id}")
    def get_task(task_id: str, services: DispatchServices = Depends(get_services)):
        return envelope(services.queries.get_task(task_id))

    @app.patch("/tasks/{task_id}")
    def update_task(task_id: str, payload: TaskUpdate, services: DispatchServices = Depends(get_services)):
        task = services.lifecycle.update_task(task_id, payload)
        return envelope(services.queries.get_task(task.id), message=f"Task is {task.status.value}")

    @app.delete("/tasks/{task_id}")
    def delete_task(task_id: str, services: DispatchServices = Depends(get_services)):
        services.lifecycle.delete_task(task_id)
        return envelope(message="Task deleted")

    @app.post("/tasks/{task_id}/assign")
    def assign_task(task_id: str, services: DispatchServices = Depends(get_services)):
        result = services.engine.assign(task_id)
        if not result.assigned:
            raise NoEligibleWorker(f"No eligible worker for task {task_id} right now; retry later or assign manually")
        task = services.queries.get_task(task_id)
        return envelope(task, message=f"Task assigned to {task.assigned_to_name}")

    @app.post("/tasks/{task_id}/reassign")
    def reassign_task(task_id: str, payload: ReassignRequest, services: DispatchServices = Depends(get_services)):
        services.engine.reassign(task_id, payload.worker_id)
        task = services.queries.get_task(task_id)
        return envelope(task, message=f"Task assigned to {task.assigned_to_name}")

    @app.get("/tasks/{task_id}/recommendations")
    def recommend_workers(
        task_id: str,
        limit: int = Query(10, ge=1, le=100),
        services: DispatchServices = Depends(get_services),
    ):
        return envelope(services.queries.recommend_workers(task_id, limit=limit))

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    @app.get("/workers")
    def list_workers(
        expertise: Optional[str] = Query(None, description="Comma-separated skill tags, all required"),
        availability: Optional[AvailabilityStatus] = None,
        limit: int = Query(50, ge=1, le=500),
        offset: int = Query(0, ge=0),
        services: DispatchServices = Depends(get_services),
    ):
        tags = [t for t in (expertise or "").split(",") if t.strip()]
        tags = [t.strip() for t in tags]
        page = services.queries.list_workers(tags, availability, limit=limit, offset=offset)
        return page_envelope(page)

    @app.post("/workers", status_code=201)
    def create_worker(payload: WorkerCreate, services: DispatchServices = Depends(get_services)):
        worker = services.registry.create_worker(payload)
        return envelope(services.queries.get_worker(worker.id), message="Worker created successfully")

    @app.get("/workers/{worker_id}")
    def get_worker(worker_id: str, services: DispatchServices = Depends(get_services)):
        return envelope(services.queries.get_worker(worker_id))

    @app.patch("/workers/{worker_id}")
    def update_worker(worker_id: str, payload: WorkerUpdate, services: DispatchServices = Depends(get_services)):
        services.registry.update_worker(worker_id, payload)
        return envelope(services.queries.get_worker(worker_id), message="Worker updated successfully")

    @app.delete("/workers/{worker_id}")
    def delete_worker(worker_id: str, services: DispatchServices = Depends(get_services)):
        services.registry.delete_worker(worker_id)
        return envelope(message="Worker deleted successfully")

    # ------------------------------------------------------------------
    # Areas, assets, dashboard
    # ------------------------------------------------------------------

    @app.get("/areas")
    def list_areas(
        limit: int = Query(50, ge=1, le=500),
        offset: int = Query(0, ge=0),
        services: DispatchServices = Depends(get_services),
    ):
        return page_envelope(services.queries.list_areas(limit=limit, offset=offset))

    @app.post("/areas", status_code=201)
    def create_area(payload: AreaCreate, services: DispatchServices = Depends(get_services)):
        return envelope(services.registry.create_area(payload), message="Area created successfully")

    @app.get("/areas/{area_id}")
    def get_area(area_id: str, services: DispatchServices = Depends(get_services)):
        return envelope(services.store.get(Area, area_id))

    @app.patch("/areas/{area_id}")
    def update_area(area_id: str, payload: AreaUpdate, services: DispatchServices = Depends(get_services)):
        return envelope(services.registry.update_area(area_id, payload), message="Area updated successfully")

    @app.delete("/areas/{area_id}")
    def delete_area(area_id: str, services: DispatchServices = Depends(get_services)):
        services.registry.delete_area(area_id)
        return envelope(message="Area deleted successfully")

    @app.get("/assets")
    def list_assets(
        limit: int = Query(50, ge=1, le=500),
        offset: int = Query(0, ge=0),
        services: DispatchServices = Depends(get_services),
    ):
        return page_envelope(services.queries.list_assets(limit=limit, offset=offset))

    @app.post("/assets", status_code=201)
    def create_asset(payload: AssetCreate, services: DispatchServices = Depends(get_services)):
        return envelope(services.registry.create_asset(payload), message="Asset created successfully")

    @app.get("/assets/{asset_id}")
    def get_asset(asset_id: str, services: DispatchServices = Depends(get_services)):
        return envelope(services.store.get(Asset, asset_id))

    @app.patch("/assets/{asset_id}")
    def update_asset(asset_id: str, payload: AssetUpdate, services: DispatchServices = Depends(get_services)):
        return envelope(services.registry.update_asset(asset_id, payload), message="Asset updated successfully")

    @app.delete("/assets/{asset_id}")
    def delete_asset(asset_id: str, services: DispatchServices = Depends(get_services)):
        services.registry.delete_asset(asset_id)
        return envelope(message="Asset deleted successfully")

    @app.get("/dashboard/summary")
    def dashboard_summary(services: DispatchServices = Depends(get_services)):
        return envelope(services.queries.summary())


def main() -> None:
    # Copy .env if it doesn't exist
    if not os.path.exists(".env") and os.path.exists(".env.example"):
        shutil.copy(".env.example", ".env")
    load_dotenv()

    settings = load_settings()
    uvicorn.run(
        create_app(build_services(settings)),
        host=settings.host,
        port=settings.port,
        log_level="info"
    )


if __name__ == "__main__":
    main()
