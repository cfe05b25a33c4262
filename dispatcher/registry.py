"""
Worker, area and asset maintenance.

Workers may only be deleted once they hold no tasks, and areas and assets
only once no task references them; `current_tasks` is
never writable from outside, only the lifecycle and the engine change it.
"""

import logging

from pydantic import ValidationError as PydanticValidationError

from common.errors import EntityInUse, ValidationError, WorkerBusy
from common.models import (
    Area,
    AreaCreate,
    AreaUpdate,
    Asset,
    AssetCreate,
    AssetUpdate,
    Task,
    Worker,
    WorkerCreate,
    WorkerUpdate,
)
from common.store import EntityStore, Write


logger = logging.getLogger(__name__)


class Registry:
    def __init__(self, store: EntityStore):
        self.store = store

    def create_worker(self, payload: WorkerCreate) -> Worker:
        try:
            worker = Worker(**payload.model_dump())
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid worker: {e}")
        return self.store.create(worker)

    def update_worker(self, worker_id: str, payload: WorkerUpdate) -> Worker:
        patch = {name: getattr(payload, name) for name in payload.model_fields_set}
        if "availability" in patch:
            patch["availability"] = payload.availability.model_dump()
        worker = self.store.update(Worker, worker_id, patch)
        logger.info(f"Worker {worker_id} updated: {sorted(patch)}")
        return worker

    def delete_worker(self, worker_id: str) -> None:
        """Refused while the worker still holds tasks."""
        worker = self.store.get(Worker, worker_id)
        if worker.current_tasks:
            raise WorkerBusy(
                f"Worker {worker_id} still holds {worker.load} task(s); complete, cancel or reassign them first"
            )
        # the version check makes a concurrent assignment to this worker fail the delete
        self.store.commit([Write(Worker, worker.id, worker.version, None)])
        logger.info(f"Worker {worker_id} deleted")

    def create_area(self, payload: AreaCreate) -> Area:
        return self.store.create(Area(**payload.model_dump()))

    def create_asset(self, payload: AssetCreate) -> Asset:
        return self.store.create(Asset(**payload.model_dump()))

    def update_area(self, area_id: str, payload: AreaUpdate) -> Area:
        patch = {name: getattr(payload, name) for name in payload.model_fields_set}
        area = self.store.update(Area, area_id, patch)
        logger.info(f"Area {area_id} updated: {sorted(patch)}")
        return area

    def delete_area(self, area_id: str) -> None:
        """Refused while any task still points at the area."""
        area = self.store.get(Area, area_id)
        self._check_unreferenced("area", area_id, lambda t: t.area_id == area_id)
        self.store.commit([Write(Area, area.id, area.version, None)])
        logger.info(f"Area {area_id} deleted")

    def update_asset(self, asset_id: str, payload: AssetUpdate) -> Asset:
        patch = {name: getattr(payload, name) for name in payload.model_fields_set}
        asset = self.store.update(Asset, asset_id, patch)
        logger.info(f"Asset {asset_id} updated: {sorted(patch)}")
        return asset

    def delete_asset(self, asset_id: str) -> None:
        """Refused while any task still points at the asset."""
        asset = self.store.get(Asset, asset_id)
        self._check_unreferenced("asset", asset_id, lambda t: t.asset_id == asset_id)
        self.store.commit([Write(Asset, asset.id, asset.version, None)])
        logger.info(f"Asset {asset_id} deleted")

    def _check_unreferenced(self, kind: str, entity_id: str, references) -> None:
        count = len(self.store.select(Task, references))
        if count:
            raise EntityInUse(
                f"{kind.capitalize()} {entity_id} is referenced by {count} task(s); move or delete them first"
            )
