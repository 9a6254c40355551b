"""Board state kept on the client side of the API.

``KanbanBoard`` groups orders by status, ``ProductionBoard`` groups active
jobs by production stage and ``StageOrderEditor`` drags whole columns.
Every move issues at most one API call; the server response is the source
of truth once it arrives.
"""
from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from ..services.stage_catalog import normalize_stage_key, resolve_kanban_stage, resolve_production_stage
from .api_client import ApiError, LabApiClient

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[str], None]


def _log_error(message: str) -> None:
    logger.warning(message)


@dataclass
class StageRef:
    id: str
    name: str
    order: int = 0
    triggers_production: bool = False
    is_backward_allowed: bool = False

    @classmethod
    def from_json(cls, raw: dict) -> "StageRef":
        return cls(
            id=str(raw["id"]),
            name=str(raw.get("name") or raw["id"]),
            order=int(raw.get("order") or 0),
            triggers_production=bool(raw.get("triggersProduction", False)),
            is_backward_allowed=bool(raw.get("isBackwardAllowed", False)),
        )


def _sorted_stages(raw_stages: list[dict]) -> list[StageRef]:
    return sorted((StageRef.from_json(raw) for raw in raw_stages or []), key=lambda s: s.order)


class KanbanBoard:
    """Order-status columns re-derived from the full order list on every read."""

    def __init__(self, api: LabApiClient, on_error: Optional[ErrorCallback] = None):
        self.api = api
        self.on_error = on_error or _log_error
        self.stages: list[StageRef] = []
        self.orders: list[dict] = []

    def load(self) -> None:
        self.stages = _sorted_stages(self.api.list_kanban_stages())
        self.orders = list(self.api.list_orders() or [])

    def column_of(self, order: dict) -> str:
        return resolve_kanban_stage(self.stages, order.get("status"))

    def columns(self) -> dict[str, list[dict]]:
        result: dict[str, list[dict]] = {stage.id: [] for stage in self.stages}
        for order in self.orders:
            result.setdefault(self.column_of(order), []).append(order)
        return result

    def _find(self, order_id: int | str) -> Optional[dict]:
        for order in self.orders:
            if str(order.get("id")) == str(order_id):
                return order
        return None

    def move_order(self, order_id: int | str, target_stage_id: str) -> bool:
        """Persist a drop into another column. Returns True when the server accepted it."""
        order = self._find(order_id)
        if order is None or self.column_of(order) == target_stage_id:
            return False

        patch: dict[str, Any] = {"status": target_stage_id}
        if order.get("version") is not None:
            patch["version"] = order["version"]
        try:
            updated = self.api.update_order(order["id"], patch)
        except ApiError as exc:
            # Status is only changed from the server response, nothing to undo.
            self.on_error(f"Não foi possível atualizar o status: {exc.message}")
            return False

        if isinstance(updated, dict):
            self.orders = [updated if o is order else o for o in self.orders]
        else:
            order["status"] = target_stage_id
        return True


class ProductionBoard:
    """Job columns keyed by production stage id.

    Order inside a column is local only; moving across columns is optimistic
    and restored from a snapshot when the PATCH fails.
    """

    def __init__(
        self,
        api: LabApiClient,
        *,
        can_move_backward: bool = False,
        on_error: Optional[ErrorCallback] = None,
    ):
        self.api = api
        self.can_move_backward = can_move_backward
        self.on_error = on_error or _log_error
        self.stages: list[StageRef] = []
        self.jobs: dict[str, dict] = {}
        self.columns: dict[str, list[str]] = {}

    def load(self) -> None:
        self.stages = _sorted_stages(self.api.list_production_stages())
        self.jobs = {}
        self.columns = {stage.id: [] for stage in self.stages}
        for raw in self.api.list_jobs() or []:
            # Cards appear once a technician is assigned.
            if not raw.get("operatorId"):
                continue
            job = dict(raw)
            job["stageId"] = resolve_production_stage(self.stages, raw.get("stageId"))
            job_id = str(job["id"])
            self.jobs[job_id] = job
            self.columns.setdefault(job["stageId"], []).append(job_id)

    def column_of(self, job_id: int | str) -> Optional[str]:
        job_id = str(job_id)
        for stage_id, ids in self.columns.items():
            if job_id in ids:
                return stage_id
        return None

    def stage_index(self, stage_id: str) -> int:
        key = normalize_stage_key(stage_id)
        for index, stage in enumerate(self.stages):
            if normalize_stage_key(stage.id) == key:
                return index
        return 0

    def technicians(self) -> list[tuple[str, str]]:
        seen: dict[str, str] = {}
        for job in self.jobs.values():
            operator_id = str(job["operatorId"])
            seen.setdefault(operator_id, str(job.get("operatorName") or operator_id))
        return list(seen.items())

    def filtered_columns(
        self,
        technician: Optional[str] = None,
        order_number: Optional[str] = None,
        work_type: Optional[str] = None,
    ) -> dict[str, list[dict]]:
        """Technician matches exactly, order number is a case-insensitive substring."""
        technician = (technician or "").strip()
        needle = (order_number or "").strip().lower()
        work_type = (work_type or "").strip().lower()

        def matches(job: dict) -> bool:
            if technician and str(job.get("operatorId")) != technician:
                return False
            if needle:
                haystack = str(job.get("orderNumber") or f"#{job.get('orderId')}").lower()
                if needle not in haystack:
                    return False
            if work_type and str(job.get("workType") or "").lower() != work_type:
                return False
            return True

        return {
            stage_id: [self.jobs[job_id] for job_id in ids if matches(self.jobs[job_id])]
            for stage_id, ids in self.columns.items()
        }

    def _is_backward(self, source: str, target: str) -> bool:
        return self.stage_index(source) > self.stage_index(target)

    def _backward_allowed(self, source: str) -> bool:
        if self.can_move_backward:
            return True
        key = normalize_stage_key(source)
        return any(stage.is_backward_allowed for stage in self.stages if normalize_stage_key(stage.id) == key)

    def move_job(self, job_id: int | str, target_stage_id: str, target_index: Optional[int] = None) -> bool:
        """Apply a drop. Returns True when the board state changed and was kept."""
        job_id = str(job_id)
        source = self.column_of(job_id)
        if source is None:
            return False

        if source == target_stage_id:
            ids = self.columns[source]
            ids.remove(job_id)
            index = len(ids) if target_index is None else max(0, min(target_index, len(ids)))
            ids.insert(index, job_id)
            return True

        if self._is_backward(source, target_stage_id) and not self._backward_allowed(source):
            self.on_error("Você não tem permissão para mover tarefas para trás no fluxo.")
            return False

        snapshot = (copy.deepcopy(self.columns), copy.deepcopy(self.jobs))
        self.columns[source].remove(job_id)
        target_ids = self.columns.setdefault(target_stage_id, [])
        index = len(target_ids) if target_index is None else max(0, min(target_index, len(target_ids)))
        target_ids.insert(index, job_id)
        self.jobs[job_id]["stageId"] = target_stage_id

        try:
            updated = self.api.update_job(job_id, {"stageId": target_stage_id})
        except ApiError as exc:
            self.columns, self.jobs = snapshot
            logger.info(f"Job {job_id} move to '{target_stage_id}' rolled back: {exc.message}")
            self.on_error("Não foi possível salvar a mudança de etapa.")
            return False

        if isinstance(updated, dict):
            self._reconcile(job_id, updated)
        return True

    def _reconcile(self, job_id: str, server_job: dict) -> None:
        job = dict(server_job)
        job["stageId"] = resolve_production_stage(self.stages, server_job.get("stageId"))
        current = self.column_of(job_id)
        if current is not None and current != job["stageId"]:
            self.columns[current].remove(job_id)
            self.columns.setdefault(job["stageId"], []).append(job_id)
        self.jobs[job_id] = job


class StageOrderEditor:
    """Column reorder for the stage settings pages.

    ``persist_fn`` receives the full ``[{id, order}]`` list in one call; any
    failure discards the local order by refetching from ``load_fn``.
    """

    def __init__(
        self,
        load_fn: Callable[[], list[dict]],
        persist_fn: Callable[[list[dict]], Any],
        on_error: Optional[ErrorCallback] = None,
    ):
        self.load_fn = load_fn
        self.persist_fn = persist_fn
        self.on_error = on_error or _log_error
        self.stages: list[StageRef] = []

    def reload(self) -> None:
        self.stages = _sorted_stages(self.load_fn())

    def move_stage(self, stage_id: str, new_index: int) -> bool:
        ids = [stage.id for stage in self.stages]
        if stage_id not in ids:
            return False
        old_index = ids.index(stage_id)
        new_index = max(0, min(new_index, len(ids) - 1))
        if old_index == new_index:
            return False

        moving = self.stages.pop(old_index)
        self.stages.insert(new_index, moving)
        for position, stage in enumerate(self.stages, start=1):
            stage.order = position

        try:
            saved = self.persist_fn([{"id": stage.id, "order": stage.order} for stage in self.stages])
        except ApiError as exc:
            self.on_error(f"Não foi possível salvar a ordem das etapas: {exc.message}")
            self.reload()
            return False

        if isinstance(saved, list) and saved:
            self.stages = _sorted_stages(saved)
        return True
