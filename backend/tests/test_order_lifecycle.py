from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from labflow.domain_errors import DomainError
from labflow.models import (
    KanbanStage,
    NotificationOutbox,
    Order,
    OrderComment,
    ProductionJob,
    StageMapping,
    User,
)
from labflow.schemas import OrderCreate, OrderUpdate
from labflow.services.business_days import add_business_days
from labflow.use_cases import order_lifecycle
from labflow.use_cases.order_lifecycle import (
    apply_order_update_use_case,
    create_order_use_case,
    delete_order_use_case,
    should_set_deadline,
)

NOW = datetime(2026, 10, 16, 9, 0, tzinfo=timezone.utc)


class _QueryStub:
    def __init__(self, *, first_result=None, rows=None):
        self._first_result = first_result
        self._rows = rows if rows is not None else []

    def filter(self, *_args, **_kwargs):
        return self

    def order_by(self, *_args, **_kwargs):
        return self

    def with_for_update(self, *_args, **_kwargs):
        return self

    def first(self):
        return self._first_result

    def all(self):
        return list(self._rows)


class _SessionStub:
    def __init__(
        self,
        *,
        order,
        kanban_stages=None,
        last_comment=None,
        operator=None,
        team=None,
        mapping=None,
        jobs=None,
        existing_numbers=None,
        flush_error=None,
        commit_error=None,
    ):
        self._order = order
        self._kanban_stages = kanban_stages or []
        self._last_comment = last_comment
        self._operator = operator
        self._team = team or []
        self._mapping = mapping
        self._jobs = list(jobs or [])
        self._existing_numbers = existing_numbers or []
        self._flush_error = flush_error
        self._commit_error = commit_error
        self.added = []
        self.flush_calls = 0
        self.commit_calls = 0
        self.rollback_calls = 0

    @property
    def jobs(self):
        return self._jobs + [obj for obj in self.added if isinstance(obj, ProductionJob)]

    @property
    def outbox(self):
        return [obj for obj in self.added if isinstance(obj, NotificationOutbox)]

    def query(self, model):
        if model is Order:
            return _QueryStub(first_result=self._order)
        if model is Order.order_number:
            return _QueryStub(rows=[(number,) for number in self._existing_numbers])
        if model is OrderComment:
            return _QueryStub(first_result=self._last_comment)
        if model is KanbanStage:
            return _QueryStub(rows=self._kanban_stages)
        if model is User:
            return _QueryStub(first_result=self._operator, rows=self._team)
        if model is StageMapping:
            return _QueryStub(first_result=self._mapping)
        if model is ProductionJob:
            active = [job for job in self.jobs if job.is_active]
            return _QueryStub(first_result=active[0] if active else None, rows=active)
        raise AssertionError(f"Unexpected query model: {model}")

    def add(self, obj):
        self.added.append(obj)

    def flush(self):
        self.flush_calls += 1
        if self._flush_error is not None:
            raise self._flush_error
        for obj in self.added:
            if isinstance(obj, Order) and obj.id is None:
                obj.id = 99
                obj.version = 1
        if self._order is not None:
            self._order.version += 1

    def commit(self):
        if self._commit_error is not None:
            raise self._commit_error
        self.commit_calls += 1

    def rollback(self):
        self.rollback_calls += 1


@pytest.fixture(autouse=True)
def outbox_kicks(monkeypatch):
    calls = []
    monkeypatch.setattr(order_lifecycle, "kick_notification_outbox", lambda: calls.append(True))
    return calls


def _order(**overrides) -> SimpleNamespace:
    values = dict(
        id=1,
        external_id=None,
        order_number="CAD-ZIR001",
        patient_name="Ana Souza",
        work_type="cadcam",
        selected_material="Zirconia",
        status="pending",
        priority="normal",
        assigned_to=None,
        created_by="15",
        estimated_delivery=None,
        updated_at=None,
        is_active=True,
        deleted_at=None,
        version=1,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def _stage(stage_id: str, name: str, *, triggers_production: bool = False) -> SimpleNamespace:
    return SimpleNamespace(id=stage_id, name=name, triggers_production=triggers_production)


KANBAN = [
    _stage("pending", "Pendente"),
    _stage("in_progress", "Em Produção", triggers_production=True),
    _stage("acabamento", "Acabamento", triggers_production=True),
    _stage("completed", "Concluído"),
]

ADMIN = SimpleNamespace(id=1, role="admin", full_name="Admin Lab")
OPERATOR = SimpleNamespace(id=42, full_name="Carlos Técnico")
TEAM = [SimpleNamespace(id=1), SimpleNamespace(id=2)]


def _db(order, **kwargs) -> _SessionStub:
    kwargs.setdefault("kanban_stages", KANBAN)
    kwargs.setdefault("operator", OPERATOR)
    kwargs.setdefault("team", TEAM)
    return _SessionStub(order=order, **kwargs)


def _update(db, order, patch: dict, **kwargs):
    return apply_order_update_use_case(
        db=db,
        order_ref=order.id,
        patch=OrderUpdate.model_validate(patch),
        current_user=ADMIN,
        clock=lambda: NOW,
        **kwargs,
    )


def test_assigning_pending_order_sets_deadline_without_production_job(outbox_kicks) -> None:
    order = _order()
    db = _db(order)

    result = _update(db, order, {"assignedTo": "42"})

    assert result is order
    assert order.assigned_to == "42"
    assert order.estimated_delivery == add_business_days(NOW, 5)
    assert order.estimated_delivery.date().isoformat() == "2026-10-23"
    assert db.jobs == []
    assert db.commit_calls == 1
    assert outbox_kicks == [True]

    rows = db.outbox
    assert {row.type for row in rows} == {"order_assigned"}
    assert sorted(row.recipient_user_id for row in rows) == ["15", "42"]
    assert rows[0].message == "— → 42"


def test_then_entering_production_creates_job_for_assignee() -> None:
    order = _order()
    db = _db(order)

    _update(db, order, {"assignedTo": 42})
    _update(db, order, {"status": "in_progress"})

    assert len(db.jobs) == 1
    job = db.jobs[0]
    assert job.order_id == order.id
    assert job.operator_id == "42"
    assert job.operator_name == "Carlos Técnico"
    assert job.stage_id == "iniciado"
    assert job.is_active is True
    assert job.code == "CAD-ZIR001"
    assert job.material == "Zirconia"


def test_status_change_notifies_creator_and_whole_team_once_per_user() -> None:
    order = _order(assigned_to="42")
    db = _db(order)

    _update(db, order, {"status": "in_progress"})

    rows = [row for row in db.outbox if row.type == "status_changed"]
    assert [row.recipient_user_id for row in rows] == ["15", "1", "2"]
    assert rows[0].title == "Status atualizado: CAD-ZIR001"
    assert rows[0].message == "Pendente → Em Produção"
    assert rows[0].payload["newStatusId"] == "in_progress"
    assert rows[0].payload["oldStatusName"] == "Pendente"
    assert rows[0].idempotency_key == "status_changed:1:2:15"
    assert all(row.status == "pending" and row.attempts == 0 for row in rows)


def test_explicit_stage_mapping_decides_initial_job_stage() -> None:
    order = _order(assigned_to="42")
    mapping = SimpleNamespace(kanban_stage_id="acabamento", production_stage_id="modelos")
    db = _db(order, mapping=mapping)

    _update(db, order, {"status": "Acabamento"})

    assert [job.stage_id for job in db.jobs] == ["modelos"]


def test_production_status_without_assignee_creates_no_job() -> None:
    order = _order()
    db = _db(order)

    _update(db, order, {"status": "in_progress"})

    assert db.jobs == []
    # Entering in_progress from another status still starts the clock.
    assert order.estimated_delivery == add_business_days(NOW, 5)


def test_repeated_status_toggles_keep_a_single_active_job() -> None:
    order = _order(assigned_to="42")
    db = _db(order)

    for status in ("in_progress", "pending", "in_progress", "completed", "in_progress"):
        _update(db, order, {"status": status})

    assert len(db.jobs) == 1
    assert sum(1 for job in db.jobs if job.is_active) == 1


def test_closed_job_stays_closed_and_a_fresh_job_starts_at_initial_stage() -> None:
    order = _order(assigned_to="42")
    old_job = SimpleNamespace(
        id=7,
        order_id=1,
        stage_id="finalizado",
        operator_id="9",
        operator_name="Antigo",
        estimated_delivery=None,
        is_active=False,
        updated_at=None,
    )
    db = _db(order, jobs=[old_job])

    _update(db, order, {"status": "in_progress"})

    active = [job for job in db.jobs if job.is_active]
    assert [job.stage_id for job in active] == ["iniciado"]
    assert active[0].operator_id == "42"
    assert old_job.is_active is False
    assert old_job.stage_id == "finalizado"
    assert old_job.operator_id == "9"


def test_assignee_change_outside_production_refreshes_active_job_operator() -> None:
    order = _order(assigned_to="42", status="pending")
    job = SimpleNamespace(
        id=7,
        order_id=1,
        stage_id="modelos",
        operator_id="42",
        operator_name="Carlos Técnico",
        is_active=True,
        updated_at=None,
    )
    operator = SimpleNamespace(id=43, full_name="Beatriz")
    db = _db(order, jobs=[job], operator=operator)

    _update(db, order, {"assignedTo": "43"})

    assert job.operator_id == "43"
    assert job.operator_name == "Beatriz"
    assert job.stage_id == "modelos"


def test_last_team_comment_triggers_deadline_on_any_patch() -> None:
    order = _order()
    db = _db(order, last_comment=SimpleNamespace(user_role="Tecnico"))

    _update(db, order, {"priority": "urgent"})

    assert order.priority == "urgent"
    assert order.estimated_delivery == add_business_days(NOW, 5)
    assert db.outbox == []


def test_patch_without_status_or_assignee_change_does_not_kick_worker(outbox_kicks) -> None:
    order = _order()
    db = _db(order)

    _update(db, order, {"caseObservations": "Cor A2"})

    assert order.case_observations == "Cor A2"
    assert order.estimated_delivery is None
    assert outbox_kicks == []


def test_stale_version_in_body_is_rejected_with_conflict() -> None:
    order = _order(version=4)
    db = _db(order)

    with pytest.raises(DomainError, match="modified by another request") as exc:
        _update(db, order, {"status": "in_progress", "version": 3})

    assert exc.value.http_status == 409
    assert exc.value.code == "ORDER_VERSION_CONFLICT"
    assert order.status == "pending"
    assert db.commit_calls == 0


def test_concurrent_writer_detected_at_flush_maps_to_conflict(outbox_kicks) -> None:
    order = _order(assigned_to="42")
    db = _db(order, flush_error=StaleDataError("version mismatch"))

    with pytest.raises(DomainError) as exc:
        _update(db, order, {"status": "in_progress"})

    assert exc.value.http_status == 409
    assert exc.value.code == "ORDER_VERSION_CONFLICT"
    assert db.rollback_calls == 1
    assert db.commit_calls == 0
    assert outbox_kicks == []


def test_database_failure_rolls_back_order_and_job_together(outbox_kicks) -> None:
    order = _order(assigned_to="42")
    db = _db(order, commit_error=SQLAlchemyError("connection lost"))

    with pytest.raises(DomainError, match="could not be saved") as exc:
        _update(db, order, {"status": "in_progress"})

    assert exc.value.http_status == 500
    assert exc.value.code == "ORDER_UPDATE_FAILED"
    assert db.rollback_calls == 1
    assert outbox_kicks == []


def test_empty_patch_is_a_validation_error() -> None:
    order = _order()
    db = _db(order)

    with pytest.raises(DomainError, match="No fields to update") as exc:
        _update(db, order, {"version": 1})

    assert exc.value.http_status == 400
    assert exc.value.code == "ORDER_PATCH_EMPTY"


def test_missing_order_is_not_found() -> None:
    db = _db(None)

    with pytest.raises(DomainError) as exc:
        apply_order_update_use_case(
            db=db,
            order_ref="legacy-uuid",
            patch=OrderUpdate(status="completed"),
            current_user=ADMIN,
        )

    assert exc.value.http_status == 404
    assert exc.value.code == "ORDER_NOT_FOUND"
    assert exc.value.details == {"orderId": "legacy-uuid"}


@pytest.mark.parametrize(
    ("kwargs", "expected"),
    [
        (dict(status_in_patch=False, assignee_in_patch=False, old_status="pending", new_status="pending", assigned_to=None, last_comment_by_team=True), True),
        (dict(status_in_patch=True, assignee_in_patch=False, old_status="in_progress", new_status="in_progress", assigned_to="42", last_comment_by_team=False), True),
        (dict(status_in_patch=False, assignee_in_patch=True, old_status="pending", new_status="pending", assigned_to="42", last_comment_by_team=False), True),
        (dict(status_in_patch=True, assignee_in_patch=False, old_status="pending", new_status="in_progress", assigned_to=None, last_comment_by_team=False), True),
        (dict(status_in_patch=True, assignee_in_patch=False, old_status="in_progress", new_status="in_progress", assigned_to=None, last_comment_by_team=False), False),
        (dict(status_in_patch=True, assignee_in_patch=True, old_status="pending", new_status="completed", assigned_to="42", last_comment_by_team=False), False),
        (dict(status_in_patch=False, assignee_in_patch=True, old_status="pending", new_status="pending", assigned_to=None, last_comment_by_team=False), False),
    ],
)
def test_deadline_triggers(kwargs: dict, expected: bool) -> None:
    assert should_set_deadline(**kwargs) is expected


def test_create_order_numbers_after_existing_sequence_and_notifies(outbox_kicks) -> None:
    db = _db(None, existing_numbers=["CAD-ZIR001", "CAD-ZIR004"])
    data = OrderCreate.model_validate(
        {
            "patientName": "João",
            "workType": "cadcam",
            "selectedMaterial": "Zirconia",
            "toothConstructions": {"11": "Coroa"},
            "selectedTeeth": ["11"],
        }
    )

    order = create_order_use_case(db=db, data=data, current_user=SimpleNamespace(id=15, role="user"))

    assert order.order_number == "CAD-ZIR005"
    assert order.status == "pending"
    assert order.created_by == "15"
    assert order.selected_teeth == ["11"]
    assert db.commit_calls == 1
    assert outbox_kicks == [True]
    rows = db.outbox
    assert [row.recipient_user_id for row in rows] == ["1", "2", "15"]
    assert rows[0].title == "Novo pedido criado: CAD-ZIR005"
    assert rows[0].message == "Paciente: João | Tipo: cadcam"


@pytest.mark.parametrize(
    ("payload", "code"),
    [
        ({"workType": "cadcam", "toothConstructions": {"11": "Coroa"}}, "ORDER_PATIENT_REQUIRED"),
        ({"patientName": "Ana", "toothConstructions": {"11": "Coroa"}}, "ORDER_WORK_TYPE_REQUIRED"),
        ({"patientName": "Ana", "workType": "acrilico"}, "ORDER_CONSTRUCTIONS_REQUIRED"),
    ],
)
def test_create_order_requires_core_fields(payload: dict, code: str) -> None:
    db = _db(None)

    with pytest.raises(DomainError) as exc:
        create_order_use_case(db=db, data=OrderCreate.model_validate(payload), current_user=ADMIN)

    assert exc.value.http_status == 400
    assert exc.value.code == code
    assert db.added == []


def test_create_order_number_race_maps_to_conflict() -> None:
    db = _db(None, commit_error=IntegrityError("insert", {}, Exception("duplicate key")))
    data = OrderCreate(patient_name="Ana", work_type="acrilico", tooth_constructions={"11": "Hybrid Protocol"})

    with pytest.raises(DomainError) as exc:
        create_order_use_case(db=db, data=data, current_user=ADMIN)

    assert exc.value.http_status == 409
    assert exc.value.code == "ORDER_NUMBER_CONFLICT"
    assert exc.value.details == {"orderNumber": "ACR-HIB001"}
    assert db.rollback_calls == 1


def test_soft_delete_deactivates_order_and_its_jobs() -> None:
    order = _order()
    job = SimpleNamespace(id=7, order_id=1, is_active=True)
    db = _db(order, jobs=[job])

    result = delete_order_use_case(db=db, order_ref="1", clock=lambda: NOW)

    assert result is order
    assert order.is_active is False
    assert order.deleted_at == NOW
    assert job.is_active is False
    assert db.commit_calls == 1
