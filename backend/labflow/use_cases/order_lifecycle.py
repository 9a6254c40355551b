"""Order lifecycle use-cases: create, read, list, patch, soft delete.

``apply_order_update_use_case`` is the transition engine. Within a single
transaction it applies the patch, derives the deadline, keeps the order's
production job in step with its status and assignee, and queues outbox rows
for the notification worker. The worker is kicked only after commit.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..celery_app import kick_notification_outbox
from ..config import Settings, get_settings
from ..domain_errors import ConflictError, NotFoundError, PersistenceError, ValidationError
from ..models import KanbanStage, Order, OrderComment, ProductionJob, StageMapping, User
from ..schemas import OrderCreate, OrderUpdate
from ..services.business_days import add_business_days, now_utc
from ..services.notification_outbox import enqueue_notifications, team_user_ids
from ..services.notification_rules import (
    assignment_recipients,
    order_created_recipients,
    status_change_message,
    status_change_recipients,
)
from ..services.order_numbers import next_order_number, order_number_prefix
from ..services.order_response_builder import is_numeric_ref
from ..services.stage_catalog import (
    find_stage,
    is_production_status,
    normalize_stage_key,
    stage_display_name,
)

logger = logging.getLogger(__name__)

IN_PROGRESS_STATUS = "in_progress"

# Value stored when a patch sends explicit null for a NOT NULL column.
_NULL_FALLBACKS: dict[str, Any] = {
    "patient_name": "",
    "work_type": "",
    "selected_material": "",
    "selected_vita_shade": "",
    "tooth_constructions": {},
    "selected_teeth": [],
    "uploaded_files": [],
    "case_observations": "",
    "status": "pending",
    "priority": "normal",
}


def _get_order_or_404(*, db: Session, order_ref: int | str) -> Order:
    query = db.query(Order).filter(Order.is_active == True)
    if is_numeric_ref(order_ref):
        query = query.filter(Order.id == int(order_ref))
    else:
        query = query.filter(Order.external_id == str(order_ref))
    order = query.first()
    if not order:
        raise NotFoundError(
            code="ORDER_NOT_FOUND",
            message="Order not found",
            details={"orderId": str(order_ref)},
        )
    return order


def _kanban_stages(db: Session) -> list[KanbanStage]:
    return db.query(KanbanStage).order_by(KanbanStage.sort_order.asc()).all()


def _user_display_name(db: Session, user_ref: str | None) -> str | None:
    """Best-effort name lookup; non-numeric references have no user row."""
    if not is_numeric_ref(user_ref):
        return None
    user = db.query(User).filter(User.id == int(user_ref)).first()
    if user is None:
        return None
    return user.full_name or None


def _actor_id(current_user: Any) -> str | None:
    return str(current_user.id) if current_user is not None else None


def _last_comment_by_team(db: Session, *, order_id: int, team_roles: list[str]) -> bool:
    last_comment = (
        db.query(OrderComment)
        .filter(OrderComment.order_id == order_id)
        .order_by(OrderComment.created_at.desc(), OrderComment.id.desc())
        .first()
    )
    if last_comment is None:
        return False
    return (last_comment.user_role or "").lower() in {role.lower() for role in team_roles}


def should_set_deadline(
    *,
    status_in_patch: bool,
    assignee_in_patch: bool,
    old_status: str | None,
    new_status: str | None,
    assigned_to: str | None,
    last_comment_by_team: bool,
) -> bool:
    """Any one of the four deadline triggers is enough."""
    entering_in_progress = status_in_patch and normalize_stage_key(new_status) == IN_PROGRESS_STATUS
    if last_comment_by_team:
        return True
    if entering_in_progress and assigned_to:
        return True
    if assignee_in_patch and assigned_to and not status_in_patch:
        return True
    if entering_in_progress and normalize_stage_key(old_status) != IN_PROGRESS_STATUS:
        return True
    return False


def _initial_job_stage(db: Session, *, status: str, kanban_stages: list[KanbanStage], app_settings: Settings) -> str:
    stage = find_stage(kanban_stages, status)
    kanban_stage_id = stage.id if stage is not None else status
    mapping = db.query(StageMapping).filter(StageMapping.kanban_stage_id == kanban_stage_id).first()
    if mapping is not None:
        return mapping.production_stage_id
    return app_settings.PRODUCTION_INITIAL_STAGE


def _job_for_order(db: Session, *, order_id: int) -> ProductionJob | None:
    """The order's active job, row locked. Closed jobs stay closed."""
    return (
        db.query(ProductionJob)
        .filter(ProductionJob.order_id == order_id, ProductionJob.is_active == True)
        .with_for_update()
        .first()
    )


def upsert_production_job(
    db: Session,
    *,
    order: Order,
    operator_id: str | None,
    operator_name: str | None,
    initial_stage: str,
) -> tuple[ProductionJob, bool]:
    """Create the order's job or refresh the existing one. Returns ``(job, created)``.

    Updates merge: a missing operator or delivery date keeps the stored value,
    and a job that already has a stage keeps it.
    """
    job = _job_for_order(db, order_id=order.id)
    if job is None:
        job = ProductionJob(
            order_id=order.id,
            code=order.order_number,
            work_type=order.work_type or "",
            material=order.selected_material or "",
            stage_id=initial_stage,
            operator_id=operator_id,
            operator_name=operator_name,
            lot=None,
            cam_files=[],
            cad_files=[],
            priority=None,
            estimated_delivery=order.estimated_delivery,
            data={},
            is_active=True,
        )
        db.add(job)
        logger.info(f"Production job created for order {order.id} at stage '{initial_stage}'")
        return job, True

    job.work_type = order.work_type or ""
    job.material = order.selected_material or ""
    job.stage_id = job.stage_id or initial_stage
    job.operator_id = operator_id or job.operator_id
    job.operator_name = operator_name or job.operator_name
    job.estimated_delivery = order.estimated_delivery or job.estimated_delivery
    job.updated_at = now_utc()
    logger.info(f"Production job {job.id} updated for order {order.id}")
    return job, False


def _refresh_job_operator(
    db: Session,
    *,
    order: Order,
    operator_id: str | None,
    operator_name: str | None,
) -> None:
    """Assignee changed outside production: only an existing active job follows it."""
    job = (
        db.query(ProductionJob)
        .filter(ProductionJob.order_id == order.id, ProductionJob.is_active == True)
        .with_for_update()
        .first()
    )
    if job is None or not job.is_active:
        return
    job.operator_id = operator_id
    job.operator_name = operator_name
    job.updated_at = now_utc()


def _apply_patch_fields(order: Order, changes: dict[str, Any]) -> None:
    for field, value in changes.items():
        if value is None and field in _NULL_FALLBACKS:
            value = _NULL_FALLBACKS[field]
        setattr(order, field, value)


def _patch_changes(patch: OrderUpdate) -> dict[str, Any]:
    changes = patch.model_dump(exclude_unset=True, exclude={"version"})
    if "uploaded_files" in changes and patch.uploaded_files is not None:
        changes["uploaded_files"] = [
            f.model_dump(mode="json", by_alias=True, exclude_none=True) for f in patch.uploaded_files
        ]
    if changes.get("status") is not None:
        changes["status"] = str(changes["status"]).strip()
    if "assigned_to" in changes and not changes["assigned_to"]:
        changes["assigned_to"] = None
    return changes


def _queue_update_notifications(
    db: Session,
    *,
    order: Order,
    old_status: str | None,
    old_assignee: str | None,
    status_changed: bool,
    assignee_changed: bool,
    kanban_stages: list[KanbanStage],
    current_user: Any,
    app_settings: Settings,
) -> None:
    actor_id = _actor_id(current_user)
    payload = {
        "orderId": str(order.external_id or order.id),
        "orderNumber": order.order_number,
    }
    team_ids = team_user_ids(db, app_settings.team_roles_list) if status_changed else []

    if status_changed:
        old_name = stage_display_name(kanban_stages, old_status)
        new_name = stage_display_name(kanban_stages, order.status)
        enqueue_notifications(
            db,
            notification_type="status_changed",
            recipients=status_change_recipients(created_by=order.created_by, team_user_ids=team_ids),
            title=f"Status atualizado: {order.order_number}",
            message=status_change_message(
                old_status=old_status,
                new_status=order.status,
                old_name=old_name,
                new_name=new_name,
            ),
            payload={
                **payload,
                "oldStatusId": old_status,
                "newStatusId": order.status,
                "oldStatusName": old_name,
                "newStatusName": new_name,
            },
            order_id=order.id,
            order_number=order.order_number,
            event_ref=order.version,
            triggered_by_id=actor_id,
        )

    if assignee_changed:
        enqueue_notifications(
            db,
            notification_type="order_assigned",
            recipients=assignment_recipients(
                new_assignee=order.assigned_to,
                created_by=order.created_by,
                actor_id=actor_id,
            ),
            title=f"Atribuição atualizada: {order.order_number}",
            message=f"{old_assignee or '—'} → {order.assigned_to or '—'}",
            payload={**payload, "oldAssignedTo": old_assignee, "newAssignedTo": order.assigned_to},
            order_id=order.id,
            order_number=order.order_number,
            event_ref=order.version,
            triggered_by_id=actor_id,
        )


def apply_order_update_use_case(
    *,
    db: Session,
    order_ref: int | str,
    patch: OrderUpdate,
    current_user: Any,
    expected_version: int | None = None,
    clock: Callable[[], datetime] | None = None,
    app_settings: Settings | None = None,
) -> Order:
    """Apply a partial update and everything it implies, atomically."""
    app_settings = app_settings or get_settings()
    now = (clock or now_utc)()

    order = _get_order_or_404(db=db, order_ref=order_ref)

    if expected_version is None:
        expected_version = patch.version
    if expected_version is not None and expected_version != order.version:
        raise ConflictError(
            code="ORDER_VERSION_CONFLICT",
            message="Order was modified by another request",
            details={"expectedVersion": expected_version, "currentVersion": order.version},
        )

    changes = _patch_changes(patch)
    if not changes:
        raise ValidationError(code="ORDER_PATCH_EMPTY", message="No fields to update")

    old_status = order.status
    old_assignee = order.assigned_to
    status_in_patch = "status" in changes
    assignee_in_patch = "assigned_to" in changes

    try:
        _apply_patch_fields(order, changes)
        status_changed = status_in_patch and order.status != old_status
        assignee_changed = assignee_in_patch and order.assigned_to != old_assignee

        if should_set_deadline(
            status_in_patch=status_in_patch,
            assignee_in_patch=assignee_in_patch,
            old_status=old_status,
            new_status=order.status,
            assigned_to=order.assigned_to,
            last_comment_by_team=_last_comment_by_team(
                db, order_id=order.id, team_roles=app_settings.team_roles_list
            ),
        ):
            order.estimated_delivery = add_business_days(now, app_settings.DEADLINE_BUSINESS_DAYS)

        order.updated_at = now

        kanban_stages: list[KanbanStage] = []
        if status_in_patch or assignee_in_patch:
            kanban_stages = _kanban_stages(db)
            in_production = is_production_status(
                order.status,
                kanban_stages,
                production_status_ids=app_settings.production_status_ids_list,
                legacy_numeric=app_settings.LEGACY_NUMERIC_STAGE_HEURISTIC,
            )
            operator_name = _user_display_name(db, order.assigned_to)
            if in_production and order.assigned_to:
                upsert_production_job(
                    db,
                    order=order,
                    operator_id=order.assigned_to,
                    operator_name=operator_name,
                    initial_stage=_initial_job_stage(
                        db,
                        status=order.status,
                        kanban_stages=kanban_stages,
                        app_settings=app_settings,
                    ),
                )
            elif assignee_changed:
                _refresh_job_operator(
                    db,
                    order=order,
                    operator_id=order.assigned_to,
                    operator_name=operator_name,
                )

        # Flush bumps order.version; outbox keys are pinned to the new value.
        db.flush()

        _queue_update_notifications(
            db,
            order=order,
            old_status=old_status,
            old_assignee=old_assignee,
            status_changed=status_changed,
            assignee_changed=assignee_changed,
            kanban_stages=kanban_stages,
            current_user=current_user,
            app_settings=app_settings,
        )
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        raise ConflictError(
            code="ORDER_VERSION_CONFLICT",
            message="Order was modified by another request",
            details={"orderId": str(order_ref)},
        ) from exc
    except IntegrityError as exc:
        db.rollback()
        logger.warning(f"Integrity conflict while updating order {order_ref}: {exc}")
        raise ConflictError(
            code="ORDER_UPDATE_CONFLICT",
            message="Order update conflicts with a concurrent change",
            details={"orderId": str(order_ref)},
        ) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(f"Order {order_ref} update rolled back: {exc}", exc_info=True)
        raise PersistenceError(
            code="ORDER_UPDATE_FAILED",
            message="Order update could not be saved",
            details={"orderId": str(order_ref)},
        ) from exc

    if status_changed or assignee_changed:
        kick_notification_outbox()
    return order


def create_order_use_case(*, db: Session, data: OrderCreate, current_user: Any, app_settings: Settings | None = None) -> Order:
    """Validate, number and store a new order; notify team and creator."""
    app_settings = app_settings or get_settings()

    if not data.patient_name:
        raise ValidationError(code="ORDER_PATIENT_REQUIRED", message="Patient name is required")
    if not data.work_type:
        raise ValidationError(code="ORDER_WORK_TYPE_REQUIRED", message="Work type is required")
    if not data.tooth_constructions:
        raise ValidationError(
            code="ORDER_CONSTRUCTIONS_REQUIRED",
            message="At least one tooth construction must be selected",
        )

    prefix = order_number_prefix(data.work_type, data.selected_material, data.tooth_constructions)
    existing_numbers = [
        row[0]
        for row in db.query(Order.order_number).filter(Order.order_number.like(f"{prefix}%")).all()
    ]
    order_number = next_order_number(prefix, existing_numbers)

    created_by = data.created_by or _actor_id(current_user) or "system"
    order = Order(
        order_number=order_number,
        patient_name=data.patient_name,
        work_type=data.work_type,
        selected_material=data.selected_material or "",
        selected_vita_shade=data.selected_vita_shade or "",
        tooth_constructions=data.tooth_constructions,
        selected_teeth=[str(tooth) for tooth in data.selected_teeth],
        uploaded_files=[f.model_dump(mode="json", by_alias=True, exclude_none=True) for f in data.uploaded_files],
        case_observations=data.case_observations or "",
        status="pending",
        priority=data.priority or "normal",
        estimated_delivery=None,
        actual_delivery=None,
        created_by=created_by,
        assigned_to=None,
        is_active=True,
    )

    try:
        db.add(order)
        db.flush()
        enqueue_notifications(
            db,
            notification_type="order_created",
            recipients=order_created_recipients(
                created_by=created_by,
                team_user_ids=team_user_ids(db, app_settings.team_roles_list),
            ),
            title=f"Novo pedido criado: {order_number}",
            message=f"Paciente: {order.patient_name} | Tipo: {order.work_type}",
            payload={"orderId": str(order.external_id or order.id), "orderNumber": order_number},
            order_id=order.id,
            order_number=order_number,
            event_ref=order.version,
            triggered_by_id=_actor_id(current_user),
        )
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError(
            code="ORDER_NUMBER_CONFLICT",
            message="Order number was taken by a concurrent request, retry",
            details={"orderNumber": order_number},
        ) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(f"Order creation rolled back: {exc}", exc_info=True)
        raise PersistenceError(code="ORDER_CREATE_FAILED", message="Order could not be saved") from exc

    logger.info(f"Order {order_number} created by {created_by}")
    kick_notification_outbox()
    return order


def get_order_use_case(*, db: Session, order_ref: int | str) -> Order:
    return _get_order_or_404(db=db, order_ref=order_ref)


def list_orders_use_case(*, db: Session, user_id: str | None = None) -> list[Order]:
    """Active orders, newest first, optionally only those created by ``user_id``."""
    query = db.query(Order).filter(Order.is_active == True)
    if user_id:
        query = query.filter(Order.created_by == str(user_id))
    return query.order_by(Order.created_at.desc().nulls_last()).all()


def delete_order_use_case(*, db: Session, order_ref: int | str, clock: Callable[[], datetime] | None = None) -> Order:
    """Soft delete. Active production jobs of the order are deactivated with it."""
    order = _get_order_or_404(db=db, order_ref=order_ref)
    now = (clock or now_utc)()
    try:
        order.is_active = False
        order.deleted_at = now
        order.updated_at = now
        jobs = (
            db.query(ProductionJob)
            .filter(ProductionJob.order_id == order.id, ProductionJob.is_active == True)
            .all()
        )
        for job in jobs:
            job.is_active = False
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        raise ConflictError(
            code="ORDER_VERSION_CONFLICT",
            message="Order was modified by another request",
            details={"orderId": str(order_ref)},
        ) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(f"Order {order_ref} delete rolled back: {exc}", exc_info=True)
        raise PersistenceError(code="ORDER_DELETE_FAILED", message="Order could not be deleted") from exc

    logger.info(f"Order {order.order_number} soft-deleted")
    return order
