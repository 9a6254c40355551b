"""Kanban and production stage catalog use-cases."""
from __future__ import annotations

import logging

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from ..domain_errors import ConflictError, NotFoundError, PersistenceError, ValidationError
from ..models import (
    KanbanStage,
    Order,
    ProductionStage,
    ProductionStageMaterial,
    StageMapping,
)
from ..schemas import (
    KanbanStageCreate,
    KanbanStageUpdate,
    ProductionStageUpsert,
    StageMappingItem,
    StageOrderItem,
)
from ..services.stage_catalog import slugify_stage_id

logger = logging.getLogger(__name__)

_KANBAN_VISUAL_FIELDS = ("name", "color", "stroke", "background_color", "primary_color", "card_bg_color")


def _commit_or_raise(db: Session, *, code: str, message: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(f"{message}: {exc}", exc_info=True)
        raise PersistenceError(code=code, message=message) from exc


def _get_kanban_stage_or_404(*, db: Session, stage_id: str) -> KanbanStage:
    stage = db.query(KanbanStage).filter(KanbanStage.id == stage_id).first()
    if not stage:
        raise NotFoundError(
            code="STAGE_NOT_FOUND",
            message="Stage not found",
            details={"stageId": stage_id},
        )
    return stage


def resequence(items: list[StageOrderItem], existing_ids: list[str]) -> dict[str, int]:
    """Listed ids get 1..n by position; unlisted ids keep their relative order after them."""
    if not items:
        raise ValidationError(code="STAGE_REORDER_EMPTY", message="Stage list is empty")

    listed = [item.id for item in items]
    if len(set(listed)) != len(listed):
        raise ValidationError(code="STAGE_REORDER_DUPLICATE", message="Stage list contains duplicate ids")

    unknown = [stage_id for stage_id in listed if stage_id not in set(existing_ids)]
    if unknown:
        raise ValidationError(
            code="STAGE_REORDER_UNKNOWN",
            message="Stage list contains unknown ids",
            details={"unknownIds": unknown},
        )

    ordered = listed + [stage_id for stage_id in existing_ids if stage_id not in set(listed)]
    return {stage_id: position for position, stage_id in enumerate(ordered, start=1)}


# Kanban catalog

def list_kanban_stages_use_case(*, db: Session) -> list[KanbanStage]:
    return db.query(KanbanStage).order_by(KanbanStage.sort_order.asc()).all()


def create_kanban_stage_use_case(*, db: Session, data: KanbanStageCreate) -> KanbanStage:
    stage_id = (data.id or "").strip() or slugify_stage_id(data.name)
    if not stage_id:
        raise ValidationError(code="STAGE_ID_INVALID", message="Stage name yields an empty id")

    if db.query(KanbanStage).filter(KanbanStage.id == stage_id).first():
        raise ConflictError(
            code="STAGE_ALREADY_EXISTS",
            message="A stage with this name already exists",
            details={"stageId": stage_id},
        )

    sort_order = data.order
    if sort_order is None:
        max_order = db.query(func.coalesce(func.max(KanbanStage.sort_order), 0)).scalar()
        sort_order = int(max_order or 0) + 1

    stage = KanbanStage(
        id=stage_id,
        name=data.name.strip(),
        color=data.color,
        stroke=data.stroke,
        background_color=data.background_color,
        primary_color=data.primary_color,
        card_bg_color=data.card_bg_color,
        sort_order=sort_order,
        triggers_production=data.triggers_production,
    )
    db.add(stage)
    _commit_or_raise(db, code="STAGE_CREATE_FAILED", message="Stage could not be saved")
    logger.info(f"Kanban stage '{stage_id}' created at position {sort_order}")
    return stage


def update_kanban_stage_use_case(*, db: Session, stage_id: str, data: KanbanStageUpdate) -> KanbanStage:
    """Rename, recolour or flag a stage. Blank strings are ignored."""
    stage = _get_kanban_stage_or_404(db=db, stage_id=stage_id)
    changes = data.model_dump(exclude_unset=True, exclude={"id"})

    applied = False
    for field in _KANBAN_VISUAL_FIELDS:
        value = changes.get(field)
        if isinstance(value, str) and value.strip():
            setattr(stage, field, value.strip())
            applied = True
    if changes.get("triggers_production") is not None:
        stage.triggers_production = changes["triggers_production"]
        applied = True

    if not applied:
        raise ValidationError(code="STAGE_PATCH_EMPTY", message="No fields to update")

    _commit_or_raise(db, code="STAGE_UPDATE_FAILED", message="Stage could not be saved")
    return stage


def reorder_kanban_stages_use_case(*, db: Session, items: list[StageOrderItem]) -> list[KanbanStage]:
    """Persist a whole column order in one transaction."""
    stages = list_kanban_stages_use_case(db=db)
    positions = resequence(items, [stage.id for stage in stages])
    for stage in stages:
        stage.sort_order = positions[stage.id]
    _commit_or_raise(db, code="STAGE_REORDER_FAILED", message="Stage order could not be saved")
    logger.info(f"Kanban stages reordered: {[item.id for item in items]}")
    return sorted(stages, key=lambda s: s.sort_order)


def delete_kanban_stage_use_case(*, db: Session, stage_id: str) -> None:
    stage = _get_kanban_stage_or_404(db=db, stage_id=stage_id)

    in_use = db.query(func.count(Order.id)).filter(Order.status == stage_id).scalar() or 0
    if in_use > 0:
        raise ValidationError(
            code="STAGE_IN_USE",
            message=f"Cannot remove a stage with {in_use} orders",
            details={"stageId": stage_id, "orders": in_use},
        )

    db.delete(stage)
    _commit_or_raise(db, code="STAGE_DELETE_FAILED", message="Stage could not be deleted")
    logger.info(f"Kanban stage '{stage_id}' deleted")


# Production catalog

def list_production_stages_use_case(*, db: Session) -> list[ProductionStage]:
    return (
        db.query(ProductionStage)
        .options(selectinload(ProductionStage.materials))
        .filter(ProductionStage.is_active == True)
        .order_by(ProductionStage.order_index.asc(), ProductionStage.name.asc())
        .all()
    )


def upsert_production_stage_use_case(*, db: Session, data: ProductionStageUpsert) -> ProductionStage:
    """Insert or update by id; a given material list replaces the linked one."""
    stage_id = (data.id or "").strip() or slugify_stage_id(data.name)
    if not stage_id:
        raise ValidationError(code="STAGE_ID_INVALID", message="Stage name yields an empty id")

    stage = db.query(ProductionStage).filter(ProductionStage.id == stage_id).first()
    if stage is None:
        stage = ProductionStage(id=stage_id, materials=[])
        db.add(stage)

    stage.name = data.name.strip()
    stage.order_index = data.order if data.order is not None else (stage.order_index or 0)
    stage.color = data.color
    stage.primary_color = data.primary_color
    stage.card_bg_color = data.card_bg_color
    stage.is_backward_allowed = data.is_backward_allowed
    stage.is_active = data.is_active

    if data.materials is not None:
        unique_materials = list(dict.fromkeys(str(m).strip() for m in data.materials if str(m).strip()))
        stage.materials = [ProductionStageMaterial(stage_id=stage_id, material=m) for m in unique_materials]

    _commit_or_raise(db, code="PRODUCTION_STAGE_SAVE_FAILED", message="Production stage could not be saved")
    logger.info(f"Production stage '{stage_id}' saved")
    return stage


def reorder_production_stages_use_case(*, db: Session, items: list[StageOrderItem]) -> list[ProductionStage]:
    stages = list_production_stages_use_case(db=db)
    positions = resequence(items, [stage.id for stage in stages])
    for stage in stages:
        stage.order_index = positions[stage.id]
    _commit_or_raise(db, code="STAGE_REORDER_FAILED", message="Stage order could not be saved")
    return sorted(stages, key=lambda s: s.order_index)


# Kanban -> production bridge

def list_stage_mappings_use_case(*, db: Session) -> list[StageMapping]:
    return db.query(StageMapping).order_by(StageMapping.kanban_stage_id.asc()).all()


def replace_stage_mappings_use_case(*, db: Session, items: list[StageMappingItem]) -> list[StageMapping]:
    """Replace the whole mapping table. Both ends must exist in their catalogs."""
    kanban_ids = {stage.id for stage in db.query(KanbanStage).all()}
    production_ids = {stage.id for stage in db.query(ProductionStage).all()}

    seen: set[str] = set()
    for item in items:
        if item.kanban_stage_id in seen:
            raise ValidationError(
                code="STAGE_MAPPING_DUPLICATE",
                message="A Kanban stage can map to one production stage only",
                details={"kanbanStageId": item.kanban_stage_id},
            )
        seen.add(item.kanban_stage_id)
        if item.kanban_stage_id not in kanban_ids:
            raise NotFoundError(
                code="STAGE_NOT_FOUND",
                message="Stage not found",
                details={"stageId": item.kanban_stage_id},
            )
        if item.production_stage_id not in production_ids:
            raise NotFoundError(
                code="PRODUCTION_STAGE_NOT_FOUND",
                message="Production stage not found",
                details={"stageId": item.production_stage_id},
            )

    db.query(StageMapping).delete(synchronize_session=False)
    mappings = [
        StageMapping(kanban_stage_id=item.kanban_stage_id, production_stage_id=item.production_stage_id)
        for item in items
    ]
    for mapping in mappings:
        db.add(mapping)
    _commit_or_raise(db, code="STAGE_MAPPING_SAVE_FAILED", message="Stage mappings could not be saved")
    logger.info(f"Stage mappings replaced ({len(mappings)} entries)")
    return mappings
