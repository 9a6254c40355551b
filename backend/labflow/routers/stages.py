"""Kanban stage catalog endpoints."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import PermissionChecker, get_current_user
from ..database import get_db
from ..domain_errors import ValidationError
from ..models import User
from ..schemas import (
    KanbanStageCreate,
    KanbanStageResponse,
    KanbanStageUpdate,
    StageMappingItem,
    StageMappingsUpdate,
    StageReorderRequest,
)
from ..use_cases.stage_catalog import (
    create_kanban_stage_use_case,
    delete_kanban_stage_use_case,
    list_kanban_stages_use_case,
    list_stage_mappings_use_case,
    reorder_kanban_stages_use_case,
    replace_stage_mappings_use_case,
    update_kanban_stage_use_case,
)

router = APIRouter(prefix="/stages", tags=["stages"])


@router.get("", response_model=list[KanbanStageResponse])
def list_stages(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return list_kanban_stages_use_case(db=db)


@router.post("", response_model=KanbanStageResponse)
def create_stage(
    data: KanbanStageCreate,
    current_user: User = Depends(PermissionChecker("canManageStages")),
    db: Session = Depends(get_db),
):
    """Create stage; id derived from the name unless given."""
    return create_kanban_stage_use_case(db=db, data=data)


@router.put("")
def reorder_stages(
    data: StageReorderRequest,
    current_user: User = Depends(PermissionChecker("canManageStages")),
    db: Session = Depends(get_db),
):
    """Batch reorder: ``{stages: [{id, order}]}``, positions follow list order."""
    stages = reorder_kanban_stages_use_case(db=db, items=data.stages)
    return {
        "message": "Stage order updated",
        "stages": [KanbanStageResponse.model_validate(stage).model_dump(by_alias=True) for stage in stages],
    }


@router.patch("", response_model=KanbanStageResponse)
def update_stage(
    data: KanbanStageUpdate,
    id: Optional[str] = Query(None),
    current_user: User = Depends(PermissionChecker("canManageStages")),
    db: Session = Depends(get_db),
):
    """Rename or recolour by id (query string or body)."""
    stage_id = id or data.id
    if not stage_id:
        raise ValidationError(code="STAGE_ID_REQUIRED", message="Stage id is required")
    return update_kanban_stage_use_case(db=db, stage_id=stage_id, data=data)


@router.delete("")
def delete_stage(
    id: str = Query(...),
    current_user: User = Depends(PermissionChecker("canManageStages")),
    db: Session = Depends(get_db),
):
    delete_kanban_stage_use_case(db=db, stage_id=id)
    return {"message": "Stage removed"}


@router.get("/mappings", response_model=list[StageMappingItem])
def list_mappings(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return list_stage_mappings_use_case(db=db)


@router.put("/mappings", response_model=list[StageMappingItem])
def replace_mappings(
    data: StageMappingsUpdate,
    current_user: User = Depends(PermissionChecker("canManageStages")),
    db: Session = Depends(get_db),
):
    """Replace the Kanban -> production stage table."""
    return replace_stage_mappings_use_case(db=db, items=data.mappings)
