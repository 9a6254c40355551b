"""Production job and production stage endpoints."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ..auth import PermissionChecker
from ..database import get_db
from ..models import User
from ..schemas import (
    ProductionJobCreate,
    ProductionJobResponse,
    ProductionJobUpdate,
    ProductionStageResponse,
    ProductionStageUpsert,
    StageReorderRequest,
)
from ..use_cases.production_jobs import (
    create_production_job_use_case,
    list_production_jobs_use_case,
    update_production_job_use_case,
)
from ..use_cases.stage_catalog import (
    list_production_stages_use_case,
    reorder_production_stages_use_case,
    upsert_production_stage_use_case,
)

router = APIRouter(prefix="/production", tags=["production"])


@router.get("", response_model=list[ProductionJobResponse])
def list_jobs(
    stage_id: Optional[str] = Query(None, alias="stageId"),
    order_id: Optional[int] = Query(None, alias="orderId"),
    material: Optional[str] = None,
    work_type: Optional[str] = Query(None, alias="workType"),
    operator_id: Optional[str] = Query(None, alias="operatorId"),
    current_user: User = Depends(PermissionChecker("canViewProduction")),
    db: Session = Depends(get_db),
):
    """Active jobs, stage ids resolved against the production catalog."""
    return list_production_jobs_use_case(
        db=db,
        stage_id=stage_id,
        order_id=order_id,
        material=material,
        work_type=work_type,
        operator_id=operator_id,
    )


@router.post("", response_model=ProductionJobResponse, status_code=status.HTTP_201_CREATED)
def create_job(
    data: ProductionJobCreate,
    current_user: User = Depends(PermissionChecker("canEditProduction")),
    db: Session = Depends(get_db),
):
    return create_production_job_use_case(db=db, data=data)


@router.patch("", response_model=ProductionJobResponse)
def update_job(
    data: ProductionJobUpdate,
    id: int = Query(...),
    current_user: User = Depends(PermissionChecker("canEditProduction")),
    db: Session = Depends(get_db),
):
    """Stage/operator update issued by the production board."""
    return update_production_job_use_case(db=db, job_id=id, data=data, current_user=current_user)


@router.get("/stages", response_model=list[ProductionStageResponse])
def list_stages(
    current_user: User = Depends(PermissionChecker("canViewProduction")),
    db: Session = Depends(get_db),
):
    stages = list_production_stages_use_case(db=db)
    return [ProductionStageResponse.from_stage(stage) for stage in stages]


@router.post("/stages", response_model=ProductionStageResponse)
def upsert_stage(
    data: ProductionStageUpsert,
    current_user: User = Depends(PermissionChecker("canManageStages")),
    db: Session = Depends(get_db),
):
    """Insert or update a production stage and its material list."""
    stage = upsert_production_stage_use_case(db=db, data=data)
    return ProductionStageResponse.from_stage(stage)


@router.put("/stages", response_model=list[ProductionStageResponse])
def reorder_stages(
    data: StageReorderRequest,
    current_user: User = Depends(PermissionChecker("canManageStages")),
    db: Session = Depends(get_db),
):
    stages = reorder_production_stages_use_case(db=db, items=data.stages)
    return [ProductionStageResponse.from_stage(stage) for stage in stages]
