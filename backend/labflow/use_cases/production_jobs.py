"""Production job use-cases used by the production router."""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..domain_errors import ConflictError, NotFoundError, PersistenceError
from ..models import Order, ProductionJob, ProductionStage
from ..schemas import ProductionJobCreate, ProductionJobResponse, ProductionJobUpdate
from ..services.business_days import now_utc
from ..services.stage_catalog import find_stage, resolve_production_stage

logger = logging.getLogger(__name__)


def _production_stages(db: Session) -> list[ProductionStage]:
    return (
        db.query(ProductionStage)
        .filter(ProductionStage.is_active == True)
        .order_by(ProductionStage.order_index.asc())
        .all()
    )


def _canonical_stage_id(stages: list[ProductionStage], raw: str) -> str:
    # Writes keep unknown ids as given; only reads fall back to the first column.
    stage = find_stage(stages, raw)
    return str(stage.id) if stage is not None else raw.strip()


def _get_job_or_404(*, db: Session, job_id: int) -> ProductionJob:
    job = db.query(ProductionJob).filter(ProductionJob.id == job_id).first()
    if not job:
        raise NotFoundError(
            code="PRODUCTION_JOB_NOT_FOUND",
            message="Production job not found",
            details={"jobId": job_id},
        )
    return job


def job_to_response(
    job: ProductionJob,
    order: Order | None,
    stages: list[ProductionStage] | None = None,
) -> ProductionJobResponse:
    stage_id = job.stage_id
    if stages:
        stage_id = resolve_production_stage(stages, job.stage_id)
    return ProductionJobResponse(
        id=job.id,
        order_id=job.order_id,
        order_number=order.order_number if order is not None else None,
        patient_name=order.patient_name if order is not None else None,
        code=job.code,
        work_type=job.work_type,
        material=job.material,
        stage_id=stage_id,
        operator_id=job.operator_id,
        operator_name=job.operator_name,
        lot=job.lot,
        cam_files=job.cam_files or [],
        cad_files=job.cad_files or [],
        priority=job.priority,
        estimated_delivery=job.estimated_delivery,
        actual_delivery=job.actual_delivery,
        data=job.data or {},
        is_active=job.is_active is not False,
        created_at=job.created_at,
        updated_at=job.updated_at,
    )


def list_production_jobs_use_case(
    *,
    db: Session,
    stage_id: str | None = None,
    order_id: int | None = None,
    material: str | None = None,
    work_type: str | None = None,
    operator_id: str | None = None,
) -> list[ProductionJobResponse]:
    """Active jobs joined with their order, stage ids resolved against the catalog."""
    stages = _production_stages(db)
    query = (
        db.query(ProductionJob, Order)
        .outerjoin(Order, Order.id == ProductionJob.order_id)
        .filter(ProductionJob.is_active == True)
    )
    if order_id is not None:
        query = query.filter(ProductionJob.order_id == order_id)
    if material:
        query = query.filter(ProductionJob.material == material)
    if work_type:
        query = query.filter(ProductionJob.work_type == work_type)
    if operator_id:
        query = query.filter(ProductionJob.operator_id == str(operator_id))

    rows = query.order_by(ProductionJob.created_at.desc()).all()
    result = [job_to_response(job, order, stages) for job, order in rows]
    if stage_id:
        # Filtered after resolution so legacy stage values match their column.
        wanted = resolve_production_stage(stages, stage_id) if stages else stage_id
        result = [job for job in result if job.stage_id == wanted]
    return result


def create_production_job_use_case(
    *,
    db: Session,
    data: ProductionJobCreate,
    app_settings: Settings | None = None,
) -> ProductionJobResponse:
    app_settings = app_settings or get_settings()
    order = db.query(Order).filter(Order.id == data.order_id, Order.is_active == True).first()
    if not order:
        raise NotFoundError(
            code="ORDER_NOT_FOUND",
            message="Order not found",
            details={"orderId": str(data.order_id)},
        )

    stages = _production_stages(db)
    job = ProductionJob(
        order_id=order.id,
        code=data.code or order.order_number,
        work_type=data.work_type if data.work_type is not None else order.work_type,
        material=data.material if data.material is not None else order.selected_material,
        stage_id=_canonical_stage_id(stages, data.stage_id or app_settings.PRODUCTION_INITIAL_STAGE),
        operator_id=data.operator_id,
        operator_name=data.operator_name,
        lot=data.lot,
        cam_files=data.cam_files,
        cad_files=data.cad_files,
        priority=data.priority,
        estimated_delivery=data.estimated_delivery or order.estimated_delivery,
        data=data.data,
        is_active=True,
    )
    try:
        db.add(job)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError(
            code="PRODUCTION_JOB_ALREADY_ACTIVE",
            message="Order already has an active production job",
            details={"orderId": order.id},
        ) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(f"Production job creation rolled back: {exc}", exc_info=True)
        raise PersistenceError(code="PRODUCTION_JOB_CREATE_FAILED", message="Production job could not be saved") from exc

    logger.info(f"Production job {job.id} created for order {order.id} at stage '{job.stage_id}'")
    return job_to_response(job, order, stages)


def update_production_job_use_case(
    *,
    db: Session,
    job_id: int,
    data: ProductionJobUpdate,
    current_user: Any = None,
) -> ProductionJobResponse:
    """Partial job update; the board reconciler sends ``stageId`` here."""
    job = _get_job_or_404(db=db, job_id=job_id)
    changes = data.model_dump(exclude_unset=True)
    stages = _production_stages(db)

    if changes.get("stage_id"):
        changes["stage_id"] = _canonical_stage_id(stages, changes["stage_id"])
    for field in ("cam_files", "cad_files", "data"):
        if field in changes and changes[field] is None:
            changes[field] = {} if field == "data" else []

    old_stage = job.stage_id
    try:
        for field, value in changes.items():
            setattr(job, field, value)
        job.updated_at = now_utc()
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError(
            code="PRODUCTION_JOB_ALREADY_ACTIVE",
            message="Order already has an active production job",
            details={"jobId": job_id},
        ) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(f"Production job {job_id} update rolled back: {exc}", exc_info=True)
        raise PersistenceError(code="PRODUCTION_JOB_UPDATE_FAILED", message="Production job could not be saved") from exc

    if "stage_id" in changes and changes["stage_id"] != old_stage:
        actor = getattr(current_user, "id", None)
        logger.info(f"Production job {job_id} moved '{old_stage}' -> '{job.stage_id}' by {actor}")

    order = db.query(Order).filter(Order.id == job.order_id).first()
    return job_to_response(job, order, stages)
