"""Pydantic schemas for API."""
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Any, Optional
from datetime import datetime


class CamelModel(BaseModel):
    """JSON keys are camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra='ignore',
    )


def _user_ref(value: Any) -> Any:
    # User references arrive as numbers or strings; they are stored as strings.
    if value is None or isinstance(value, str):
        return value
    return str(value)


# Users
class UserBrief(CamelModel):
    """Brief user info for nested responses."""
    id: int
    full_name: str
    company: Optional[str] = None
    role: str
    model_config = ConfigDict(from_attributes=True)


# File descriptors (storage itself is external)
class UploadedFile(CamelModel):
    name: str
    size: int = 0
    type: str = ''
    url: str
    path: Optional[str] = None
    bucket: Optional[str] = None
    upload_date: Optional[datetime] = None


class CommentAttachment(CamelModel):
    name: str
    size: int = 0
    type: str = ''
    url: str


# Order comments
class OrderCommentCreate(CamelModel):
    message: str = Field(min_length=1)
    attachments: list[CommentAttachment] = []
    is_internal: bool = False


class OrderCommentResponse(CamelModel):
    id: int
    order_id: int
    user_id: Optional[str] = None
    user_name: str
    user_role: str
    message: str
    attachments: list[dict[str, Any]] = []
    is_internal: bool = False
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


# Orders
class OrderCreate(CamelModel):
    # Required-field checks happen in the use-case so they surface as domain errors.
    patient_name: Optional[str] = None
    work_type: Optional[str] = None
    selected_material: str = ''
    selected_vita_shade: str = ''
    tooth_constructions: dict[str, str] = {}
    selected_teeth: list[str] = []
    uploaded_files: list[UploadedFile] = []
    case_observations: str = ''
    priority: str = 'normal'
    created_by: Optional[str] = None

    @field_validator('created_by', mode='before')
    @classmethod
    def coerce_created_by(cls, value: Any) -> Any:
        return _user_ref(value)


class OrderUpdate(CamelModel):
    """Partial order patch. Only keys present in the request body are applied."""
    patient_name: Optional[str] = None
    work_type: Optional[str] = None
    selected_material: Optional[str] = None
    selected_vita_shade: Optional[str] = None
    tooth_constructions: Optional[dict[str, str]] = None
    selected_teeth: Optional[list[str]] = None
    uploaded_files: Optional[list[UploadedFile]] = None
    case_observations: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    assigned_to: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    actual_delivery: Optional[datetime] = None
    # Version the client last saw; not a patch field.
    version: Optional[int] = None

    @field_validator('assigned_to', mode='before')
    @classmethod
    def coerce_assigned_to(cls, value: Any) -> Any:
        return _user_ref(value)


class OrderResponse(CamelModel):
    id: int
    external_id: Optional[str] = None
    order_number: str
    patient_name: str
    work_type: str
    selected_material: str = ''
    selected_vita_shade: str = ''
    tooth_constructions: dict[str, Any] = {}
    selected_teeth: list[Any] = []
    uploaded_files: list[dict[str, Any]] = []
    case_observations: str = ''
    status: str
    priority: str
    estimated_delivery: Optional[datetime] = None
    actual_delivery: Optional[datetime] = None
    created_by: str
    assigned_to: Optional[str] = None
    is_active: bool
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    creator_name: Optional[str] = None
    creator_company: Optional[str] = None
    comments: list[OrderCommentResponse] = []
    model_config = ConfigDict(from_attributes=True)


class DeleteResponse(CamelModel):
    success: bool
    id: int


# Production jobs
class ProductionJobCreate(CamelModel):
    order_id: int
    code: Optional[str] = None
    work_type: Optional[str] = None
    material: Optional[str] = None
    stage_id: Optional[str] = None
    operator_id: Optional[str] = None
    operator_name: Optional[str] = None
    lot: Optional[str] = None
    cam_files: list[dict[str, Any]] = []
    cad_files: list[dict[str, Any]] = []
    priority: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    data: dict[str, Any] = {}

    @field_validator('operator_id', mode='before')
    @classmethod
    def coerce_operator_id(cls, value: Any) -> Any:
        return _user_ref(value)


class ProductionJobUpdate(CamelModel):
    stage_id: Optional[str] = None
    operator_id: Optional[str] = None
    operator_name: Optional[str] = None
    work_type: Optional[str] = None
    material: Optional[str] = None
    lot: Optional[str] = None
    priority: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    actual_delivery: Optional[datetime] = None
    cam_files: Optional[list[dict[str, Any]]] = None
    cad_files: Optional[list[dict[str, Any]]] = None
    data: Optional[dict[str, Any]] = None
    is_active: Optional[bool] = None

    @field_validator('operator_id', mode='before')
    @classmethod
    def coerce_operator_id(cls, value: Any) -> Any:
        return _user_ref(value)


class ProductionJobResponse(CamelModel):
    id: int
    order_id: int
    order_number: Optional[str] = None
    patient_name: Optional[str] = None
    code: Optional[str] = None
    work_type: Optional[str] = None
    material: Optional[str] = None
    stage_id: Optional[str] = None
    operator_id: Optional[str] = None
    operator_name: Optional[str] = None
    lot: Optional[str] = None
    cam_files: list[dict[str, Any]] = []
    cad_files: list[dict[str, Any]] = []
    priority: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    actual_delivery: Optional[datetime] = None
    data: dict[str, Any] = {}
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


# Kanban stage catalog
class KanbanStageCreate(CamelModel):
    name: str = Field(min_length=1)
    id: Optional[str] = None
    color: str = '#94a3b8'
    stroke: Optional[str] = None
    background_color: Optional[str] = None
    primary_color: Optional[str] = None
    card_bg_color: Optional[str] = None
    order: Optional[int] = None
    triggers_production: bool = False


class KanbanStageUpdate(CamelModel):
    id: Optional[str] = None
    name: Optional[str] = Field(default=None, min_length=1)
    color: Optional[str] = None
    stroke: Optional[str] = None
    background_color: Optional[str] = None
    primary_color: Optional[str] = None
    card_bg_color: Optional[str] = None
    triggers_production: Optional[bool] = None


class KanbanStageResponse(CamelModel):
    id: str
    name: str
    color: str
    stroke: Optional[str] = None
    background_color: Optional[str] = None
    primary_color: Optional[str] = None
    card_bg_color: Optional[str] = None
    order: int = Field(validation_alias=AliasChoices('sort_order', 'order'))
    triggers_production: bool = False
    model_config = ConfigDict(from_attributes=True)


class StageOrderItem(CamelModel):
    id: str
    order: int


class StageReorderRequest(CamelModel):
    stages: list[StageOrderItem]


# Production stage catalog
class ProductionStageUpsert(CamelModel):
    name: str = Field(min_length=1)
    id: Optional[str] = None
    order: Optional[int] = None
    color: Optional[str] = None
    primary_color: Optional[str] = None
    card_bg_color: Optional[str] = None
    is_backward_allowed: bool = False
    is_active: bool = True
    # None leaves the linked materials untouched.
    materials: Optional[list[str]] = None


class ProductionStageResponse(CamelModel):
    id: str
    name: str
    order: int
    color: Optional[str] = None
    primary_color: Optional[str] = None
    card_bg_color: Optional[str] = None
    is_backward_allowed: bool = False
    is_active: bool = True
    materials: list[str] = []

    @classmethod
    def from_stage(cls, stage) -> "ProductionStageResponse":
        return cls(
            id=stage.id,
            name=stage.name,
            order=stage.order_index,
            color=stage.color,
            primary_color=stage.primary_color,
            card_bg_color=stage.card_bg_color,
            is_backward_allowed=bool(stage.is_backward_allowed),
            is_active=stage.is_active is not False,
            materials=sorted(m.material for m in stage.materials),
        )


# Kanban -> production stage bridge
class StageMappingItem(CamelModel):
    kanban_stage_id: str
    production_stage_id: str
    model_config = ConfigDict(from_attributes=True)


class StageMappingsUpdate(CamelModel):
    mappings: list[StageMappingItem]
