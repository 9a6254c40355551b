"""SQLAlchemy models for orders, stage catalogs, production jobs and notifications."""
from sqlalchemy import (
    Boolean, Column, String, Integer, DateTime, Text,
    ForeignKey, CheckConstraint, Index
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from .database import Base


NOTIFICATION_TYPES = (
    'order_created', 'order_updated', 'status_changed',
    'comment_added', 'order_assigned', 'system',
)


class User(Base):
    """Lab user (client dentist or team member). Managed by the auth service."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=True, index=True)
    first_name = Column(String(120), nullable=True)
    last_name = Column(String(120), nullable=True)
    company = Column(String(255), nullable=True)
    role = Column(String(50), nullable=False, default='user', index=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class Order(Base):
    """Dental case order."""
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # Legacy identifier carried over from the previous document store.
    external_id = Column(String(64), unique=True, nullable=True, index=True)
    order_number = Column(String(32), nullable=False, unique=True, index=True)
    patient_name = Column(String(255), nullable=False)
    work_type = Column(String(50), nullable=False)
    selected_material = Column(String(100), nullable=False, default='')
    selected_vita_shade = Column(String(50), nullable=False, default='')
    tooth_constructions = Column(JSONB, nullable=False, default=dict)
    selected_teeth = Column(JSONB, nullable=False, default=list)
    uploaded_files = Column(JSONB, nullable=False, default=list)
    case_observations = Column(Text, nullable=False, default='')
    # Free-text Kanban stage id.
    status = Column(String(100), nullable=False, default='pending', index=True)
    priority = Column(String(20), nullable=False, default='normal')
    estimated_delivery = Column(DateTime(timezone=True), nullable=True)
    actual_delivery = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(String(255), nullable=False, default='system', index=True)
    assigned_to = Column(String(255), nullable=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # UPDATE ... WHERE version = :expected, incremented on every flush.
    __mapper_args__ = {"version_id_col": version}

    # Relationships
    comments = relationship(
        "OrderComment",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderComment.created_at",
    )
    production_jobs = relationship("ProductionJob", back_populates="order")


class OrderComment(Base):
    """Conversation thread entry on an order."""
    __tablename__ = "order_comments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(255), nullable=True)
    user_name = Column(String(255), nullable=False, default='Usuário')
    user_role = Column(String(50), nullable=False, default='user')
    message = Column(Text, nullable=False)
    attachments = Column(JSONB, nullable=False, default=list)
    is_internal = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    # Relationships
    order = relationship("Order", back_populates="comments")


class KanbanStage(Base):
    """Column of the order-status board. `Order.status` holds one of these ids."""
    __tablename__ = "stages"

    id = Column(String(100), primary_key=True)
    name = Column(String(255), nullable=False)
    color = Column(String(20), nullable=False)
    stroke = Column(String(20), nullable=True)
    background_color = Column(String(20), nullable=True)
    primary_color = Column(String(20), nullable=True)
    card_bg_color = Column(String(20), nullable=True)
    sort_order = Column("order", Integer, nullable=False, default=0, index=True)
    triggers_production = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class ProductionStage(Base):
    """Column of the manufacturing board. `ProductionJob.stage_id` holds one of these ids."""
    __tablename__ = "production_stages"

    id = Column(String(100), primary_key=True)
    name = Column(String(255), nullable=False)
    order_index = Column(Integer, nullable=False, default=0, index=True)
    color = Column(String(20), nullable=True)
    primary_color = Column(String(20), nullable=True)
    card_bg_color = Column(String(20), nullable=True)
    is_backward_allowed = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    materials = relationship(
        "ProductionStageMaterial",
        back_populates="stage",
        cascade="all, delete-orphan",
    )


class ProductionStageMaterial(Base):
    """Materials handled at a production stage."""
    __tablename__ = "production_stage_materials"

    stage_id = Column(
        String(100),
        ForeignKey("production_stages.id", ondelete="CASCADE"),
        primary_key=True,
    )
    material = Column(String(100), primary_key=True)

    stage = relationship("ProductionStage", back_populates="materials")


class StageMapping(Base):
    """Explicit bridge from a Kanban stage to the production stage a new job starts in."""
    __tablename__ = "stage_mappings"

    kanban_stage_id = Column(String(100), ForeignKey("stages.id", ondelete="CASCADE"), primary_key=True)
    production_stage_id = Column(
        String(100),
        ForeignKey("production_stages.id", ondelete="CASCADE"),
        nullable=False,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class ProductionJob(Base):
    """Manufacturing-floor tracking record for an order."""
    __tablename__ = "production"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    code = Column(String(32), nullable=True)
    work_type = Column(String(50), nullable=True)
    material = Column(String(100), nullable=True, index=True)
    stage_id = Column(String(100), nullable=True, index=True)
    # Snapshot of the assignee taken when the job was created or reassigned.
    operator_id = Column(String(255), nullable=True, index=True)
    operator_name = Column(String(255), nullable=True)
    lot = Column(String(100), nullable=True)
    cam_files = Column(JSONB, nullable=False, default=list)
    cad_files = Column(JSONB, nullable=False, default=list)
    priority = Column(String(20), nullable=True)
    estimated_delivery = Column(DateTime(timezone=True), nullable=True)
    actual_delivery = Column(DateTime(timezone=True), nullable=True)
    data = Column(JSONB, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        # At most one active job per order.
        Index(
            'uq_production_active_order',
            'order_id',
            unique=True,
            postgresql_where=(is_active == True),
        ),
    )

    # Relationships
    order = relationship("Order", back_populates="production_jobs")


class Notification(Base):
    """User-facing notification row read by the notification UI."""
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), nullable=False, index=True)
    type = Column(String(50), nullable=False)
    title = Column(String(500), nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSONB, nullable=False, default=dict)
    is_read = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(type.in_(NOTIFICATION_TYPES), name='chk_notification_type'),
    )


class NotificationOutbox(Base):
    """
    Notification outbox - ONE ROW PER RECIPIENT.
    Written in the same transaction as the order change, drained by the Celery worker.
    """
    __tablename__ = "notification_outbox"

    id = Column(Integer, primary_key=True, autoincrement=True)
    type = Column(String(50), nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, index=True)
    order_number = Column(String(32), nullable=True)
    triggered_by_id = Column(String(255), nullable=True)

    # ONE recipient per row
    recipient_user_id = Column(String(255), nullable=False, index=True)

    title = Column(String(500), nullable=False)
    message = Column(Text, nullable=False)
    payload = Column(JSONB, nullable=False, default=dict)

    status = Column(String(20), nullable=False, default='pending', index=True)  # pending/sent/failed
    attempts = Column(Integer, nullable=False, default=0)
    next_retry_at = Column(DateTime(timezone=True), nullable=True, index=True)
    last_error = Column(Text, nullable=True)

    # Format: type:order_id:version:user_id
    idempotency_key = Column(String(255), unique=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(type.in_(NOTIFICATION_TYPES), name='chk_outbox_type'),
        CheckConstraint(
            status.in_(['pending', 'sent', 'failed']),
            name='chk_outbox_status'
        ),
        Index('idx_outbox_pending_retry', 'status', 'next_retry_at',
              postgresql_where=(status == 'pending')),
    )
