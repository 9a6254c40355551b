"""Order response serialization helpers with batched creator loading."""
from __future__ import annotations

import re

from sqlalchemy.orm import Session

from ..models import Order, OrderComment, User
from ..schemas import OrderCommentResponse, OrderResponse

_NUMERIC_ID_RE = re.compile(r"^\d+$")


def is_numeric_ref(value: object) -> bool:
    return value is not None and bool(_NUMERIC_ID_RE.match(str(value)))


def pretty_name_from_email(email: str) -> str:
    """``ana.maria_silva@lab.com`` -> ``Ana Maria Silva``."""
    nick = email.split("@")[0]
    nick = nick.replace(".", " ").replace("_", " ")
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), nick)


def load_creators(db: Session, orders: list[Order]) -> dict[int, User]:
    """One query for every numeric ``created_by`` on the page."""
    creator_ids = {int(order.created_by) for order in orders if is_numeric_ref(order.created_by)}
    if not creator_ids:
        return {}
    users = db.query(User).filter(User.id.in_(creator_ids)).all()
    return {user.id: user for user in users}


def _creator_fields(order: Order, creators_by_id: dict[int, User]) -> tuple[str | None, str | None]:
    created_by = order.created_by
    if is_numeric_ref(created_by):
        user = creators_by_id.get(int(created_by))
        if user is None:
            return None, None
        return (user.full_name or None), (user.company or None)
    if created_by and "@" in str(created_by):
        return pretty_name_from_email(str(created_by)), ""
    return None, None


def order_to_response(
    order: Order,
    creators_by_id: dict[int, User],
    comments: list[OrderComment] | None = None,
) -> OrderResponse:
    creator_name, creator_company = _creator_fields(order, creators_by_id)
    return OrderResponse(
        id=order.id,
        external_id=order.external_id,
        order_number=order.order_number,
        patient_name=order.patient_name,
        work_type=order.work_type,
        selected_material=order.selected_material or "",
        selected_vita_shade=order.selected_vita_shade or "",
        tooth_constructions=order.tooth_constructions or {},
        selected_teeth=order.selected_teeth or [],
        uploaded_files=order.uploaded_files or [],
        case_observations=order.case_observations or "",
        status=order.status,
        priority=order.priority,
        estimated_delivery=order.estimated_delivery,
        actual_delivery=order.actual_delivery,
        created_by=order.created_by,
        assigned_to=order.assigned_to,
        is_active=order.is_active is not False,
        version=order.version or 1,
        created_at=order.created_at,
        updated_at=order.updated_at,
        creator_name=creator_name,
        creator_company=creator_company,
        comments=[OrderCommentResponse.model_validate(c) for c in (comments or [])],
    )


def orders_to_response(db: Session, orders: list[Order]) -> list[OrderResponse]:
    creators_by_id = load_creators(db, orders)
    return [order_to_response(order, creators_by_id) for order in orders]


def order_detail_to_response(db: Session, order: Order) -> OrderResponse:
    """Single order with creator info and the full comment thread."""
    creators_by_id = load_creators(db, [order])
    comments = (
        db.query(OrderComment)
        .filter(OrderComment.order_id == order.id)
        .order_by(OrderComment.created_at.asc(), OrderComment.id.asc())
        .all()
    )
    return order_to_response(order, creators_by_id, comments)
