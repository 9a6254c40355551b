"""Order conversation thread use-cases."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..celery_app import kick_notification_outbox
from ..config import Settings, get_settings
from ..domain_errors import ConflictError, PersistenceError
from ..models import OrderComment
from ..schemas import OrderCommentCreate
from ..services.business_days import now_utc
from ..services.notification_outbox import enqueue_notifications, team_user_ids
from ..services.notification_rules import comment_recipients
from .order_lifecycle import get_order_use_case

logger = logging.getLogger(__name__)


def add_order_comment_use_case(
    *,
    db: Session,
    order_ref: int | str,
    data: OrderCommentCreate,
    current_user: Any,
    clock: Callable[[], datetime] | None = None,
    app_settings: Settings | None = None,
) -> OrderComment:
    """Store a comment, touch the order and notify the other side of the conversation."""
    app_settings = app_settings or get_settings()
    order = get_order_use_case(db=db, order_ref=order_ref)
    now = (clock or now_utc)()

    author_role = (current_user.role or "user").lower()
    comment = OrderComment(
        order_id=order.id,
        user_id=str(current_user.id),
        user_name=getattr(current_user, "full_name", None) or "Usuário",
        user_role=author_role,
        message=data.message.strip(),
        attachments=[a.model_dump(mode="json", by_alias=True) for a in data.attachments],
        is_internal=data.is_internal,
        created_at=now,
    )

    try:
        db.add(comment)
        order.updated_at = now
        db.flush()

        team_roles = app_settings.team_roles_list
        is_team_author = author_role in {role.lower() for role in team_roles}
        recipients = comment_recipients(
            author_role=author_role,
            team_roles=team_roles,
            created_by=order.created_by,
            assigned_to=order.assigned_to,
            team_user_ids=[] if is_team_author else team_user_ids(db, team_roles),
            author_id=current_user.id,
        )
        enqueue_notifications(
            db,
            notification_type="comment_added",
            recipients=recipients,
            title=f"Novo comentário no pedido {order.order_number}",
            message=f"{comment.user_name}: {comment.message}",
            payload={"orderId": str(order.external_id or order.id), "orderNumber": order.order_number},
            order_id=order.id,
            order_number=order.order_number,
            event_ref=f"c{comment.id}",
            triggered_by_id=str(current_user.id),
        )
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
        logger.error(f"Comment on order {order_ref} rolled back: {exc}", exc_info=True)
        raise PersistenceError(code="ORDER_COMMENT_FAILED", message="Comment could not be saved") from exc

    kick_notification_outbox()
    return comment
