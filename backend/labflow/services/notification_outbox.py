"""Outbox row builders. Rows are added to the caller's session and committed with it."""
from __future__ import annotations

import logging
from typing import Any, Iterable

from sqlalchemy.orm import Session

from ..models import NotificationOutbox, User

logger = logging.getLogger(__name__)


def team_user_ids(db: Session, team_roles: Iterable[str]) -> list[str]:
    """Ids of active users holding one of the team roles."""
    users = (
        db.query(User)
        .filter(
            User.role.in_(list(team_roles)),
            User.is_active == True,
        )
        .all()
    )
    return [str(user.id) for user in users]


def idempotency_key(notification_type: str, order_id: object, event_ref: object, user_id: str) -> str:
    return f"{notification_type}:{order_id}:{event_ref}:{user_id}"


def enqueue_notifications(
    db: Session,
    *,
    notification_type: str,
    recipients: list[str],
    title: str,
    message: str,
    payload: dict[str, Any],
    order_id: int | None,
    order_number: str | None,
    event_ref: object,
    triggered_by_id: str | None,
) -> list[NotificationOutbox]:
    """Add one pending outbox row per recipient.

    ``event_ref`` pins the key to a single event (order version, comment id),
    so a retried request cannot fan out twice.
    """
    rows: list[NotificationOutbox] = []
    for user_id in recipients:
        row = NotificationOutbox(
            type=notification_type,
            order_id=order_id,
            order_number=order_number,
            triggered_by_id=triggered_by_id,
            recipient_user_id=user_id,
            title=title,
            message=message,
            payload=payload,
            status='pending',
            attempts=0,
            idempotency_key=idempotency_key(notification_type, order_id, event_ref, user_id),
        )
        db.add(row)
        rows.append(row)

    if rows:
        logger.info(f"Queued {len(rows)} '{notification_type}' notifications for order {order_id}")
    return rows
