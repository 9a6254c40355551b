"""
Celery worker draining the notification outbox with SELECT FOR UPDATE SKIP LOCKED.
"""
from celery import Celery
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from datetime import datetime, timedelta, timezone
import logging
from .config import settings
from .database import SessionLocal
from .domain_errors import NotificationDispatchError
from .models import Notification, NotificationOutbox

logger = logging.getLogger(__name__)

celery_app = Celery(
    "labflow",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
)


def deliver_notification(db, outbox_row: NotificationOutbox) -> Notification:
    """Materialize one outbox row as a user-facing notification."""
    try:
        with db.begin_nested():
            notification = Notification(
                user_id=outbox_row.recipient_user_id,
                type=outbox_row.type,
                title=outbox_row.title,
                message=outbox_row.message,
                data=outbox_row.payload or {},
                is_read=False,
            )
            db.add(notification)
            db.flush()
    except SQLAlchemyError as exc:
        raise NotificationDispatchError(f"{type(exc).__name__}: {exc}") from exc
    return notification


def retry_delay_seconds(attempts: int) -> int:
    # 2min, 4min, 8min
    return 2 ** attempts * 60


def process_outbox_batch(db, batch_size: int, max_attempts: int) -> dict:
    """Lock and deliver one batch. The caller owns commit/rollback."""
    # SELECT FOR UPDATE SKIP LOCKED - concurrent workers never pick the same row
    query = text("""
        SELECT id
        FROM notification_outbox
        WHERE status = 'pending'
          AND (next_retry_at IS NULL OR next_retry_at <= NOW())
        ORDER BY created_at
        LIMIT :batch_size
        FOR UPDATE SKIP LOCKED
    """)

    result = db.execute(query, {"batch_size": batch_size})
    outbox_ids = [row[0] for row in result.fetchall()]
    logger.info(f"Locked {len(outbox_ids)} outbox rows for processing")

    sent_count = 0
    for outbox_id in outbox_ids:
        outbox_row = db.query(NotificationOutbox).filter(
            NotificationOutbox.id == outbox_id
        ).first()
        if not outbox_row:
            continue

        now = datetime.now(timezone.utc)
        try:
            deliver_notification(db, outbox_row)
        except NotificationDispatchError as exc:
            outbox_row.attempts = (outbox_row.attempts or 0) + 1
            outbox_row.last_error = str(exc)[:500]
            if outbox_row.attempts >= max_attempts:
                outbox_row.status = 'failed'
                outbox_row.failed_at = now
                logger.error(f"Outbox row {outbox_id} failed after {outbox_row.attempts} attempts: {exc}")
            else:
                backoff_seconds = retry_delay_seconds(outbox_row.attempts)
                outbox_row.next_retry_at = now + timedelta(seconds=backoff_seconds)
                logger.warning(
                    f"Retry {outbox_row.attempts}/{max_attempts} in {backoff_seconds}s for outbox row {outbox_id}"
                )
            continue

        outbox_row.status = 'sent'
        outbox_row.sent_at = now
        outbox_row.last_error = None
        sent_count += 1

    return {"processed": sent_count, "total_locked": len(outbox_ids)}


@celery_app.task(name="process_notification_outbox")
def process_notification_outbox(batch_size: int | None = None):
    """
    Deliver pending outbox rows as notifications.

    Order mutations only write outbox rows; nothing here can roll back an order change.
    """
    db = SessionLocal()
    try:
        stats = process_outbox_batch(
            db,
            batch_size=batch_size or settings.OUTBOX_BATCH_SIZE,
            max_attempts=settings.OUTBOX_MAX_ATTEMPTS,
        )
        db.commit()
        logger.info(f"Processed {stats['processed']}/{stats['total_locked']} outbox rows")
        return stats
    except Exception as e:
        db.rollback()
        logger.error(f"Error processing outbox: {e}", exc_info=True)
        raise
    finally:
        db.close()


def kick_notification_outbox() -> None:
    """Ask a worker to drain the outbox now instead of waiting for beat.

    Called after commit. Broker failures are logged, not raised; the beat
    schedule still picks the rows up.
    """
    try:
        process_notification_outbox.delay()
    except Exception as e:
        logger.warning(f"Could not enqueue outbox processing: {e}")


# Schedule periodic processing
celery_app.conf.beat_schedule = {
    'process-outbox-every-30s': {
        'task': 'process_notification_outbox',
        'schedule': 30.0,  # Every 30 seconds
    },
}
