import uuid
import logging
from typing import List
from sqlalchemy import update
from sqlalchemy.orm import Session
from models.models import Notification, NotificationType

logger = logging.getLogger(__name__)


def publish(db: Session, recipient_id: str, title: str, message: str,
            kind: NotificationType | str = NotificationType.INFO,
            commit: bool = True) -> Notification:
    """Append an unread notification to the recipient's mailbox."""
    notification = Notification(
        recipient_id=str(recipient_id),
        title=title,
        message=message,
        type=NotificationType(kind),
        read=False,
    )
    db.add(notification)
    if commit:
        db.commit()
        db.refresh(notification)
    else:
        db.flush()
    logger.info(f"Notificação para {recipient_id}: {title}")
    return notification


def consume(db: Session, recipient_id: str) -> List[Notification]:
    """
    Mark every unread notification of the recipient as read and return them.

    The claim is one conditional UPDATE stamping a fresh token; only rows
    still unread at that moment receive it, so two concurrent polls for the
    same recipient never get the same notification.
    """
    token = uuid.uuid4().hex
    result = db.execute(
        update(Notification)
        .where(Notification.recipient_id == str(recipient_id),
               Notification.read == False)  # noqa: E712
        .values(read=True, claim_token=token)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if not result.rowcount:
        return []
    return (db.query(Notification)
            .filter(Notification.claim_token == token)
            .order_by(Notification.id)
            .all())


def list_recent(db: Session, recipient_id: str, limit: int = 50) -> List[Notification]:
    return (db.query(Notification)
            .filter(Notification.recipient_id == str(recipient_id))
            .order_by(Notification.id.desc())
            .limit(limit)
            .all())
