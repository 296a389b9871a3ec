from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from linescout.core.api_docs import error_responses
from linescout.core.deps import get_db
from linescout.core.security_current import get_current_user
from linescout.models.notification import Notification
from linescout.models.user import User
from linescout.schemas.notification import NotificationListOut, NotificationOut

router = APIRouter(prefix="/notifications", tags=["notifications"])


def _notification_out(row: Notification) -> NotificationOut:
    return NotificationOut(
        id=row.id,
        target=row.target,
        title=row.title,
        body=row.body,
        data=row.data_json,
        is_read=bool(row.is_read),
        read_at=row.read_at,
        created_at=row.created_at,
    )


def _unread_count(db: Session, user_id: str) -> int:
    return int(
        db.execute(
            select(func.count(Notification.id)).where(
                Notification.user_id == user_id, Notification.is_read.is_(False)
            )
        ).scalar_one()
    )


@router.get(
    "",
    response_model=NotificationListOut,
    summary="My notifications",
    responses=error_responses(401, 422, 500),
)
def list_notifications(
    unread_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    stmt = select(Notification).where(Notification.user_id == user.id)
    if unread_only:
        stmt = stmt.where(Notification.is_read.is_(False))
    rows = db.execute(stmt.order_by(Notification.created_at.desc()).limit(limit)).scalars().all()
    return NotificationListOut(
        items=[_notification_out(row) for row in rows],
        unread_count=_unread_count(db, user.id),
    )


@router.post(
    "/{notification_id}/read",
    response_model=NotificationOut,
    summary="Mark a notification read",
    responses=error_responses(401, 404, 500),
)
def mark_read(notification_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    row = db.get(Notification, notification_id)
    if not row or row.user_id != user.id:
        raise HTTPException(status_code=404, detail="Notification not found")
    if not row.is_read:
        row.is_read = True
        row.read_at = datetime.now(timezone.utc)
        db.commit()
        db.refresh(row)
    return _notification_out(row)


@router.post(
    "/read-all",
    summary="Mark all my notifications read",
    responses=error_responses(401, 500),
)
def mark_all_read(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    result = db.execute(
        update(Notification)
        .where(Notification.user_id == user.id, Notification.is_read.is_(False))
        .values(is_read=True, read_at=datetime.now(timezone.utc))
    )
    db.commit()
    return {"updated": result.rowcount}
