import uuid
from typing import Any

from sqlalchemy.orm import Session

from linescout.models.notification import Notification


def create_notification(
    db: Session,
    *,
    user_id: str,
    title: str,
    body: str,
    target: str = "user",
    data: dict[str, Any] | None = None,
) -> Notification:
    notification = Notification(
        id=str(uuid.uuid4()),
        target=target,
        user_id=user_id,
        title=title,
        body=body,
        data_json=data,
        is_read=False,
    )
    db.add(notification)
    return notification
