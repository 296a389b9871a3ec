from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from linescout.core.api_docs import error_responses
from linescout.core.deps import get_db
from linescout.core.permissions import require_admin
from linescout.models.audit_log import AuditLog
from linescout.models.user import User
from linescout.schemas.audit import AuditLogListOut, AuditLogOut
from linescout.schemas.common import PaginationMeta
from linescout.services.audit_service import list_audit_events

router = APIRouter(prefix="/audit-logs", tags=["audit"])


def _audit_out(row: AuditLog) -> AuditLogOut:
    return AuditLogOut(
        id=row.id,
        actor_user_id=row.actor_user_id,
        action=row.action,
        target_type=row.target_type,
        target_id=row.target_id,
        metadata_json=row.metadata_json,
        request_id=row.request_id,
        created_at=row.created_at,
    )


@router.get(
    "",
    response_model=AuditLogListOut,
    summary="List audit logs",
    description=(
        "Admin-only. `action` matches exactly, or by area when it ends with a dot "
        "(`payout_request.` returns create/approve/reject/pay)."
    ),
    responses=error_responses(400, 401, 403, 422, 500),
)
def list_audit_logs(
    actor_user_id: str | None = Query(default=None),
    action: str | None = Query(default=None, max_length=100),
    target_type: str | None = Query(default=None),
    target_id: str | None = Query(default=None),
    request_id: str | None = Query(default=None, max_length=64),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    if start_date and end_date and end_date < start_date:
        raise HTTPException(status_code=400, detail="end_date cannot be before start_date")

    rows, total = list_audit_events(
        db,
        actor_user_id=actor_user_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        request_id=request_id,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    count = len(rows)
    return AuditLogListOut(
        items=[_audit_out(row) for row in rows],
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
    )
