from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from inventario.core.auth import require_permission
from inventario.database.deps import get_db
from inventario.models.audit_log import AuditLog
from inventario.models.user import User
from inventario.schemas.audit import AuditLogOut

router = APIRouter(tags=["Audit"])

AUDIT_LOG_LIMIT = 500


@router.get("/audit-log", response_model=list[AuditLogOut])
def list_audit_log(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("audit.view")),
):
    return (
        db.query(AuditLog)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(AUDIT_LOG_LIMIT)
        .all()
    )
