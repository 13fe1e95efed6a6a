from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from inventario.core.auth import require_any_permission
from inventario.core.permissions import has_permission
from inventario.database.deps import get_db
from inventario.models.equipment import Equipment
from inventario.models.license import License
from inventario.models.user import User
from inventario.schemas.approval import PendingApprovalOut
from inventario.services.equipment_store import APPROVAL_PENDING

router = APIRouter(prefix="/approvals", tags=["Approvals"])
get_approvals_reviewer = require_any_permission("equipments.manage", "licenses.manage")


@router.get("/pending", response_model=list[PendingApprovalOut])
def list_pending_approvals(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_approvals_reviewer),
):
    """Fila de cadastros aguardando revisao, so dos tipos que o usuario pode aprovar."""
    items: list[PendingApprovalOut] = []
    if has_permission(current_user, "equipments.manage"):
        rows = (
            db.query(Equipment)
            .filter(Equipment.approval_status == APPROVAL_PENDING)
            .order_by(Equipment.created_at.asc(), Equipment.id.asc())
            .all()
        )
        items.extend(
            PendingApprovalOut(
                id=row.id,
                type="equipment",
                name=row.equipamento or row.serial,
                created_by_id=row.created_by_id,
                created_at=row.created_at,
            )
            for row in rows
        )
    if has_permission(current_user, "licenses.manage"):
        rows = (
            db.query(License)
            .filter(License.approval_status == APPROVAL_PENDING)
            .order_by(License.created_at.asc(), License.id.asc())
            .all()
        )
        items.extend(
            PendingApprovalOut(
                id=row.id,
                type="license",
                name=f"{row.produto} - {row.usuario}",
                created_by_id=row.created_by_id,
                created_at=row.created_at,
            )
            for row in rows
        )
    return items
