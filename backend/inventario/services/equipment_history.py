from __future__ import annotations

from typing import Iterable, Optional

from sqlalchemy.orm import Session

from inventario.models.audit_log import AuditLog
from inventario.models.equipment import EquipmentHistory
from inventario.services.equipment_consolidation import FieldChange


def record_history(
    db: Session,
    equipment_id: int,
    changed_by: str,
    changes: Iterable[FieldChange],
) -> list[EquipmentHistory]:
    """Adiciona uma linha de historico por alteracao na transacao aberta.

    Nao faz commit: o historico entra ou sai junto com a alteracao do equipamento.
    """
    rows = [
        EquipmentHistory(
            equipment_id=equipment_id,
            changed_by=changed_by,
            change_type=change.field_name,
            from_value=change.old_value,
            to_value=change.new_value,
        )
        for change in changes
    ]
    if rows:
        db.add_all(rows)
    return rows


def log_action(
    db: Session,
    username: Optional[str],
    action_type: str,
    target_type: str,
    target_id: object,
    details: str,
) -> AuditLog:
    row = AuditLog(
        username=username,
        action_type=action_type,
        target_type=target_type,
        target_id=None if target_id is None else str(target_id),
        details=details,
    )
    db.add(row)
    return row


def describe_changes(changes: Iterable[FieldChange]) -> str:
    return ", ".join(change.field_name for change in changes)
