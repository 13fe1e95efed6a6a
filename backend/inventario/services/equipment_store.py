from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Optional, Sequence

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from inventario.models.equipment import Equipment, EquipmentHistory
from inventario.services.app_settings import ImportSettings, store_import_settings
from inventario.services.equipment_consolidation import (
    APPROVAL_APPROVED,
    Actor,
    PersistedEquipment,
    FieldChange,
    ReconciliationResult,
    UpsertKind,
    diff_fields,
)
from inventario.services.equipment_csv import EQUIPMENT_FIELD_NAMES, EquipmentField, merge_key
from inventario.services.equipment_history import describe_changes, log_action, record_history

logger = logging.getLogger("uvicorn.error")

_QR_CODE = EquipmentField.QR_CODE.value
_SERIAL = EquipmentField.SERIAL.value
APPROVAL_PENDING = "pending_approval"
APPROVAL_REJECTED = "rejected"
WRITABLE_COLUMNS = frozenset(EQUIPMENT_FIELD_NAMES) | {"approval_status", "created_by_id"}
# SQLite cita a coluna, PostgreSQL cita o nome da constraint.
SERIAL_CONSTRAINT_MARKERS = ("uq_equipments_serial", "equipments.serial")
DUPLICATE_SERIAL_MESSAGE = "Erro: O número de série já está cadastrado no sistema."


class DuplicateSerialError(ValueError):
    """Ja existe equipamento cadastrado com o mesmo numero de serie."""


class PersistenceError(RuntimeError):
    """Falha de banco durante uma importacao; a transacao foi desfeita."""


def build_qr_code(equipment_id: Optional[int], serial: str) -> str:
    return json.dumps({"id": equipment_id, "serial": serial, "type": "equipment"}, ensure_ascii=False)


def snapshot_equipment(row: Equipment) -> PersistedEquipment:
    return PersistedEquipment(
        id=int(row.id),
        fields={name: getattr(row, name) for name in EQUIPMENT_FIELD_NAMES},
    )


def load_persisted_equipment(db: Session) -> list[PersistedEquipment]:
    rows = db.query(Equipment).order_by(Equipment.id.asc()).all()
    return [snapshot_equipment(row) for row in rows]


def ensure_unique_serial(db: Session, serial: str, current_id: Optional[int] = None) -> None:
    key = merge_key(serial)
    if not key:
        return
    for row_id, row_serial in db.query(Equipment.id, Equipment.serial).all():
        if current_id is not None and row_id == current_id:
            continue
        if merge_key(row_serial) == key:
            raise DuplicateSerialError(DUPLICATE_SERIAL_MESSAGE)


def _assign_columns(row: Equipment, fields: Mapping[str, Any]) -> None:
    for name, value in fields.items():
        if name in WRITABLE_COLUMNS:
            setattr(row, name, value)


def _insert_equipment(db: Session, fields: Mapping[str, Any]) -> Equipment:
    row = Equipment()
    _assign_columns(row, fields)
    row.equipamento = row.equipamento or ""
    db.add(row)
    db.flush()
    row.qr_code = build_qr_code(row.id, row.serial)
    return row


def apply_consolidation(
    db: Session,
    dataset: Sequence[Mapping[str, Any]],
    actor: Actor,
    settings: ImportSettings,
) -> ImportSettings:
    """Substitui todo o inventario (e o historico) pelo conjunto consolidado.

    Tudo acontece numa unica transacao: ou o inventario inteiro e trocado e os
    marcadores gravados, ou nada muda.
    """
    try:
        db.query(EquipmentHistory).delete()
        db.query(Equipment).delete()
        for record in dataset:
            fields = dict(record)
            fields.pop(_QR_CODE, None)
            fields["approval_status"] = APPROVAL_APPROVED
            fields["created_by_id"] = actor.id
            _insert_equipment(db, fields)

        next_settings = settings.after_consolidation()
        store_import_settings(db, next_settings)
        log_action(
            db,
            actor.username,
            "IMPORT",
            "EQUIPMENT",
            "ALL",
            f"Replaced entire equipment inventory with {len(dataset)} items via initial consolidation tool.",
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Falha ao gravar consolidacao inicial (%s itens).", len(dataset))
        raise PersistenceError(str(exc)) from exc

    logger.info("Consolidacao inicial gravada por %s: %s equipamentos.", actor.username, len(dataset))
    return next_settings


def apply_reconciliation(
    db: Session,
    result: ReconciliationResult,
    actor: Actor,
    settings: ImportSettings,
    incoming_count: int,
) -> ImportSettings:
    """Aplica os planos de um ``reconcile`` com historico e auditoria numa unica transacao."""
    try:
        ids = [plan.id for plan in result.upserts if plan.kind == UpsertKind.UPDATE]
        rows_by_id = {row.id: row for row in db.query(Equipment).filter(Equipment.id.in_(ids)).all()} if ids else {}

        for plan in result.upserts:
            if plan.kind == UpsertKind.INSERT:
                row = _insert_equipment(db, plan.fields)
                record_history(db, row.id, actor.username, plan.changes)
                log_action(
                    db,
                    actor.username,
                    "CREATE",
                    "EQUIPMENT",
                    row.id,
                    f"Periodic update: New equipment added: {row.equipamento}",
                )
                continue

            row = rows_by_id.get(plan.id)
            if row is None:
                raise PersistenceError(f"Equipamento {plan.id} removido durante a atualização.")
            _assign_columns(row, plan.fields)
            record_history(db, row.id, actor.username, plan.changes)
            log_action(
                db,
                actor.username,
                "UPDATE",
                "EQUIPMENT",
                row.id,
                f"Periodic update: {row.equipamento}. Changes: {describe_changes(plan.changes)}",
            )

        next_settings = settings.after_periodic_update()
        store_import_settings(db, next_settings)
        log_action(
            db,
            actor.username,
            "IMPORT",
            "EQUIPMENT",
            "PARTIAL",
            f"Periodic update of equipment inventory with {incoming_count} items from Absolute report.",
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Falha ao gravar atualizacao periodica (%s planos).", len(result.upserts))
        raise PersistenceError(str(exc)) from exc
    except PersistenceError:
        db.rollback()
        raise

    logger.info(
        "Atualizacao periodica gravada por %s: %s novos, %s atualizados, %s sem alteracao.",
        actor.username,
        result.inserted_count,
        result.updated_count,
        result.unchanged_count,
    )
    return next_settings


def is_serial_violation(exc: IntegrityError) -> bool:
    message = str(exc.orig if exc.orig is not None else exc)
    return any(marker in message for marker in SERIAL_CONSTRAINT_MARKERS)


def _translate_write_error(db: Session, exc: SQLAlchemyError, context: str) -> Exception:
    db.rollback()
    if isinstance(exc, IntegrityError) and is_serial_violation(exc):
        return DuplicateSerialError(DUPLICATE_SERIAL_MESSAGE)
    logger.exception("Falha ao gravar equipamento (%s).", context)
    return PersistenceError(str(exc))


def _commit_or_raise(db: Session, context: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        raise _translate_write_error(db, exc, context) from exc


def create_equipment(db: Session, fields: Mapping[str, Any], actor: Actor) -> Equipment:
    ensure_unique_serial(db, fields.get(_SERIAL) or "")
    try:
        row = _insert_equipment(db, {**fields, "created_by_id": actor.id})
        log_action(db, actor.username, "CREATE", "EQUIPMENT", row.id, f"New equipment added: {row.equipamento}")
    except SQLAlchemyError as exc:
        raise _translate_write_error(db, exc, "cadastro") from exc
    _commit_or_raise(db, "cadastro")
    db.refresh(row)
    return row


def update_equipment(db: Session, row: Equipment, changes: Mapping[str, Any], actor: Actor) -> list[FieldChange]:
    """Aplica as alteracoes enviadas e grava uma linha de historico por campo alterado."""
    if _SERIAL in changes:
        ensure_unique_serial(db, changes[_SERIAL] or "", current_id=row.id)

    current = snapshot_equipment(row).fields
    diffs = diff_fields(current, {name: value for name, value in changes.items() if name in WRITABLE_COLUMNS})
    if not diffs:
        return []

    field_changes = [FieldChange(row.id, actor.username, name, old, new) for name, old, new in diffs]
    _assign_columns(row, {name: changes[name] for name, _, _ in diffs})
    if any(name == _SERIAL for name, _, _ in diffs):
        row.qr_code = build_qr_code(row.id, row.serial)
    record_history(db, row.id, actor.username, field_changes)
    log_action(
        db,
        actor.username,
        "UPDATE",
        "EQUIPMENT",
        row.id,
        f"Updated equipment: {row.equipamento}. Changes: {describe_changes(field_changes)}",
    )
    _commit_or_raise(db, f"edicao {row.id}")
    db.refresh(row)
    return field_changes


def set_equipment_approval(
    db: Session,
    row: Equipment,
    approved: bool,
    actor: Actor,
    rejection_reason: Optional[str] = None,
) -> Equipment:
    new_status = APPROVAL_APPROVED if approved else APPROVAL_REJECTED
    change = FieldChange(row.id, actor.username, "approval_status", row.approval_status or "", new_status)
    row.approval_status = new_status
    row.rejection_reason = None if approved else rejection_reason
    record_history(db, row.id, actor.username, [change])
    log_action(
        db,
        actor.username,
        "APPROVE" if approved else "REJECT",
        "EQUIPMENT",
        row.id,
        f"Equipment {row.equipamento} {'approved' if approved else 'rejected'}."
        + ("" if approved else f" Reason: {rejection_reason}"),
    )
    _commit_or_raise(db, f"aprovacao {row.id}")
    db.refresh(row)
    return row


def delete_equipment(db: Session, row: Equipment, actor: Actor) -> None:
    equipment_id = row.id
    details = f"Deleted equipment: {row.equipamento} (serial {row.serial})."
    db.delete(row)
    log_action(db, actor.username, "DELETE", "EQUIPMENT", equipment_id, details)
    _commit_or_raise(db, f"exclusao {equipment_id}")
