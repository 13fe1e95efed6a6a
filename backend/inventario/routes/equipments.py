import re
from datetime import datetime
from io import BytesIO
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse
from sqlalchemy import or_
from sqlalchemy.orm import Session

from inventario.core.auth import require_any_permission, require_permission
from inventario.core.permissions import has_permission
from inventario.database.deps import get_db
from inventario.models.equipment import Equipment, EquipmentHistory
from inventario.models.user import User
from inventario.schemas.equipment import (
    EquipmentApprovalUpdate,
    EquipmentCreate,
    EquipmentHistoryOut,
    EquipmentListOut,
    EquipmentOut,
    EquipmentPageMetaOut,
    EquipmentUpdate,
)
from inventario.services.app_settings import company_name
from inventario.services.equipment_consolidation import APPROVAL_APPROVED, Actor, as_text, derive_status
from inventario.services.equipment_csv import EQUIPMENT_FIELD_NAMES
from inventario.services.equipment_store import (
    APPROVAL_PENDING,
    DuplicateSerialError,
    PersistenceError,
    create_equipment as store_create_equipment,
    delete_equipment as store_delete_equipment,
    set_equipment_approval,
    update_equipment as store_update_equipment,
)
from inventario.services.responsibility_term_pdf import build_responsibility_term_pdf

router = APIRouter(prefix="/equipments", tags=["Equipments"])
get_equipments_viewer = require_any_permission("equipments.view", "equipments.manage")
get_equipments_manager = require_permission("equipments.manage")

MANAGE_PERMISSION = "equipments.manage"
NOT_FOUND_MESSAGE = "Equipamento não encontrado."


def normalize_spaces(value: Optional[str]) -> str:
    return " ".join(str(value or "").split())


def _safe_filename_chunk(value: str) -> str:
    return re.sub(r"[^A-Za-z0-9_-]+", "_", value).strip("_") or "sem_serial"


def _actor(user: User) -> Actor:
    return Actor(username=user.username, id=user.id)


def _is_manager(user: User) -> bool:
    return has_permission(user, MANAGE_PERMISSION)


def _visible_query(db: Session, current_user: User):
    query = db.query(Equipment)
    if _is_manager(current_user):
        return query
    return query.filter(
        or_(
            Equipment.approval_status == APPROVAL_APPROVED,
            Equipment.created_by_id == current_user.id,
        )
    )


def _get_equipment_or_404(db: Session, equipment_id: int, current_user: User) -> Equipment:
    row = _visible_query(db, current_user).filter(Equipment.id == equipment_id).first()
    if not row:
        raise HTTPException(status_code=404, detail=NOT_FOUND_MESSAGE)
    return row


def _persistence_http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, DuplicateSerialError):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=500, detail=f"Falha ao salvar no sistema: {exc}")


@router.get("/", response_model=EquipmentListOut)
def list_equipments(
    q: Optional[str] = Query(default=None),
    status_filter: Optional[str] = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_equipments_viewer),
):
    query = _visible_query(db, current_user)

    if status_filter:
        query = query.filter(Equipment.status == normalize_spaces(status_filter))
    if q:
        search = f"%{normalize_spaces(q)}%"
        query = query.filter(
            or_(
                Equipment.equipamento.ilike(search),
                Equipment.serial.ilike(search),
                Equipment.patrimonio.ilike(search),
                Equipment.usuario_atual.ilike(search),
                Equipment.email_colaborador.ilike(search),
                Equipment.brand.ilike(search),
                Equipment.model.ilike(search),
                Equipment.identificador.ilike(search),
            )
        )

    total = query.count()
    rows = (
        query
        .order_by(Equipment.equipamento.asc(), Equipment.id.asc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return EquipmentListOut(
        items=[EquipmentOut.model_validate(row) for row in rows],
        page=EquipmentPageMetaOut(
            limit=limit,
            offset=offset,
            total=total,
            has_next=offset + len(rows) < total,
            has_previous=offset > 0,
        ),
    )


@router.get("/{equipment_id}", response_model=EquipmentOut)
def get_equipment(
    equipment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_equipments_viewer),
):
    return _get_equipment_or_404(db, equipment_id, current_user)


@router.get("/{equipment_id}/history", response_model=list[EquipmentHistoryOut])
def get_equipment_history(
    equipment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_equipments_viewer),
):
    _get_equipment_or_404(db, equipment_id, current_user)
    return (
        db.query(EquipmentHistory)
        .filter(EquipmentHistory.equipment_id == equipment_id)
        .order_by(EquipmentHistory.changed_at.desc(), EquipmentHistory.id.desc())
        .all()
    )


@router.get("/{equipment_id}/termo")
def download_responsibility_term(
    equipment_id: int,
    kind: Literal["entrega", "devolucao"] = Query(default="entrega"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_equipments_viewer),
):
    row = _get_equipment_or_404(db, equipment_id, current_user)
    collaborator = row.usuario_atual if kind == "entrega" else (row.usuario_atual or row.usuario_anterior)
    payload = {
        "kind": kind,
        "company_name": company_name(db),
        "equipment": {name: as_text(getattr(row, name)) for name in EQUIPMENT_FIELD_NAMES},
        "collaborator_name": as_text(collaborator),
        "generated_at": datetime.now().strftime("%d/%m/%Y %H:%M"),
    }
    pdf_bytes = build_responsibility_term_pdf(payload)
    filename = f"termo_{kind}_{_safe_filename_chunk(row.serial)}.pdf"
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    return StreamingResponse(BytesIO(pdf_bytes), media_type="application/pdf", headers=headers)


@router.post("/", response_model=EquipmentOut, status_code=status.HTTP_201_CREATED)
def create_equipment(
    payload: EquipmentCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_equipments_viewer),
):
    fields = payload.model_dump()
    fields["serial"] = normalize_spaces(fields["serial"])
    fields["equipamento"] = normalize_spaces(fields.get("equipamento"))
    if not fields["serial"]:
        raise HTTPException(status_code=422, detail="Número de série é obrigatório.")
    if not normalize_spaces(fields.get("status")):
        fields["status"] = derive_status(fields)
    fields["approval_status"] = APPROVAL_APPROVED if _is_manager(current_user) else APPROVAL_PENDING

    try:
        return store_create_equipment(db, fields, _actor(current_user))
    except (DuplicateSerialError, PersistenceError) as exc:
        raise _persistence_http_error(exc) from exc


@router.put("/{equipment_id}", response_model=EquipmentOut)
def update_equipment(
    equipment_id: int,
    payload: EquipmentUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_equipments_manager),
):
    row = _get_equipment_or_404(db, equipment_id, current_user)
    data = payload.model_dump(exclude_unset=True)
    if not data:
        return row
    if "equipamento" in data:
        data["equipamento"] = normalize_spaces(data["equipamento"])
    if "serial" in data:
        data["serial"] = normalize_spaces(data["serial"])
        if not data["serial"]:
            raise HTTPException(status_code=422, detail="Número de série é obrigatório.")

    try:
        store_update_equipment(db, row, data, _actor(current_user))
    except (DuplicateSerialError, PersistenceError) as exc:
        raise _persistence_http_error(exc) from exc
    return row


@router.post("/{equipment_id}/approval", response_model=EquipmentOut)
def review_equipment(
    equipment_id: int,
    payload: EquipmentApprovalUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_equipments_manager),
):
    row = _get_equipment_or_404(db, equipment_id, current_user)
    reason = normalize_spaces(payload.rejection_reason)
    if not payload.approved and not reason:
        raise HTTPException(status_code=422, detail="Informe o motivo da rejeição.")

    try:
        return set_equipment_approval(db, row, payload.approved, _actor(current_user), reason or None)
    except (DuplicateSerialError, PersistenceError) as exc:
        raise _persistence_http_error(exc) from exc


@router.delete("/{equipment_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_equipment(
    equipment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_equipments_manager),
):
    row = _get_equipment_or_404(db, equipment_id, current_user)
    try:
        store_delete_equipment(db, row, _actor(current_user))
    except (DuplicateSerialError, PersistenceError) as exc:
        raise _persistence_http_error(exc) from exc
    return None
